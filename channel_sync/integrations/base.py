"""
Purpose: The contract every marketplace adapter satisfies, plus the shared HTTP plumbing.

MarketplaceOrderProvider (ABC): platform name, a platform-status -> canonical status
    map, and the four remote operations the sync engine needs (fetch orders since a
    watermark, fetch a listing's remote state, publish a listing, push a stock value).
    Token refresh is optional and advertised through ``supports_token_refresh``.

HttpMarketplaceProvider: the common base for the HTTP adapters. ``_make_request`` wraps
    every call in the RetryPolicy and classifies responses into the engine's error
    taxonomy, so adapters only deal with payload shapes.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx

from channel_sync.core.config import Settings, get_settings
from channel_sync.core.enums import OrderStatus
from channel_sync.core.exceptions import (
    AuthExpiredError,
    ListingNotFoundError,
    PlatformAPIError,
    TransientPlatformError,
)
from channel_sync.integrations.retry import RetryPolicy
from channel_sync.schemas.listings import ListingDraft

logger = logging.getLogger(__name__)


@dataclass
class CredentialContext:
    """Decrypted, in-memory view of a credential. Only lives for the duration of a call."""
    credential_id: int
    seller_id: str
    platform: str
    external_account_id: str
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenGrant:
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None


@dataclass
class RawOrder:
    """A platform order payload as fetched, before mapping."""
    platform: str
    external_order_id: Optional[str]
    placed_at: Optional[datetime]
    payload: Dict[str, Any]


@dataclass
class RemoteListingState:
    platform_product_id: str
    available_quantity: Any = None
    status: Optional[str] = None
    url: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


class _NotFound:
    """Returned by fetch_listing_state when the remote item no longer exists."""

    def __repr__(self):
        return "NOT_FOUND"


NOT_FOUND = _NotFound()

ListingStateResult = Union[RemoteListingState, _NotFound]


class MarketplaceOrderProvider(ABC):
    platform: str = ""
    STATUS_MAP: Dict[str, OrderStatus] = {}
    DEFAULT_STATUS: OrderStatus = OrderStatus.PROCESSING
    supports_token_refresh: bool = False

    def map_status(self, platform_status: Optional[str]) -> OrderStatus:
        """Unknown or missing platform statuses map to PROCESSING."""
        if platform_status is None:
            return self.DEFAULT_STATUS
        key = str(platform_status).strip().lower()
        return self.STATUS_MAP.get(key, self.DEFAULT_STATUS)

    @abstractmethod
    async def fetch_orders_since(self, credential: CredentialContext, since: datetime) -> List[RawOrder]:
        """Orders placed at or after ``since``. Raises AuthExpiredError / TransientPlatformError."""

    @abstractmethod
    async def fetch_listing_state(self, credential: CredentialContext, platform_product_id: str) -> ListingStateResult:
        """Remote state of a listing, or NOT_FOUND if the platform no longer has it."""

    @abstractmethod
    async def publish_listing(self, credential: CredentialContext, draft: ListingDraft) -> RemoteListingState:
        """Create the listing remotely and return its new identity."""

    @abstractmethod
    async def update_stock(self, credential: CredentialContext, platform_product_id: str, quantity: int) -> None:
        """Push a stock value to the platform."""

    async def refresh_access_token(self, credential: CredentialContext) -> TokenGrant:
        raise PlatformAPIError(
            f"{self.platform} access tokens cannot be refreshed",
            platform=self.platform,
        )

    @staticmethod
    def keep_since(orders: List[RawOrder], since: datetime) -> List[RawOrder]:
        """Drop orders the platform returned from before the watermark. Undated orders are kept for the mapper."""
        return [o for o in orders if o.placed_at is None or o.placed_at >= since]

    def __repr__(self):
        return f"<{self.__class__.__name__}(platform='{self.platform}')>"


class HttpMarketplaceProvider(MarketplaceOrderProvider):
    BASE_URL: str = ""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.timeout = self.settings.SYNC_REQUEST_TIMEOUT_SECONDS
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    def _get_headers(self, credential: CredentialContext) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_token}"}

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.BASE_URL}/{endpoint.lstrip('/')}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        credential: Optional[CredentialContext] = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send a request with retries.

        Raises:
            AuthExpiredError: 401/403, or an OAuth ``invalid_grant``
            ListingNotFoundError: 404
            TransientPlatformError: network errors, timeouts, 429, 5xx (after retries)
            PlatformAPIError: any other 4xx
        """
        return await self.retry_policy.call(
            self._send, method, self._url(endpoint), credential, params, json_body, data, headers
        )

    async def _send(
        self,
        method: str,
        url: str,
        credential: Optional[CredentialContext],
        params: Optional[Dict[str, Any]],
        json_body: Optional[Any],
        data: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> httpx.Response:
        request_headers = {"Accept": "application/json"}
        if credential is not None:
            request_headers.update(self._get_headers(credential))
        if headers:
            request_headers.update(headers)

        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=request_headers,
                    params=params,
                    json=json_body,
                    data=data,
                )
        except httpx.TimeoutException as e:
            raise TransientPlatformError(f"Request timed out: {e}", platform=self.platform) from e
        except httpx.RequestError as e:
            raise TransientPlatformError(f"Network error: {e}", platform=self.platform) from e

        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        body = response.text[:500]
        message = f"{self.platform} API error {status}: {body}"

        if status in (401, 403) or self._is_invalid_grant(response):
            logger.warning(f"{self.platform} rejected credentials ({status})")
            raise AuthExpiredError(message, platform=self.platform, status_code=status)
        if status == 404:
            raise ListingNotFoundError(message, platform=self.platform, status_code=status)
        if status == 429 or status >= 500:
            raise TransientPlatformError(message, platform=self.platform, status_code=status)

        logger.error(message)
        raise PlatformAPIError(message, platform=self.platform, status_code=status)

    @staticmethod
    def _is_invalid_grant(response: httpx.Response) -> bool:
        if response.status_code != 400:
            return False
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            return False
        return isinstance(body, dict) and body.get("error") == "invalid_grant"

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise PlatformAPIError(f"Invalid JSON in response: {e}") from e
