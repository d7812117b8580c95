"""
Shopee Open Platform v2 provider.

Every request is signed: HMAC-SHA256 keyed with the partner key over
partner_id + path + timestamp + access_token + shop_id. Shopee answers most
failures with HTTP 200 and an ``error`` field, so the body is classified as
well as the status code.

Documentation: https://open.shopee.com/documents/v2
"""

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from channel_sync.core.enums import OrderStatus, PlatformName
from channel_sync.core.exceptions import (
    AuthExpiredError,
    ListingNotFoundError,
    PlatformAPIError,
    TransientPlatformError,
)
from channel_sync.core.utils import parse_timestamp, utcnow
from channel_sync.integrations.base import (
    NOT_FOUND,
    CredentialContext,
    HttpMarketplaceProvider,
    ListingStateResult,
    RawOrder,
    RemoteListingState,
    TokenGrant,
)
from channel_sync.schemas.listings import ListingDraft

logger = logging.getLogger(__name__)


AUTH_ERRORS = {"error_auth", "invalid_access_token", "invalid_acceess_token", "error_permission", "error_invalid_token"}
NOT_FOUND_ERRORS = {"error_item_not_found", "error_not_found", "product.error_item_not_found"}
TRANSIENT_ERRORS = {"error_server", "error_busy", "error_too_many_request", "error_inner", "error_network"}

# get_order_list rejects time ranges longer than 15 days
ORDER_WINDOW = timedelta(days=15)
DETAIL_BATCH_SIZE = 50


class ShopeeProvider(HttpMarketplaceProvider):
    platform = PlatformName.SHOPEE.value
    PRODUCTION_BASE_URL = "https://partner.shopeemobile.com"
    SANDBOX_BASE_URL = "https://partner.test-stable.shopeemobile.com"
    PAGE_SIZE = 100
    supports_token_refresh = True

    STATUS_MAP = {
        "unpaid": OrderStatus.PENDING,
        "ready_to_ship": OrderStatus.PAID,
        "processed": OrderStatus.PROCESSING,
        "retry_ship": OrderStatus.PROCESSING,
        "shipped": OrderStatus.SHIPPED,
        "to_confirm_receive": OrderStatus.SHIPPED,
        "completed": OrderStatus.DELIVERED,
        "in_cancel": OrderStatus.CANCELLED,
        "cancelled": OrderStatus.CANCELLED,
        "to_return": OrderStatus.REFUNDED,
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.BASE_URL = self.SANDBOX_BASE_URL if self.settings.SHOPEE_USE_SANDBOX else self.PRODUCTION_BASE_URL
        self.partner_id = self.settings.SHOPEE_PARTNER_ID
        self.partner_key = self.settings.SHOPEE_PARTNER_KEY

    def _get_headers(self, credential: CredentialContext) -> Dict[str, str]:
        # Authentication travels in the signed query string
        return {}

    def sign(self, path: str, timestamp: int, access_token: str = "", shop_id: str = "") -> str:
        base_string = f"{self.partner_id}{path}{timestamp}{access_token}{shop_id}"
        return hmac.new(self.partner_key.encode(), base_string.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def _shop_id(credential: CredentialContext) -> str:
        return str(credential.metadata.get("shop_id") or credential.external_account_id)

    def _signed_params(self, path: str, credential: Optional[CredentialContext] = None) -> Dict[str, Any]:
        if not self.partner_id or not self.partner_key:
            raise PlatformAPIError("Shopee partner credentials not configured", platform=self.platform)

        timestamp = int(time.time())
        if credential is None:
            return {"partner_id": self.partner_id, "timestamp": timestamp, "sign": self.sign(path, timestamp)}

        shop_id = self._shop_id(credential)
        return {
            "partner_id": self.partner_id,
            "timestamp": timestamp,
            "access_token": credential.access_token,
            "shop_id": shop_id,
            "sign": self.sign(path, timestamp, credential.access_token, shop_id),
        }

    def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            body = None

        error = body.get("error") if isinstance(body, dict) else None
        if not error:
            super()._raise_for_status(response)
            return

        message = f"shopee API error {error}: {body.get('message', '')}"
        if error in AUTH_ERRORS or response.status_code in (401, 403):
            raise AuthExpiredError(message, platform=self.platform, status_code=response.status_code)
        if error in NOT_FOUND_ERRORS:
            raise ListingNotFoundError(message, platform=self.platform, status_code=response.status_code)
        if error in TRANSIENT_ERRORS or response.status_code == 429 or response.status_code >= 500:
            raise TransientPlatformError(message, platform=self.platform, status_code=response.status_code)

        logger.error(message)
        raise PlatformAPIError(message, platform=self.platform, status_code=response.status_code)

    async def _call(
        self,
        method: str,
        path: str,
        credential: CredentialContext,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        query = self._signed_params(path, credential)
        if params:
            query.update(params)
        response = await self._make_request(method, path, credential, params=query, json_body=body)
        return self._json(response).get("response") or {}

    async def fetch_orders_since(self, credential: CredentialContext, since: datetime) -> List[RawOrder]:
        order_sns: List[str] = []
        window_start = since
        now = utcnow()

        while window_start < now:
            window_end = min(window_start + ORDER_WINDOW, now)
            cursor = ""
            while True:
                data = await self._call("GET", "/api/v2/order/get_order_list", credential, params={
                    "time_range_field": "create_time",
                    "time_from": int(window_start.timestamp()),
                    "time_to": int(window_end.timestamp()),
                    "page_size": self.PAGE_SIZE,
                    "cursor": cursor,
                })
                order_sns.extend(o["order_sn"] for o in data.get("order_list") or [] if o.get("order_sn"))
                if not data.get("more"):
                    break
                cursor = data.get("next_cursor") or ""
            window_start = window_end

        orders: List[RawOrder] = []
        for start in range(0, len(order_sns), DETAIL_BATCH_SIZE):
            batch = order_sns[start:start + DETAIL_BATCH_SIZE]
            data = await self._call("GET", "/api/v2/order/get_order_detail", credential, params={
                "order_sn_list": ",".join(batch),
                "response_optional_fields": "buyer_username,recipient_address,item_list,total_amount,currency",
            })
            for order in data.get("order_list") or []:
                orders.append(RawOrder(
                    platform=self.platform,
                    external_order_id=order.get("order_sn"),
                    placed_at=parse_timestamp(order.get("create_time")),
                    payload=order,
                ))

        logger.info(f"Shopee: fetched {len(orders)} orders for shop {self._shop_id(credential)}")
        return self.keep_since(orders, since)

    async def fetch_listing_state(self, credential: CredentialContext, platform_product_id: str) -> ListingStateResult:
        try:
            data = await self._call("GET", "/api/v2/product/get_item_base_info", credential, params={
                "item_id_list": platform_product_id,
            })
        except ListingNotFoundError:
            return NOT_FOUND

        items = data.get("item_list") or []
        if not items or items[0].get("item_status") == "DELETED":
            return NOT_FOUND

        item = items[0]
        summary = (item.get("stock_info_v2") or {}).get("summary_info") or {}
        return RemoteListingState(
            platform_product_id=str(item.get("item_id") or platform_product_id),
            available_quantity=summary.get("total_available_stock"),
            status=item.get("item_status"),
            payload=item,
        )

    async def publish_listing(self, credential: CredentialContext, draft: ListingDraft) -> RemoteListingState:
        payload: Dict[str, Any] = {
            "item_name": draft.title[:100],
            "description": draft.description or draft.title,
            "original_price": float(draft.price) if draft.price is not None else 0,
            "seller_stock": [{"stock": draft.stock_quantity}],
            "item_sku": draft.sku,
            "item_status": "NORMAL",
            "weight": draft.attributes.get("weight", 0.1),
            "logistic_info": draft.attributes.get("logistic_info", [{"enabled": True, "is_free": True}]),
        }
        if draft.attributes.get("category_id"):
            payload["category_id"] = draft.attributes["category_id"]
        if draft.attributes.get("images"):
            payload["image"] = {"image_id_list": draft.attributes["images"][:9]}

        data = await self._call("POST", "/api/v2/product/add_item", credential, body=payload)
        if not data.get("item_id"):
            raise PlatformAPIError("Shopee did not return an item id", platform=self.platform)

        logger.info(f"Shopee: published {draft.sku} as item {data['item_id']}")
        return RemoteListingState(
            platform_product_id=str(data["item_id"]),
            available_quantity=draft.stock_quantity,
            status=data.get("item_status"),
            payload=data,
        )

    async def update_stock(self, credential: CredentialContext, platform_product_id: str, quantity: int) -> None:
        await self._call("POST", "/api/v2/product/update_stock", credential, body={
            "item_id": int(platform_product_id),
            "stock_list": [{"model_id": 0, "seller_stock": [{"stock": quantity}]}],
        })
        logger.info(f"Shopee: set stock of {platform_product_id} to {quantity}")

    async def refresh_access_token(self, credential: CredentialContext) -> TokenGrant:
        if not credential.refresh_token:
            raise PlatformAPIError("No refresh token stored", platform=self.platform)

        path = "/api/v2/auth/access_token/get"
        response = await self._make_request(
            "POST",
            path,
            params=self._signed_params(path),
            json_body={
                "refresh_token": credential.refresh_token,
                "partner_id": self.partner_id,
                "shop_id": int(self._shop_id(credential)),
            },
        )
        data = self._json(response)
        if not data.get("access_token"):
            raise PlatformAPIError("No access token in refresh response", platform=self.platform)
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or credential.refresh_token,
            expires_at=utcnow() + timedelta(seconds=int(data.get("expire_in") or 4 * 3600)),
        )
