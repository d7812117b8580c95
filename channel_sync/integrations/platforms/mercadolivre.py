"""
Mercado Livre provider.

Orders come from /orders/search (offset paging), listings from /items/{id}.
Access tokens live six hours and are rotated through /oauth/token.

Documentation: https://developers.mercadolivre.com.br/
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from channel_sync.core.enums import OrderStatus, PlatformName
from channel_sync.core.exceptions import ListingNotFoundError, PlatformAPIError
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


class MercadoLivreProvider(HttpMarketplaceProvider):
    platform = PlatformName.MERCADOLIVRE.value
    BASE_URL = "https://api.mercadolibre.com"
    PAGE_SIZE = 50
    supports_token_refresh = True

    STATUS_MAP = {
        "confirmed": OrderStatus.PENDING,
        "payment_required": OrderStatus.PENDING,
        "payment_in_process": OrderStatus.PROCESSING,
        "partially_paid": OrderStatus.PROCESSING,
        "paid": OrderStatus.PAID,
        "shipped": OrderStatus.SHIPPED,
        "delivered": OrderStatus.DELIVERED,
        "cancelled": OrderStatus.CANCELLED,
        "invalid": OrderStatus.CANCELLED,
        "refunded": OrderStatus.REFUNDED,
        "partially_refunded": OrderStatus.REFUNDED,
    }

    @staticmethod
    def _format_date(value: datetime) -> str:
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000-00:00")

    async def fetch_orders_since(self, credential: CredentialContext, since: datetime) -> List[RawOrder]:
        orders: List[RawOrder] = []
        offset = 0

        while True:
            params = {
                "seller": credential.external_account_id,
                "order.date_created.from": self._format_date(since),
                "sort": "date_asc",
                "offset": offset,
                "limit": self.PAGE_SIZE,
            }
            response = await self._make_request("GET", "/orders/search", credential, params=params)
            data = self._json(response)
            results = data.get("results") or []

            for order in results:
                order_id = order.get("id")
                orders.append(RawOrder(
                    platform=self.platform,
                    external_order_id=str(order_id) if order_id is not None else None,
                    placed_at=parse_timestamp(order.get("date_created")),
                    payload=order,
                ))

            offset += len(results)
            total = (data.get("paging") or {}).get("total") or 0
            if not results or offset >= total:
                break

        logger.info(f"Mercado Livre: fetched {len(orders)} orders for account {credential.external_account_id}")
        return self.keep_since(orders, since)

    async def fetch_listing_state(self, credential: CredentialContext, platform_product_id: str) -> ListingStateResult:
        try:
            response = await self._make_request("GET", f"/items/{platform_product_id}", credential)
        except ListingNotFoundError:
            return NOT_FOUND

        item = self._json(response)
        # Deleted items keep answering 200 with a "deleted" sub status
        if "deleted" in (item.get("sub_status") or []):
            return NOT_FOUND

        return RemoteListingState(
            platform_product_id=str(item.get("id") or platform_product_id),
            available_quantity=item.get("available_quantity"),
            status=item.get("status"),
            url=item.get("permalink"),
            payload=item,
        )

    async def publish_listing(self, credential: CredentialContext, draft: ListingDraft) -> RemoteListingState:
        payload: Dict[str, Any] = {
            "title": draft.title[:60],
            "price": float(draft.price) if draft.price is not None else None,
            "currency_id": self.settings.MERCADOLIVRE_CURRENCY_ID,
            "available_quantity": draft.stock_quantity,
            "buying_mode": "buy_it_now",
            "listing_type_id": draft.attributes.get("listing_type_id", "gold_special"),
            "condition": draft.attributes.get("condition", "new"),
            "seller_custom_field": draft.sku,
        }
        if draft.attributes.get("category_id"):
            payload["category_id"] = draft.attributes["category_id"]
        if draft.attributes.get("pictures"):
            payload["pictures"] = [{"source": url} for url in draft.attributes["pictures"]]

        response = await self._make_request("POST", "/items", credential, json_body=payload)
        item = self._json(response)
        if not item.get("id"):
            raise PlatformAPIError("Mercado Livre did not return an item id", platform=self.platform)

        logger.info(f"Mercado Livre: published {draft.sku} as {item['id']}")
        return RemoteListingState(
            platform_product_id=str(item["id"]),
            available_quantity=item.get("available_quantity"),
            status=item.get("status"),
            url=item.get("permalink"),
            payload=item,
        )

    async def update_stock(self, credential: CredentialContext, platform_product_id: str, quantity: int) -> None:
        await self._make_request(
            "PUT",
            f"/items/{platform_product_id}",
            credential,
            json_body={"available_quantity": quantity},
        )
        logger.info(f"Mercado Livre: set stock of {platform_product_id} to {quantity}")

    async def refresh_access_token(self, credential: CredentialContext) -> TokenGrant:
        if not credential.refresh_token:
            raise PlatformAPIError("No refresh token stored", platform=self.platform)
        if not self.settings.MERCADOLIVRE_APP_ID or not self.settings.MERCADOLIVRE_SECRET_KEY:
            raise PlatformAPIError("Mercado Livre app credentials not configured", platform=self.platform)

        response = await self._make_request(
            "POST",
            "/oauth/token",
            data={
                "grant_type": "refresh_token",
                "client_id": self.settings.MERCADOLIVRE_APP_ID,
                "client_secret": self.settings.MERCADOLIVRE_SECRET_KEY,
                "refresh_token": credential.refresh_token,
            },
        )
        data = self._json(response)
        if not data.get("access_token"):
            raise PlatformAPIError("No access token in refresh response", platform=self.platform)
        expires_in = int(data.get("expires_in") or 6 * 3600)
        return TokenGrant(
            access_token=data["access_token"],
            # ML rotates the refresh token on every use
            refresh_token=data.get("refresh_token") or credential.refresh_token,
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )
