"""
Amazon Selling Partner API provider.

Orders: /orders/v0/orders (NextToken paging) plus /orderItems per order.
Listings: Listings Items API 2021-08-01, keyed by seller id + SKU. The SKU is the
platform product id, so a republished listing keeps the same identifier.
Tokens: Login With Amazon access tokens last one hour; the refresh token does not rotate.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

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


REGION_ENDPOINTS = {
    "na": "https://sellingpartnerapi-na.amazon.com",
    "eu": "https://sellingpartnerapi-eu.amazon.com",
    "fe": "https://sellingpartnerapi-fe.amazon.com",
}

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
LISTINGS_VERSION = "2021-08-01"


class AmazonProvider(HttpMarketplaceProvider):
    platform = PlatformName.AMAZON.value
    supports_token_refresh = True

    STATUS_MAP = {
        "pending": OrderStatus.PENDING,
        "pendingavailability": OrderStatus.PENDING,
        "unshipped": OrderStatus.PAID,
        "partiallyshipped": OrderStatus.PROCESSING,
        "shipped": OrderStatus.SHIPPED,
        "invoiceunconfirmed": OrderStatus.PROCESSING,
        "canceled": OrderStatus.CANCELLED,
        "unfulfillable": OrderStatus.CANCELLED,
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.BASE_URL = REGION_ENDPOINTS.get(self.settings.AMAZON_REGION, REGION_ENDPOINTS["na"])

    def _get_headers(self, credential: CredentialContext) -> Dict[str, str]:
        return {"x-amz-access-token": credential.access_token}

    def _marketplace_id(self, credential: CredentialContext) -> str:
        return credential.metadata.get("marketplace_id") or self.settings.AMAZON_DEFAULT_MARKETPLACE_ID

    def _listing_path(self, credential: CredentialContext, sku: str) -> str:
        return f"/listings/{LISTINGS_VERSION}/items/{credential.external_account_id}/{sku}"

    async def fetch_orders_since(self, credential: CredentialContext, since: datetime) -> List[RawOrder]:
        marketplace_id = self._marketplace_id(credential)
        orders: List[RawOrder] = []
        next_token: Optional[str] = None

        while True:
            if next_token:
                params = {"MarketplaceIds": marketplace_id, "NextToken": next_token}
            else:
                params = {
                    "MarketplaceIds": marketplace_id,
                    "CreatedAfter": since.astimezone(timezone.utc).isoformat(),
                }
            response = await self._make_request("GET", "/orders/v0/orders", credential, params=params)
            payload = self._json(response).get("payload") or {}

            for order in payload.get("Orders") or []:
                order_id = order.get("AmazonOrderId")
                if order_id:
                    order["OrderItems"] = await self._fetch_order_items(credential, order_id)
                orders.append(RawOrder(
                    platform=self.platform,
                    external_order_id=order_id,
                    placed_at=parse_timestamp(order.get("PurchaseDate")),
                    payload=order,
                ))

            next_token = payload.get("NextToken")
            if not next_token:
                break

        logger.info(f"Amazon: fetched {len(orders)} orders for seller {credential.external_account_id}")
        return self.keep_since(orders, since)

    async def _fetch_order_items(self, credential: CredentialContext, order_id: str) -> List[Dict[str, Any]]:
        try:
            response = await self._make_request("GET", f"/orders/v0/orders/{order_id}/orderItems", credential)
        except (PlatformAPIError, ListingNotFoundError) as e:
            # The order itself is still worth storing without its lines
            logger.warning(f"Amazon: could not fetch items for order {order_id}: {e}")
            return []
        return (self._json(response).get("payload") or {}).get("OrderItems") or []

    async def fetch_listing_state(self, credential: CredentialContext, platform_product_id: str) -> ListingStateResult:
        try:
            response = await self._make_request(
                "GET",
                self._listing_path(credential, platform_product_id),
                credential,
                params={
                    "marketplaceIds": self._marketplace_id(credential),
                    "includedData": "summaries,fulfillmentAvailability",
                },
            )
        except ListingNotFoundError:
            return NOT_FOUND

        item = self._json(response)
        summaries = item.get("summaries") or []
        summary = summaries[0] if summaries else {}
        availability = item.get("fulfillmentAvailability") or []

        quantity = availability[0].get("quantity") if availability else None
        status = summary.get("status")
        if isinstance(status, list):
            status = ",".join(status)
        asin = summary.get("asin")

        return RemoteListingState(
            platform_product_id=item.get("sku") or platform_product_id,
            available_quantity=quantity,
            status=status,
            url=f"https://www.amazon.com/dp/{asin}" if asin else None,
            payload=item,
        )

    async def publish_listing(self, credential: CredentialContext, draft: ListingDraft) -> RemoteListingState:
        marketplace_id = self._marketplace_id(credential)
        attributes: Dict[str, Any] = {
            "condition_type": [{"value": draft.attributes.get("condition_type", "new_new"), "marketplace_id": marketplace_id}],
            "fulfillment_availability": [{"fulfillment_channel_code": "DEFAULT", "quantity": draft.stock_quantity}],
        }
        if draft.price is not None:
            attributes["purchasable_offer"] = [{
                "marketplace_id": marketplace_id,
                "currency": draft.attributes.get("currency", "USD"),
                "our_price": [{"schedule": [{"value_with_tax": float(draft.price)}]}],
            }]
        if draft.attributes.get("asin"):
            attributes["merchant_suggested_asin"] = [{"value": draft.attributes["asin"], "marketplace_id": marketplace_id}]

        response = await self._make_request(
            "PUT",
            self._listing_path(credential, draft.sku),
            credential,
            params={"marketplaceIds": marketplace_id},
            json_body={
                "productType": draft.attributes.get("product_type", "PRODUCT"),
                "requirements": "LISTING_OFFER_ONLY",
                "attributes": attributes,
            },
        )
        result = self._json(response)
        if result.get("status") == "INVALID":
            issues = "; ".join(i.get("message", "") for i in result.get("issues") or [])
            raise PlatformAPIError(f"Amazon rejected listing {draft.sku}: {issues}", platform=self.platform)

        logger.info(f"Amazon: submitted listing {draft.sku} ({result.get('submissionId')})")
        return RemoteListingState(
            platform_product_id=result.get("sku") or draft.sku,
            status=result.get("status"),
            payload=result,
        )

    async def update_stock(self, credential: CredentialContext, platform_product_id: str, quantity: int) -> None:
        await self._make_request(
            "PATCH",
            self._listing_path(credential, platform_product_id),
            credential,
            params={"marketplaceIds": self._marketplace_id(credential)},
            json_body={
                "productType": "PRODUCT",
                "patches": [{
                    "op": "replace",
                    "path": "/attributes/fulfillment_availability",
                    "value": [{"fulfillment_channel_code": "DEFAULT", "quantity": quantity}],
                }],
            },
        )
        logger.info(f"Amazon: set stock of {platform_product_id} to {quantity}")

    async def refresh_access_token(self, credential: CredentialContext) -> TokenGrant:
        if not credential.refresh_token:
            raise PlatformAPIError("No refresh token stored", platform=self.platform)
        if not self.settings.AMAZON_CLIENT_ID or not self.settings.AMAZON_CLIENT_SECRET:
            raise PlatformAPIError("Amazon LWA credentials not configured", platform=self.platform)

        response = await self._make_request(
            "POST",
            LWA_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
                "client_id": self.settings.AMAZON_CLIENT_ID,
                "client_secret": self.settings.AMAZON_CLIENT_SECRET,
            },
        )
        data = self._json(response)
        if not data.get("access_token"):
            raise PlatformAPIError("No access token in refresh response", platform=self.platform)
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=credential.refresh_token,
            expires_at=utcnow() + timedelta(seconds=int(data.get("expires_in") or 3600)),
        )
