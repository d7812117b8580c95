"""
Shopify Admin REST provider.

Offline access tokens never expire, so there is no refresh. Order pages are
followed through the Link header (cursor based ``page_info``).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from channel_sync.core.enums import OrderStatus, PlatformName
from channel_sync.core.exceptions import ListingNotFoundError, PlatformAPIError, TransientPlatformError
from channel_sync.core.utils import parse_timestamp
from channel_sync.integrations.base import (
    NOT_FOUND,
    CredentialContext,
    HttpMarketplaceProvider,
    ListingStateResult,
    RawOrder,
    RemoteListingState,
)
from channel_sync.schemas.listings import ListingDraft

logger = logging.getLogger(__name__)


class ShopifyProvider(HttpMarketplaceProvider):
    platform = PlatformName.SHOPIFY.value
    PAGE_SIZE = 250

    # Keys are the composite native status derived from
    # cancelled_at / fulfillment_status / financial_status
    STATUS_MAP = {
        "pending": OrderStatus.PENDING,
        "authorized": OrderStatus.PROCESSING,
        "paid": OrderStatus.PAID,
        "partially_paid": OrderStatus.PROCESSING,
        "partially_refunded": OrderStatus.REFUNDED,
        "refunded": OrderStatus.REFUNDED,
        "voided": OrderStatus.CANCELLED,
        "cancelled": OrderStatus.CANCELLED,
        "fulfilled": OrderStatus.DELIVERED,
        "partial": OrderStatus.SHIPPED,
    }

    @staticmethod
    def native_status(order: Dict[str, Any]) -> Optional[str]:
        """Collapse Shopify's three status fields into the single value STATUS_MAP understands."""
        if order.get("cancelled_at"):
            return "cancelled"
        if order.get("fulfillment_status") in ("fulfilled", "partial"):
            return order["fulfillment_status"]
        return order.get("financial_status")

    def _get_headers(self, credential: CredentialContext) -> Dict[str, str]:
        return {"X-Shopify-Access-Token": credential.access_token}

    def _shop_domain(self, credential: CredentialContext) -> str:
        shop = credential.metadata.get("shop_domain") or ""
        if not shop:
            raise PlatformAPIError("No shop_domain stored for Shopify credential", platform=self.platform)
        shop = shop.replace("https://", "").replace("http://", "").strip("/")
        if "." not in shop:
            shop = f"{shop}.myshopify.com"
        return shop

    def _admin_url(self, credential: CredentialContext, endpoint: str) -> str:
        return f"https://{self._shop_domain(credential)}/admin/api/{self.settings.SHOPIFY_API_VERSION}/{endpoint.lstrip('/')}"

    async def fetch_orders_since(self, credential: CredentialContext, since: datetime) -> List[RawOrder]:
        orders: List[RawOrder] = []
        url: Optional[str] = self._admin_url(credential, "orders.json")
        params: Optional[Dict[str, Any]] = {
            "status": "any",
            "created_at_min": since.astimezone(timezone.utc).isoformat(),
            "limit": self.PAGE_SIZE,
        }

        while url:
            response = await self._make_request("GET", url, credential, params=params)
            for order in self._json(response).get("orders") or []:
                order_id = order.get("id")
                orders.append(RawOrder(
                    platform=self.platform,
                    external_order_id=str(order_id) if order_id is not None else None,
                    placed_at=parse_timestamp(order.get("created_at")),
                    payload=order,
                ))
            # The next link already carries page_info and limit
            url = response.links.get("next", {}).get("url")
            params = None

        logger.info(f"Shopify: fetched {len(orders)} orders for {credential.metadata.get('shop_domain')}")
        return self.keep_since(orders, since)

    async def _get_product(self, credential: CredentialContext, product_id: str) -> Dict[str, Any]:
        response = await self._make_request("GET", self._admin_url(credential, f"products/{product_id}.json"), credential)
        return self._json(response).get("product") or {}

    async def fetch_listing_state(self, credential: CredentialContext, platform_product_id: str) -> ListingStateResult:
        try:
            product = await self._get_product(credential, platform_product_id)
        except ListingNotFoundError:
            return NOT_FOUND
        if not product:
            return NOT_FOUND

        variants = product.get("variants") or []
        quantities = [v.get("inventory_quantity") for v in variants if v.get("inventory_quantity") is not None]
        handle = product.get("handle")

        return RemoteListingState(
            platform_product_id=str(product.get("id") or platform_product_id),
            available_quantity=sum(quantities) if quantities else None,
            status=product.get("status"),
            url=f"https://{self._shop_domain(credential)}/products/{handle}" if handle else None,
            payload=product,
        )

    async def _location_id(self, credential: CredentialContext) -> int:
        if credential.metadata.get("location_id"):
            return int(credential.metadata["location_id"])
        response = await self._make_request("GET", self._admin_url(credential, "locations.json"), credential)
        locations = self._json(response).get("locations") or []
        if not locations:
            raise PlatformAPIError("Shop has no inventory locations", platform=self.platform)
        active = next((loc for loc in locations if loc.get("active")), locations[0])
        return int(active["id"])

    async def _set_inventory(self, credential: CredentialContext, inventory_item_id: Any, quantity: int) -> None:
        await self._make_request(
            "POST",
            self._admin_url(credential, "inventory_levels/set.json"),
            credential,
            json_body={
                "location_id": await self._location_id(credential),
                "inventory_item_id": int(inventory_item_id),
                "available": quantity,
            },
        )

    async def publish_listing(self, credential: CredentialContext, draft: ListingDraft) -> RemoteListingState:
        variant: Dict[str, Any] = {"sku": draft.sku, "inventory_management": "shopify"}
        if draft.price is not None:
            variant["price"] = str(draft.price)

        response = await self._make_request(
            "POST",
            self._admin_url(credential, "products.json"),
            credential,
            json_body={"product": {
                "title": draft.title,
                "body_html": draft.description or "",
                "status": "active",
                "variants": [variant],
            }},
        )
        product = self._json(response).get("product") or {}
        if not product.get("id"):
            raise PlatformAPIError("Shopify did not return a product id", platform=self.platform)

        # The product is live from here on; an inventory failure must not hide its id
        available: Optional[int] = draft.stock_quantity
        variants = product.get("variants") or []
        if variants and variants[0].get("inventory_item_id"):
            try:
                await self._set_inventory(credential, variants[0]["inventory_item_id"], draft.stock_quantity)
            except (TransientPlatformError, PlatformAPIError) as e:
                logger.warning(
                    f"Shopify: product {product['id']} created but its stock could not be set: {e}. "
                    f"The next sweep will report the difference"
                )
                available = None

        logger.info(f"Shopify: published {draft.sku} as product {product['id']}")
        handle = product.get("handle")
        return RemoteListingState(
            platform_product_id=str(product["id"]),
            available_quantity=available,
            status=product.get("status"),
            url=f"https://{self._shop_domain(credential)}/products/{handle}" if handle else None,
            payload=product,
        )

    async def update_stock(self, credential: CredentialContext, platform_product_id: str, quantity: int) -> None:
        product = await self._get_product(credential, platform_product_id)
        variants = product.get("variants") or []
        if not variants or not variants[0].get("inventory_item_id"):
            raise PlatformAPIError(f"Product {platform_product_id} has no inventory item", platform=self.platform)

        await self._set_inventory(credential, variants[0]["inventory_item_id"], quantity)
        logger.info(f"Shopify: set stock of {platform_product_id} to {quantity}")
