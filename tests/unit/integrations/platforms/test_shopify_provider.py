# tests/unit/integrations/platforms/test_shopify_provider.py
import json
from datetime import datetime, timezone

import httpx
import pytest

from channel_sync.core.exceptions import PlatformAPIError
from channel_sync.integrations.base import NOT_FOUND, CredentialContext
from channel_sync.integrations.platforms.shopify import ShopifyProvider
from channel_sync.schemas.listings import ListingDraft

SINCE = datetime(2025, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def credential():
    return CredentialContext(
        credential_id=3,
        seller_id="seller-1",
        platform="shopify",
        external_account_id="guitar-shop",
        access_token="shpat_token",
        metadata={"shop_domain": "guitar-shop", "location_id": 777},
    )


def make_provider(settings, no_delay_retry, handler):
    return ShopifyProvider(settings=settings, retry_policy=no_delay_retry, transport=httpx.MockTransport(handler))


async def test_fetch_orders_follows_link_header(settings, no_delay_retry, credential):
    seen = []
    next_url = f"https://guitar-shop.myshopify.com/admin/api/{settings.SHOPIFY_API_VERSION}/orders.json?page_info=abc&limit=250"

    def handler(request):
        seen.append(request)
        if "page_info" in request.url.params:
            return httpx.Response(200, json={"orders": [{"id": 2, "created_at": "2025-03-03T10:00:00-05:00"}]})
        return httpx.Response(
            200,
            json={"orders": [{"id": 1, "created_at": "2025-03-02T10:00:00-05:00"}]},
            headers={"Link": f'<{next_url}>; rel="next"'},
        )

    orders = await make_provider(settings, no_delay_retry, handler).fetch_orders_since(credential, SINCE)

    assert [o.external_order_id for o in orders] == ["1", "2"]
    assert seen[0].url.host == "guitar-shop.myshopify.com"
    assert seen[0].url.params["status"] == "any"
    assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_token"
    # Cursor pages must not repeat the filter parameters
    assert "created_at_min" not in seen[1].url.params


async def test_missing_shop_domain(settings, no_delay_retry, credential):
    credential.metadata = {}
    provider = make_provider(settings, no_delay_retry, lambda request: httpx.Response(200, json={}))
    with pytest.raises(PlatformAPIError):
        await provider.fetch_orders_since(credential, SINCE)


async def test_fetch_listing_state_sums_variants(settings, no_delay_retry, credential):
    def handler(request):
        return httpx.Response(200, json={"product": {
            "id": 42, "handle": "strat", "status": "active",
            "variants": [{"inventory_quantity": 2}, {"inventory_quantity": 3}],
        }})

    state = await make_provider(settings, no_delay_retry, handler).fetch_listing_state(credential, "42")

    assert state.available_quantity == 5
    assert state.url == "https://guitar-shop.myshopify.com/products/strat"


async def test_deleted_product_is_not_found(settings, no_delay_retry, credential):
    provider = make_provider(settings, no_delay_retry, lambda request: httpx.Response(404, json={"errors": "Not Found"}))
    assert await provider.fetch_listing_state(credential, "42") is NOT_FOUND


async def test_publish_sets_inventory(settings, no_delay_retry, credential):
    posted = []

    def handler(request):
        posted.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("products.json"):
            return httpx.Response(201, json={"product": {
                "id": 99, "handle": "new-strat", "status": "active", "variants": [{"inventory_item_id": 555}],
            }})
        return httpx.Response(200, json={"inventory_level": {"available": 6}})

    draft = ListingDraft(sku="SKU-1", title="Strat", price="999.00", stock_quantity=6)
    state = await make_provider(settings, no_delay_retry, handler).publish_listing(credential, draft)

    assert state.platform_product_id == "99"
    assert posted[0][1]["product"]["variants"][0]["sku"] == "SKU-1"
    assert posted[1][0].endswith("inventory_levels/set.json")
    assert posted[1][1] == {"location_id": 777, "inventory_item_id": 555, "available": 6}


async def test_publish_keeps_created_product_when_inventory_fails(settings, no_delay_retry, credential):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path.endswith("products.json"):
            return httpx.Response(201, json={"product": {
                "id": 99, "handle": "new-strat", "status": "active", "variants": [{"inventory_item_id": 555}],
            }})
        return httpx.Response(503, json={"errors": "Service Unavailable"})

    draft = ListingDraft(sku="SKU-1", title="Strat", price="999.00", stock_quantity=6)
    state = await make_provider(settings, no_delay_retry, handler).publish_listing(credential, draft)

    assert state.platform_product_id == "99"
    assert state.available_quantity is None
    # One product created, inventory retried up to the policy limit
    assert sum(1 for path in calls if path.endswith("products.json")) == 1
    assert sum(1 for path in calls if path.endswith("inventory_levels/set.json")) == no_delay_retry.max_attempts


async def test_update_stock_uses_first_active_location(settings, no_delay_retry, credential):
    credential.metadata = {"shop_domain": "guitar-shop.myshopify.com"}
    posted = []

    def handler(request):
        path = request.url.path
        if path.endswith("products/42.json"):
            return httpx.Response(200, json={"product": {"id": 42, "variants": [{"inventory_item_id": 555}]}})
        if path.endswith("locations.json"):
            return httpx.Response(200, json={"locations": [{"id": 1, "active": False}, {"id": 2, "active": True}]})
        posted.append(json.loads(request.content))
        return httpx.Response(200, json={})

    await make_provider(settings, no_delay_retry, handler).update_stock(credential, "42", 3)

    assert posted == [{"location_id": 2, "inventory_item_id": 555, "available": 3}]
