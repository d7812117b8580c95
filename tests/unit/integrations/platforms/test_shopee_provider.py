# tests/unit/integrations/platforms/test_shopee_provider.py
import hashlib
import hmac
from datetime import timedelta

import httpx
import pytest

from channel_sync.core.exceptions import AuthExpiredError, PlatformAPIError, TransientPlatformError
from channel_sync.core.utils import utcnow
from channel_sync.integrations.base import NOT_FOUND, CredentialContext
from channel_sync.integrations.platforms.shopee import ShopeeProvider


@pytest.fixture
def credential():
    return CredentialContext(
        credential_id=4,
        seller_id="seller-1",
        platform="shopee",
        external_account_id="880001",
        access_token="shopee-access",
        refresh_token="shopee-refresh",
    )


def make_provider(settings, no_delay_retry, handler):
    return ShopeeProvider(settings=settings, retry_policy=no_delay_retry, transport=httpx.MockTransport(handler))


def test_sign_matches_partner_key_hmac(settings, no_delay_retry):
    provider = make_provider(settings, no_delay_retry, lambda request: httpx.Response(200))
    base = f"{settings.SHOPEE_PARTNER_ID}/api/v2/order/get_order_list1700000000shopee-access880001"
    expected = hmac.new(settings.SHOPEE_PARTNER_KEY.encode(), base.encode(), hashlib.sha256).hexdigest()

    assert provider.sign("/api/v2/order/get_order_list", 1700000000, "shopee-access", "880001") == expected


async def test_requests_carry_signed_query(settings, no_delay_retry, credential):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"error": "", "response": {"item_list": []}})

    provider = make_provider(settings, no_delay_retry, handler)
    await provider.fetch_listing_state(credential, "123")

    params = seen[0].url.params
    assert params["partner_id"] == str(settings.SHOPEE_PARTNER_ID)
    assert params["shop_id"] == "880001"
    assert params["access_token"] == "shopee-access"
    assert params["sign"] == provider.sign(seen[0].url.path, int(params["timestamp"]), "shopee-access", "880001")


async def test_missing_partner_credentials(settings, no_delay_retry, credential):
    settings.SHOPEE_PARTNER_KEY = ""
    provider = make_provider(settings, no_delay_retry, lambda request: httpx.Response(200, json={}))
    with pytest.raises(PlatformAPIError):
        await provider.fetch_listing_state(credential, "123")


async def test_fetch_orders_lists_then_details(settings, no_delay_retry, credential):
    placed = int((utcnow() - timedelta(hours=3)).timestamp())

    def handler(request):
        if request.url.path.endswith("get_order_list"):
            return httpx.Response(200, json={"error": "", "response": {
                "order_list": [{"order_sn": "SN1"}, {"order_sn": "SN2"}], "more": False,
            }})
        assert request.url.params["order_sn_list"] == "SN1,SN2"
        return httpx.Response(200, json={"error": "", "response": {"order_list": [
            {"order_sn": "SN1", "create_time": placed, "order_status": "COMPLETED"},
            {"order_sn": "SN2", "create_time": placed, "order_status": "UNPAID"},
        ]}})

    orders = await make_provider(settings, no_delay_retry, handler).fetch_orders_since(
        credential, utcnow() - timedelta(days=1)
    )

    assert [o.external_order_id for o in orders] == ["SN1", "SN2"]
    assert int(orders[0].placed_at.timestamp()) == placed


@pytest.mark.parametrize("error, expected", [
    ("invalid_access_token", AuthExpiredError),
    ("error_auth", AuthExpiredError),
    ("error_busy", TransientPlatformError),
    ("error_param", PlatformAPIError),
])
async def test_body_errors_are_classified(settings, no_delay_retry, credential, error, expected):
    provider = make_provider(
        settings, no_delay_retry, lambda request: httpx.Response(200, json={"error": error, "message": "nope"})
    )
    with pytest.raises(expected):
        await provider.update_stock(credential, "123", 1)


async def test_item_not_found_error(settings, no_delay_retry, credential):
    provider = make_provider(
        settings, no_delay_retry,
        lambda request: httpx.Response(200, json={"error": "error_item_not_found", "message": "gone"}),
    )
    assert await provider.fetch_listing_state(credential, "123") is NOT_FOUND


async def test_fetch_listing_state(settings, no_delay_retry, credential):
    def handler(request):
        return httpx.Response(200, json={"error": "", "response": {"item_list": [{
            "item_id": 123, "item_status": "NORMAL",
            "stock_info_v2": {"summary_info": {"total_available_stock": 8}},
        }]}})

    state = await make_provider(settings, no_delay_retry, handler).fetch_listing_state(credential, "123")

    assert state.platform_product_id == "123"
    assert state.available_quantity == 8
    assert state.status == "NORMAL"


async def test_deleted_item_is_not_found(settings, no_delay_retry, credential):
    def handler(request):
        return httpx.Response(200, json={"error": "", "response": {"item_list": [{"item_id": 123, "item_status": "DELETED"}]}})

    assert await make_provider(settings, no_delay_retry, handler).fetch_listing_state(credential, "123") is NOT_FOUND


async def test_refresh_access_token(settings, no_delay_retry, credential):
    def handler(request):
        assert "access_token" not in request.url.params
        return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh", "expire_in": 14400})

    grant = await make_provider(settings, no_delay_retry, handler).refresh_access_token(credential)

    assert grant.access_token == "new-access"
    assert grant.refresh_token == "new-refresh"
