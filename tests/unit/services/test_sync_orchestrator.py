# tests/unit/services/test_sync_orchestrator.py
import asyncio
from datetime import timedelta

import pytest

from channel_sync.core.enums import AlertType, ListingSyncStatus, OrderStatus, PlatformName, RunOutcome, SyncTrigger
from channel_sync.core.exceptions import (
    AuthExpiredError,
    InvalidListingTransitionError,
    PlatformAPIError,
    RecordNotFoundError,
    SyncInProgressError,
    TransientPlatformError,
)
from channel_sync.core.utils import ensure_utc, utcnow
from channel_sync.schemas.credentials import CredentialCreate
from tests.mocks.mock_platform import FakeMarketplaceProvider


# ---------------------------------------------------------------------------
# Order import
# ---------------------------------------------------------------------------

async def test_run_sync_imports_orders_and_reports_counts(orchestrator, store, fake_provider):
    credential = store.add_credential()
    now = utcnow()
    fake_provider.add_order("ORD-1", now - timedelta(hours=2), status="paid")
    fake_provider.add_order("ORD-2", now - timedelta(hours=1), status="shipped")

    report = await orchestrator.run_sync("seller-1")

    assert report.synced == 2
    assert report.new == 2
    assert report.failed == 0
    assert report.per_platform["fakeshop"].synced == 2
    result = report.result_for(credential.id)
    assert result.outcome == RunOutcome.SUCCESS
    assert store.orders[("fakeshop", "ORD-2")].status == OrderStatus.SHIPPED.value
    assert store.orders[("fakeshop", "ORD-2")].raw_status == "shipped"
    assert store.orders[("fakeshop", "ORD-1")].seller_id == "seller-1"


async def test_upsert_is_idempotent_across_runs(orchestrator, store, fake_provider):
    store.add_credential()
    placed = utcnow() - timedelta(hours=1)
    fake_provider.add_order("ORD-1", placed)

    first = await orchestrator.run_sync("seller-1")
    second = await orchestrator.run_sync("seller-1")

    assert first.new == 1
    # The watermark is inclusive, so the same order comes back and is updated in place
    assert second.new == 0
    assert second.synced == 1
    assert len(store.orders) == 1


async def test_upsert_refresh_keeps_local_annotations(orchestrator, store, fake_provider):
    store.add_credential()
    raw = fake_provider.add_order("ORD-1", utcnow() - timedelta(hours=1), status="paid")
    await orchestrator.run_sync("seller-1")

    stored = store.orders[("fakeshop", "ORD-1")]
    stored.notes = "Call the buyer"
    stored.tags = ["vip"]
    raw.payload["status"] = "cancelled"

    await orchestrator.run_sync("seller-1")

    assert stored.status == OrderStatus.CANCELLED.value
    assert stored.notes == "Call the buyer"
    assert stored.tags == ["vip"]


async def test_watermark_advances_to_newest_order(orchestrator, store, fake_provider):
    credential = store.add_credential()
    newest = utcnow() - timedelta(minutes=5)
    fake_provider.add_order("ORD-1", newest - timedelta(hours=3))
    fake_provider.add_order("ORD-2", newest)

    await orchestrator.run_sync("seller-1")
    assert ensure_utc(credential.order_watermark) == newest

    await orchestrator.run_sync("seller-1")
    assert fake_provider.fetch_calls[-1]["since"] == newest


async def test_first_run_uses_initial_lookback(orchestrator, store, fake_provider, settings):
    store.add_credential()
    before = utcnow()

    await orchestrator.run_sync("seller-1")

    since = fake_provider.fetch_calls[0]["since"]
    expected = before - timedelta(days=settings.SYNC_INITIAL_LOOKBACK_DAYS)
    assert abs((since - expected).total_seconds()) < 5


async def test_mapping_defects_are_counted_without_aborting_batch(orchestrator, store, fake_provider):
    credential = store.add_credential()
    now = utcnow()
    fake_provider.add_order("ORD-1", now - timedelta(hours=1))
    fake_provider.add_order(None, now - timedelta(hours=1))
    fake_provider.add_order("ORD-3", None)

    report = await orchestrator.run_sync("seller-1")

    result = report.result_for(credential.id)
    assert report.synced == 1
    assert report.failed == 2
    assert result.outcome == RunOutcome.PARTIAL
    assert any("ORD-3" in error for error in result.errors)
    assert ("fakeshop", "ORD-1") in store.orders


async def test_storage_failure_holds_the_watermark(orchestrator, store, fake_provider):
    credential = store.add_credential()
    now = utcnow()
    fake_provider.add_order("ORD-1", now - timedelta(hours=2))
    fake_provider.add_order("ORD-2", now - timedelta(hours=1))
    store.failing_order_ids.add("ORD-2")

    report = await orchestrator.run_sync("seller-1")

    assert report.failed == 1
    assert report.synced == 1
    assert credential.order_watermark is None


async def test_failed_commit_reports_no_stored_orders(orchestrator, store, fake_provider):
    credential = store.add_credential()
    now = utcnow()
    fake_provider.add_order("ORD-1", now - timedelta(hours=2))
    fake_provider.add_order("ORD-2", now - timedelta(hours=1))
    store.fail_order_commits = True

    report = await orchestrator.run_sync("seller-1")

    result = report.result_for(credential.id)
    assert result.outcome == RunOutcome.FAILED
    assert result.orders_new == 0
    assert result.orders_updated == 0
    assert result.orders_failed == 2
    assert report.synced == 0
    assert report.failed == 2
    assert store.sync_runs[0].orders_new == 0


async def test_order_owned_by_another_seller_is_not_taken_over(orchestrator, store, fake_provider):
    store.add_credential(seller_id="seller-2", external_account_id="acct-2")
    store.add_credential(seller_id="seller-1", external_account_id="acct-1")
    fake_provider.add_order("ORD-1", utcnow() - timedelta(hours=1), account="acct-2")
    await orchestrator.run_sync("seller-2")

    # The same platform order id shows up under seller-1's account
    fake_provider.add_order("ORD-1", utcnow() - timedelta(minutes=30), account="acct-1")
    report = await orchestrator.run_sync("seller-1")

    assert report.failed == 1
    assert report.synced == 0
    assert store.orders[("fakeshop", "ORD-1")].seller_id == "seller-2"


async def test_run_sync_only_touches_requested_platform(orchestrator, store, fake_provider, registry):
    other = FakeMarketplaceProvider(platform="othershop")
    registry.register(other)
    store.add_credential(platform="fakeshop")
    store.add_credential(platform="othershop", external_account_id="acct-9")

    report = await orchestrator.run_sync("seller-1", "othershop")

    assert [r.platform for r in report.credentials] == ["othershop"]
    assert fake_provider.fetch_calls == []
    assert len(other.fetch_calls) == 1


async def test_unregistered_platform_is_skipped(orchestrator, store):
    credential = store.add_credential(platform="nowhere")

    report = await orchestrator.run_sync("seller-1")

    assert report.result_for(credential.id).outcome == RunOutcome.SKIPPED


async def test_order_fetch_failure_fails_only_that_credential(orchestrator, store, fake_provider):
    credential = store.add_credential()
    fake_provider.fail_orders_with = TransientPlatformError("503 from platform", platform="fakeshop")

    report = await orchestrator.run_sync("seller-1")

    result = report.result_for(credential.id)
    assert result.outcome == RunOutcome.FAILED
    assert not result.requires_reconnect
    assert credential.revoked is False
    assert credential.last_sync_status == RunOutcome.FAILED.value


async def test_run_is_recorded_per_credential(orchestrator, store, fake_provider):
    credential = store.add_credential()
    fake_provider.add_order("ORD-1", utcnow() - timedelta(hours=1))

    report = await orchestrator.run_sync("seller-1", trigger=SyncTrigger.SCHEDULED)

    assert len(store.sync_runs) == 1
    run = store.sync_runs[0]
    assert run.sync_run_id == report.sync_run_id
    assert run.trigger == "scheduled"
    assert run.outcome == "success"
    assert run.orders_new == 1
    assert credential.last_sync_at is not None
    assert credential.last_sync_status == "success"


# ---------------------------------------------------------------------------
# Credential failures
# ---------------------------------------------------------------------------

async def test_expired_credential_reports_auth_expired_and_others_continue(orchestrator, store, fake_provider):
    expired = store.add_credential(external_account_id="acct-old", expires_at=utcnow() - timedelta(minutes=1))
    healthy = store.add_credential(external_account_id="acct-ok")
    product = store.add_product(stock_quantity=3)
    listing = store.add_listing(product, expired, "EXT-OLD")
    fake_provider.add_order("ORD-1", utcnow() - timedelta(hours=1), account="acct-ok")
    fake_provider.add_order("ORD-2", utcnow() - timedelta(hours=1), account="acct-old")

    report = await orchestrator.run_sync("seller-1")

    expired_result = report.result_for(expired.id)
    assert expired_result.outcome == RunOutcome.AUTH_EXPIRED
    assert expired_result.requires_reconnect is True
    assert expired_result.orders_fetched == 0
    assert [c["credential_id"] for c in fake_provider.fetch_calls] == [healthy.id]

    assert report.result_for(healthy.id).outcome == RunOutcome.SUCCESS
    assert report.synced == 1
    assert report.per_platform["fakeshop"].auth_expired == 1

    assert listing.sync_status == ListingSyncStatus.TOKEN_EXPIRED.value
    # A token that simply ran out stays active for the refresh job
    assert expired.revoked is False
    assert len(store.events_of(AlertType.CREDENTIAL_EXPIRED.value)) == 1


async def test_remote_unauthorized_revokes_credential(orchestrator, store, fake_provider, alerts):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential)
    fake_provider.fail_orders_with = AuthExpiredError("401 Unauthorized", platform="fakeshop", status_code=401)

    report = await orchestrator.run_sync("seller-1")

    assert report.result_for(credential.id).outcome == RunOutcome.AUTH_EXPIRED
    assert credential.revoked is True
    assert credential.revoked_reason == "remote_unauthorized"
    assert listing.sync_status == ListingSyncStatus.TOKEN_EXPIRED.value
    assert [a.alert_type for a in alerts] == [AlertType.CREDENTIAL_REVOKED]
    # Revoked credentials are no longer part of later sweeps
    again = await orchestrator.run_sync("seller-1")
    assert again.credentials == []


async def test_auth_expiry_keeps_disconnected_listings(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product()
    gone = store.add_listing(product, credential, "EXT-GONE", ListingSyncStatus.DISCONNECTED)
    fake_provider.fail_orders_with = AuthExpiredError("401", platform="fakeshop")

    await orchestrator.run_sync("seller-1")

    assert gone.sync_status == ListingSyncStatus.DISCONNECTED.value


async def test_reconnect_after_unauthorized_recovers_listings(orchestrator, store, registry):
    mercadolivre = FakeMarketplaceProvider("mercadolivre")
    registry.register(mercadolivre)
    handover = dict(seller_id="seller-1", platform=PlatformName.MERCADOLIVRE, external_account_id="123456")

    first = await orchestrator.credential_service.register_credential(
        CredentialCreate(access_token="APP_USR-1", **handover)
    )
    product = store.add_product(stock_quantity=5)
    listing = store.add_listing(product, store.credentials[first.id], "MLB1")
    mercadolivre.set_listing("MLB1", 5)
    placed = utcnow() - timedelta(hours=1)
    mercadolivre.add_order("ORD-1", placed)
    await orchestrator.run_sync("seller-1")

    mercadolivre.fail_orders_with = AuthExpiredError("401 Unauthorized", platform="mercadolivre", status_code=401)
    await orchestrator.run_sync("seller-1")
    assert listing.sync_status == ListingSyncStatus.TOKEN_EXPIRED.value
    assert store.credentials[first.id].revoked is True

    mercadolivre.fail_orders_with = None
    second = await orchestrator.credential_service.register_credential(
        CredentialCreate(access_token="APP_USR-2", **handover)
    )

    assert second.id != first.id
    assert listing.integration_id == second.id
    assert ensure_utc(store.credentials[second.id].order_watermark) == placed

    report = await orchestrator.run_sync("seller-1")

    assert report.result_for(second.id).listings_checked == 1
    assert mercadolivre.fetch_calls[-1]["since"] == placed
    assert listing.sync_status == ListingSyncStatus.SYNCHRONIZED.value

    snapshot = await orchestrator.resync_listing(listing.id)
    assert snapshot.sync_status == ListingSyncStatus.SYNCHRONIZED


# ---------------------------------------------------------------------------
# Listing sweep
# ---------------------------------------------------------------------------

async def test_remote_stock_difference_marks_divergent_without_touching_central(
    orchestrator, store, fake_provider, alerts
):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=7)
    listing = store.add_listing(product, credential, "EXT-1")
    fake_provider.set_listing("EXT-1", 10)

    report = await orchestrator.run_sync("seller-1")

    assert listing.sync_status == ListingSyncStatus.DIVERGENT.value
    assert listing.remote_stock == 10
    assert product.stock_quantity == 7
    assert fake_provider.stock_updates == []
    assert report.result_for(credential.id).listings_checked == 1
    assert [a.alert_type for a in alerts] == [AlertType.DIVERGENCE_DETECTED]

    # Seller fixes the marketplace by hand
    fake_provider.set_listing("EXT-1", 7)
    await orchestrator.run_sync("seller-1")

    assert listing.sync_status == ListingSyncStatus.SYNCHRONIZED.value
    assert alerts[-1].alert_type == AlertType.DIVERGENCE_RESOLVED


async def test_divergence_is_alerted_once(orchestrator, store, fake_provider, alerts):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=7)
    store.add_listing(product, credential, "EXT-1")
    fake_provider.set_listing("EXT-1", 10)

    await orchestrator.run_sync("seller-1")
    await orchestrator.run_sync("seller-1")

    assert [a.alert_type for a in alerts] == [AlertType.DIVERGENCE_DETECTED]


async def test_disconnected_is_sticky_until_found_again(orchestrator, store, fake_provider, alerts):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=4)
    listing = store.add_listing(product, credential, "EXT-1")

    # Not present remotely
    await orchestrator.run_sync("seller-1")
    assert listing.sync_status == ListingSyncStatus.DISCONNECTED.value
    assert len(store.events_of(AlertType.LISTING_DISCONNECTED.value)) == 1

    fake_provider.listing_errors["EXT-1"] = TransientPlatformError("timeout", platform="fakeshop")
    report = await orchestrator.run_sync("seller-1")
    assert listing.sync_status == ListingSyncStatus.DISCONNECTED.value
    assert report.result_for(credential.id).outcome == RunOutcome.PARTIAL

    # Still not found: no second alert
    del fake_provider.listing_errors["EXT-1"]
    await orchestrator.run_sync("seller-1")
    assert len(store.events_of(AlertType.LISTING_DISCONNECTED.value)) == 1

    fake_provider.set_listing("EXT-1", 4)
    await orchestrator.run_sync("seller-1")
    assert listing.sync_status == ListingSyncStatus.SYNCHRONIZED.value


async def test_transient_listing_error_marks_error(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1")
    fake_provider.listing_errors["EXT-1"] = TransientPlatformError("429 Too Many Requests", platform="fakeshop")

    report = await orchestrator.run_sync("seller-1")

    assert listing.sync_status == ListingSyncStatus.ERROR.value
    assert "429" in listing.sync_error
    assert report.result_for(credential.id).listings_failed == 1


async def test_unpublished_listings_are_not_swept(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, None, ListingSyncStatus.NOT_PUBLISHED)

    report = await orchestrator.run_sync("seller-1")

    assert report.result_for(credential.id).listings_checked == 0
    assert listing.sync_status == ListingSyncStatus.NOT_PUBLISHED.value


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

async def test_concurrent_runs_for_same_seller_serialize(orchestrator, store, fake_provider):
    store.add_credential()
    fake_provider.add_order("ORD-1", utcnow() - timedelta(hours=1))
    fake_provider.delay = 0.05

    first, second = await asyncio.gather(
        orchestrator.run_sync("seller-1"),
        orchestrator.run_sync("seller-1"),
    )

    assert fake_provider.max_active_calls == 1
    assert len(store.orders) == 1
    assert sorted([first.new, second.new]) == [0, 1]


async def test_busy_seller_rejects_non_waiting_run(orchestrator, store, fake_provider):
    store.add_credential()
    fake_provider.delay = 0.05

    running = asyncio.create_task(orchestrator.run_sync("seller-1"))
    await asyncio.sleep(0.01)
    with pytest.raises(SyncInProgressError):
        await orchestrator.run_sync("seller-1", wait=False)
    await running


async def test_different_sellers_run_in_parallel(orchestrator, store, fake_provider):
    store.add_credential(seller_id="seller-1", external_account_id="acct-1")
    store.add_credential(seller_id="seller-2", external_account_id="acct-2")
    fake_provider.delay = 0.05

    await asyncio.gather(orchestrator.run_sync("seller-1"), orchestrator.run_sync("seller-2"))

    assert fake_provider.max_active_calls == 2


async def test_failed_seller_does_not_affect_another_seller(orchestrator, store, fake_provider):
    failing = store.add_credential(seller_id="seller-1", external_account_id="acct-1")
    healthy = store.add_credential(seller_id="seller-2", external_account_id="acct-2")
    placed = utcnow() - timedelta(hours=1)
    fake_provider.add_order("ORD-1", placed, account="acct-1")
    fake_provider.add_order("ORD-2", placed, account="acct-2")
    fake_provider.account_errors["acct-1"] = TransientPlatformError("503 from platform", platform="fakeshop")

    first, second = await asyncio.gather(orchestrator.run_sync("seller-1"), orchestrator.run_sync("seller-2"))

    assert first.result_for(failing.id).outcome == RunOutcome.FAILED
    assert failing.order_watermark is None

    assert second.result_for(healthy.id).outcome == RunOutcome.SUCCESS
    assert second.synced == 1
    assert second.failed == 0
    assert ensure_utc(healthy.order_watermark) == placed
    assert store.orders[("fakeshop", "ORD-2")].seller_id == "seller-2"
    assert ("fakeshop", "ORD-1") not in store.orders


async def test_run_scheduled_covers_every_seller(orchestrator, store, fake_provider):
    store.add_credential(seller_id="seller-1", external_account_id="acct-1")
    store.add_credential(seller_id="seller-2", external_account_id="acct-2")
    store.add_credential(seller_id="seller-3", external_account_id="acct-3", revoked=True)

    reports = await orchestrator.run_scheduled()

    assert sorted(r.seller_id for r in reports) == ["seller-1", "seller-2"]
    assert all(r.trigger == SyncTrigger.SCHEDULED for r in reports)


# ---------------------------------------------------------------------------
# Corrective actions
# ---------------------------------------------------------------------------

async def test_republish_goes_through_not_published(orchestrator, store, fake_provider, alerts):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=5)
    listing = store.add_listing(product, credential, "EXT-OLD", ListingSyncStatus.DISCONNECTED)

    snapshot = await orchestrator.republish(listing.id)

    assert snapshot.sync_status == ListingSyncStatus.NOT_PUBLISHED
    assert snapshot.platform_product_id != "EXT-OLD"
    assert listing.republished_at is not None
    assert fake_provider.published[0].sku == product.sku
    assert fake_provider.published[0].stock_quantity == 5
    assert alerts[-1].alert_type == AlertType.LISTING_REPUBLISHED
    assert alerts[-1].details["previous_external_id"] == "EXT-OLD"

    # Confirmed on the next sweep
    await orchestrator.run_sync("seller-1")
    assert listing.sync_status == ListingSyncStatus.SYNCHRONIZED.value


async def test_republish_requires_disconnected_listing(orchestrator, store):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1", ListingSyncStatus.SYNCHRONIZED)

    with pytest.raises(InvalidListingTransitionError):
        await orchestrator.republish(listing.id)


async def test_republish_with_revoked_credential_requires_reconnect(orchestrator, store):
    credential = store.add_credential(revoked=True)
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1", ListingSyncStatus.DISCONNECTED)

    with pytest.raises(AuthExpiredError):
        await orchestrator.republish(listing.id)


async def test_republish_failure_leaves_listing_disconnected(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1", ListingSyncStatus.DISCONNECTED)
    fake_provider.publish_error = PlatformAPIError("category required", platform="fakeshop")

    with pytest.raises(PlatformAPIError):
        await orchestrator.republish(listing.id)

    assert listing.sync_status == ListingSyncStatus.DISCONNECTED.value
    assert listing.platform_product_id == "EXT-1"


async def test_resync_pushes_central_stock_and_reobserves(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=7)
    listing = store.add_listing(product, credential, "EXT-1", ListingSyncStatus.DIVERGENT)
    fake_provider.set_listing("EXT-1", 10)

    snapshot = await orchestrator.resync_listing(listing.id)

    assert fake_provider.stock_updates == [("EXT-1", 7)]
    assert snapshot.sync_status == ListingSyncStatus.SYNCHRONIZED
    assert snapshot.remote_stock == 7


async def test_resync_reflects_platform_error_in_snapshot(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1")
    fake_provider.update_error = TransientPlatformError("502", platform="fakeshop")

    snapshot = await orchestrator.resync_listing(listing.id)

    assert snapshot.sync_status == ListingSyncStatus.ERROR


async def test_resync_rejects_disconnected_listing(orchestrator, store):
    credential = store.add_credential()
    product = store.add_product()
    listing = store.add_listing(product, credential, "EXT-1", ListingSyncStatus.DISCONNECTED)

    with pytest.raises(InvalidListingTransitionError):
        await orchestrator.resync_listing(listing.id)


async def test_unknown_listing_raises_not_found(orchestrator):
    with pytest.raises(RecordNotFoundError):
        await orchestrator.republish(999)


# ---------------------------------------------------------------------------
# Read models and housekeeping
# ---------------------------------------------------------------------------

async def test_listings_for_product(orchestrator, store):
    credential = store.add_credential()
    product = store.add_product()
    store.add_listing(product, credential, "EXT-1")

    snapshots = await orchestrator.listings_for_product(product.id)

    assert [s.platform_product_id for s in snapshots] == ["EXT-1"]
    with pytest.raises(RecordNotFoundError):
        await orchestrator.listings_for_product(12345)


async def test_purge_events_drops_old_rows(orchestrator, store, fake_provider):
    credential = store.add_credential()
    product = store.add_product(stock_quantity=7)
    store.add_listing(product, credential, "EXT-1")
    await orchestrator.run_sync("seller-1")  # listing missing remotely -> one alert row
    store.sync_events[0].detected_at = utcnow() - timedelta(days=40)

    deleted = await orchestrator.purge_events(older_than_days=30)

    assert deleted == 1
    assert store.sync_events == []
