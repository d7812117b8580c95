# channel_sync/services/sync_services.py
"""
Central service for synchronizing a seller's marketplace accounts.

This service coordinates:
1. Order import per credential (fetch since watermark -> map -> idempotent upsert)
2. The listing sweep feeding the reconciliation state machine
3. Credential failure handling (expired / revoked tokens)
4. Run reports and the sync_runs bookkeeping
5. Corrective actions: republish and stock re-sync of a single listing

Concurrency: one sweep per seller at a time (a second caller waits, or gets
SyncInProgressError with wait=False); credentials of a seller fan out up to
SYNC_MAX_CONCURRENT_CREDENTIALS; listing writes are serialized per listing by
the reconciler.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from channel_sync.core.config import Settings, get_settings
from channel_sync.core.enums import (
    AlertType,
    ListingEvent,
    ListingSyncStatus,
    RevocationReason,
    RunOutcome,
    SyncTrigger,
)
from channel_sync.core.exceptions import (
    AuthExpiredError,
    BaseServiceError,
    InvalidListingTransitionError,
    ListingNotFoundError,
    PlatformAPIError,
    ProviderNotRegisteredError,
    RecordNotFoundError,
    RepositoryError,
    SyncInProgressError,
    TransientPlatformError,
)
from channel_sync.core.utils import KeyedLocks, ensure_utc, utcnow
from channel_sync.integrations.base import NOT_FOUND, CredentialContext, MarketplaceOrderProvider
from channel_sync.integrations.events import SyncAlertEvent
from channel_sync.integrations.registry import ProviderRegistry
from channel_sync.models.sync_run import SyncRun
from channel_sync.schemas.credentials import CredentialStatus
from channel_sync.schemas.listings import ListingDraft, ListingSnapshot
from channel_sync.schemas.sync import CredentialRunResult, RunReport
from channel_sync.services.credential_service import CredentialService, open_context
from channel_sync.services.mapping_service import map_listing_state, map_orders
from channel_sync.services.notification_service import SyncAlertNotifier
from channel_sync.services.reconciliation_service import ListingReconciler
from channel_sync.services.repository import RepositoryFactory

logger = logging.getLogger(__name__)

# Cap on per-record error strings carried in a report
MAX_REPORTED_ERRORS = 20


class SyncOrchestrator:
    def __init__(
        self,
        repository_factory: RepositoryFactory,
        registry: ProviderRegistry,
        notifier: Optional[SyncAlertNotifier] = None,
        credential_service: Optional[CredentialService] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository_factory = repository_factory
        self.registry = registry
        self.settings = settings or get_settings()
        self.notifier = notifier or SyncAlertNotifier()
        self.credential_service = credential_service or CredentialService(
            repository_factory, self.notifier, registry, self.settings
        )
        self.seller_locks = KeyedLocks()
        self.action_locks = KeyedLocks()
        self.reconciler = ListingReconciler(repository_factory, self.notifier, KeyedLocks())

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------
    async def run_sync(
        self,
        seller_id: str,
        platform: Optional[str] = None,
        *,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
        wait: bool = True,
    ) -> RunReport:
        """
        Sync every active credential of a seller (optionally one platform).

        Raises:
            SyncInProgressError: wait=False and a sweep for the seller is running
        """
        if not wait and self.seller_locks.locked(seller_id):
            raise SyncInProgressError(f"A sync for seller {seller_id} is already running")

        async with self.seller_locks.hold(seller_id):
            return await self._run_locked(seller_id, platform, trigger)

    async def _run_locked(self, seller_id: str, platform: Optional[str], trigger: SyncTrigger) -> RunReport:
        sync_run_id = str(uuid.uuid4())
        started_at = utcnow()

        async with self.repository_factory() as repo:
            credential_ids = [c.id for c in await repo.list_active_credentials(seller_id, platform)]

        logger.info(
            f"Sync {sync_run_id} started for seller {seller_id} "
            f"({len(credential_ids)} credentials, platform={platform or 'all'}, trigger={trigger.value})"
        )

        slots = asyncio.Semaphore(self.settings.SYNC_MAX_CONCURRENT_CREDENTIALS)

        async def guarded(credential_id: int) -> CredentialRunResult:
            async with slots:
                return await self._sync_credential(credential_id, seller_id, sync_run_id, trigger)

        outcomes = await asyncio.gather(*(guarded(cid) for cid in credential_ids), return_exceptions=True)

        results: List[CredentialRunResult] = []
        for credential_id, outcome in zip(credential_ids, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(f"Unexpected error syncing credential {credential_id}", exc_info=outcome)
                results.append(CredentialRunResult(
                    credential_id=credential_id,
                    platform="unknown",
                    outcome=RunOutcome.FAILED,
                    errors=[f"Unexpected error: {outcome}"],
                ))
            else:
                results.append(outcome)

        report = RunReport.from_results(
            sync_run_id=sync_run_id,
            seller_id=seller_id,
            trigger=trigger,
            started_at=started_at,
            finished_at=utcnow(),
            results=results,
        )
        logger.info(
            f"Sync {sync_run_id} finished for seller {seller_id}: "
            f"synced={report.synced} new={report.new} failed={report.failed}"
        )
        return report

    async def run_scheduled(self) -> List[RunReport]:
        """Sweep every seller with an active credential. Sellers already syncing are skipped."""
        async with self.repository_factory() as repo:
            sellers = await repo.list_sellers_with_active_credentials()

        slots = asyncio.Semaphore(self.settings.SYNC_MAX_CONCURRENT_SELLERS)

        async def one(seller_id: str) -> Optional[RunReport]:
            async with slots:
                try:
                    return await self.run_sync(seller_id, trigger=SyncTrigger.SCHEDULED, wait=False)
                except SyncInProgressError:
                    logger.info(f"Skipping seller {seller_id}: sync already in progress")
                    return None

        outcomes = await asyncio.gather(*(one(s) for s in sellers), return_exceptions=True)

        reports: List[RunReport] = []
        for seller_id, outcome in zip(sellers, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error(f"Scheduled sync failed for seller {seller_id}", exc_info=outcome)
            elif outcome is not None:
                reports.append(outcome)
        return reports

    # ------------------------------------------------------------------
    # Per credential
    # ------------------------------------------------------------------
    async def _sync_credential(
        self, credential_id: int, seller_id: str, sync_run_id: str, trigger: SyncTrigger
    ) -> CredentialRunResult:
        started_at = utcnow()

        async with self.repository_factory() as repo:
            credential = await repo.get_credential(credential_id)
            if credential is None or credential.revoked:
                return CredentialRunResult(
                    credential_id=credential_id,
                    platform=credential.platform if credential else "unknown",
                    outcome=RunOutcome.SKIPPED,
                    errors=["Credential revoked before the sync reached it"],
                )
            result = CredentialRunResult(
                credential_id=credential_id,
                platform=credential.platform,
                account=credential.account_name or credential.external_account_id,
                outcome=RunOutcome.SUCCESS,
            )
            watermark = ensure_utc(credential.order_watermark)
            expired = credential.is_expired(started_at)
            expires_at = ensure_utc(credential.expires_at)

        try:
            provider = self.registry.get(result.platform)
        except ProviderNotRegisteredError as e:
            result.outcome = RunOutcome.SKIPPED
            result.errors.append(str(e))
            await self._record_run(result, seller_id, sync_run_id, trigger, started_at)
            return result

        try:
            if expired:
                raise AuthExpiredError(f"Access token expired at {expires_at.isoformat()}", platform=result.platform)

            async with self.repository_factory() as repo:
                context = open_context(await repo.get_credential(credential_id))

            await self._sync_orders(provider, context, seller_id, watermark, result)
            await self._sweep_listings(provider, context, sync_run_id, result)

        except AuthExpiredError as e:
            logger.warning(f"Credential {credential_id} ({result.platform}) needs reconnection: {e}")
            result.outcome = RunOutcome.AUTH_EXPIRED
            result.requires_reconnect = True
            result.errors.append(str(e))
            # Locally expired credentials stay active for the refresh job; remote rejections revoke
            await self._handle_auth_expired(
                credential_id, seller_id, result.platform, sync_run_id, str(e), revoke=not expired
            )
        except BaseServiceError as e:
            logger.error(f"Sync of credential {credential_id} ({result.platform}) failed: {e}")
            result.outcome = RunOutcome.FAILED
            result.errors.append(str(e))
        else:
            if result.orders_failed or result.listings_failed:
                result.outcome = RunOutcome.PARTIAL

        await self._record_run(result, seller_id, sync_run_id, trigger, started_at)
        return result

    async def _sync_orders(
        self,
        provider: MarketplaceOrderProvider,
        context: CredentialContext,
        seller_id: str,
        watermark: Optional[datetime],
        result: CredentialRunResult,
    ) -> None:
        since = watermark or (utcnow() - timedelta(days=self.settings.SYNC_INITIAL_LOOKBACK_DAYS))
        raws = await provider.fetch_orders_since(context, since)
        result.orders_fetched = len(raws)

        batch = map_orders(raws, provider)
        result.orders_failed += len(batch.defects)
        for defect in batch.defects:
            self._add_error(result, f"Order {defect.record_ref or '<no id>'}: {defect.reason}")

        storage_failed = False
        newest: Optional[datetime] = None
        new = updated = 0

        # Orders and the watermark commit in one unit of work
        try:
            async with self.repository_factory() as repo:
                for order in batch.orders:
                    try:
                        created = await repo.upsert_order(seller_id, context.credential_id, order)
                    except RepositoryError as e:
                        storage_failed = True
                        result.orders_failed += 1
                        self._add_error(result, str(e))
                        continue

                    if created:
                        new += 1
                    else:
                        updated += 1
                    if newest is None or order.ordered_at > newest:
                        newest = order.ordered_at

                if newest is not None and not storage_failed:
                    credential = await repo.get_credential(context.credential_id)
                    current = ensure_utc(credential.order_watermark)
                    if current is None or newest > current:
                        credential.order_watermark = newest
                        await repo.save_credential(credential)
        except RepositoryError:
            # Nothing from this batch was committed
            result.orders_failed += new + updated
            raise

        result.orders_new += new
        result.orders_updated += updated

        logger.info(
            f"{provider.platform} credential {context.credential_id}: fetched={result.orders_fetched} "
            f"new={result.orders_new} updated={result.orders_updated} failed={result.orders_failed}"
        )

    async def _sweep_listings(
        self,
        provider: MarketplaceOrderProvider,
        context: CredentialContext,
        sync_run_id: str,
        result: CredentialRunResult,
    ) -> None:
        async with self.repository_factory() as repo:
            listings = [
                (listing.id, listing.platform_product_id)
                for listing in await repo.list_listings_for_credential(context.credential_id)
                if listing.platform_product_id
            ]

        for listing_id, external_id in listings:
            result.listings_checked += 1
            try:
                state = await provider.fetch_listing_state(context, external_id)
            except (TransientPlatformError, PlatformAPIError) as e:
                result.listings_failed += 1
                self._add_error(result, f"Listing {external_id}: {e}")
                await self._apply_quietly(listing_id, ListingEvent.TRANSIENT_ERROR, sync_run_id, error_message=str(e))
                continue

            if state is NOT_FOUND:
                await self._apply_quietly(listing_id, ListingEvent.NOT_FOUND, sync_run_id)
            else:
                await self._apply_quietly(
                    listing_id, ListingEvent.REMOTE_OBSERVED, sync_run_id, observation=map_listing_state(state)
                )

    async def _apply_quietly(self, listing_id: int, event: ListingEvent, sync_run_id: str, **kwargs) -> None:
        try:
            await self.reconciler.apply(listing_id, event, sync_run_id=sync_run_id, **kwargs)
        except RecordNotFoundError as e:
            # Listing removed locally while the sweep was running
            logger.info(str(e))

    async def _handle_auth_expired(
        self,
        credential_id: int,
        seller_id: str,
        platform: str,
        sync_run_id: Optional[str],
        message: str,
        revoke: bool,
    ) -> None:
        if revoke:
            await self.credential_service.revoke(
                credential_id, RevocationReason.REMOTE_UNAUTHORIZED, detail=message, sync_run_id=sync_run_id
            )
        else:
            alert = SyncAlertEvent(
                alert_type=AlertType.CREDENTIAL_EXPIRED,
                seller_id=seller_id,
                platform=platform,
                credential_id=credential_id,
                sync_run_id=sync_run_id,
                details={"detail": message},
            )
            async with self.repository_factory() as repo:
                await repo.add_sync_event(alert.to_record())
            await self.notifier.publish(alert)

        async with self.repository_factory() as repo:
            listing_ids = [listing.id for listing in await repo.list_listings_for_credential(credential_id)]
        for listing_id in listing_ids:
            await self._apply_quietly(listing_id, ListingEvent.AUTH_EXPIRED, sync_run_id, error_message=message)

    async def _record_run(
        self,
        result: CredentialRunResult,
        seller_id: str,
        sync_run_id: str,
        trigger: SyncTrigger,
        started_at: datetime,
    ) -> None:
        finished_at = utcnow()
        error_message = "; ".join(result.errors)[:2000] or None
        try:
            async with self.repository_factory() as repo:
                await repo.add_sync_run(SyncRun(
                    sync_run_id=sync_run_id,
                    seller_id=seller_id,
                    credential_id=result.credential_id,
                    platform=result.platform,
                    trigger=trigger.value,
                    outcome=result.outcome.value,
                    orders_fetched=result.orders_fetched,
                    orders_new=result.orders_new,
                    orders_updated=result.orders_updated,
                    orders_failed=result.orders_failed,
                    listings_checked=result.listings_checked,
                    listings_failed=result.listings_failed,
                    error_message=error_message,
                    started_at=started_at,
                    finished_at=finished_at,
                ))
                credential = await repo.get_credential(result.credential_id)
                if credential is not None:
                    credential.last_sync_at = finished_at
                    credential.last_sync_status = result.outcome.value
                    credential.last_sync_error = error_message
                    await repo.save_credential(credential)
        except RepositoryError as e:
            logger.error(f"Could not record sync run for credential {result.credential_id}: {e}")
            self._add_error(result, f"Run bookkeeping failed: {e}")

    @staticmethod
    def _add_error(result: CredentialRunResult, message: str) -> None:
        if len(result.errors) < MAX_REPORTED_ERRORS:
            result.errors.append(message)

    # ------------------------------------------------------------------
    # Corrective actions
    # ------------------------------------------------------------------
    async def _load_for_action(self, listing_id: int):
        async with self.repository_factory() as repo:
            listing = await repo.get_listing(listing_id)
            if listing is None:
                raise RecordNotFoundError(f"Listing {listing_id} not found")
            product = await repo.get_product(listing.product_id)
            if product is None:
                raise RecordNotFoundError(f"Product {listing.product_id} not found")
            credential = await repo.get_credential(listing.integration_id)
            if credential is None or credential.revoked:
                raise AuthExpiredError(
                    f"The {listing.platform} account for listing {listing_id} is disconnected; reconnect it first",
                    platform=listing.platform,
                )
            if credential.is_expired(utcnow()):
                raise AuthExpiredError(
                    f"The {listing.platform} access token has expired; reconnect the account",
                    platform=listing.platform,
                )
            return listing, product, open_context(credential)

    async def republish(self, listing_id: int) -> ListingSnapshot:
        """
        Recreate a disconnected listing on its platform from the central product.

        The listing moves to not_published with the new external id; it becomes
        synchronized only after the next confirmed observation.
        """
        async with self.action_locks.hold(listing_id):
            listing, product, context = await self._load_for_action(listing_id)
            if ListingSyncStatus(listing.sync_status) != ListingSyncStatus.DISCONNECTED:
                raise InvalidListingTransitionError(
                    f"Only disconnected listings can be republished (status is {listing.sync_status})"
                )

            provider = self.registry.get(listing.platform)
            draft = ListingDraft(
                sku=product.sku,
                title=product.title,
                description=product.description,
                price=product.price,
                stock_quantity=product.stock_quantity,
                attributes=dict(listing.platform_metadata or {}),
            )
            try:
                state = await provider.publish_listing(context, draft)
            except AuthExpiredError as e:
                await self._handle_auth_expired(
                    context.credential_id, context.seller_id, listing.platform, None, str(e), revoke=True
                )
                raise

            logger.info(f"Republished listing {listing_id} on {listing.platform} as {state.platform_product_id}")
            return await self.reconciler.apply(
                listing_id,
                ListingEvent.REPUBLISHED,
                new_platform_product_id=state.platform_product_id,
                platform_url=state.url,
            )

    async def resync_listing(self, listing_id: int) -> ListingSnapshot:
        """
        Push central stock to the remote listing, then re-observe it.

        Platform failures are reflected in the returned snapshot's status rather
        than raised.
        """
        async with self.action_locks.hold(listing_id):
            listing, product, context = await self._load_for_action(listing_id)
            if ListingSyncStatus(listing.sync_status) == ListingSyncStatus.DISCONNECTED:
                raise InvalidListingTransitionError("Listing is disconnected; republish it instead")
            if not listing.platform_product_id:
                raise InvalidListingTransitionError("Listing has not been published yet")

            provider = self.registry.get(listing.platform)
            external_id = listing.platform_product_id
            try:
                await provider.update_stock(context, external_id, product.stock_quantity)
                state = await provider.fetch_listing_state(context, external_id)
            except ListingNotFoundError:
                state = NOT_FOUND
            except AuthExpiredError as e:
                await self._handle_auth_expired(
                    context.credential_id, context.seller_id, listing.platform, None, str(e), revoke=True
                )
                return await self.listing_snapshot(listing_id)
            except (TransientPlatformError, PlatformAPIError) as e:
                return await self.reconciler.apply(listing_id, ListingEvent.TRANSIENT_ERROR, error_message=str(e))

            if state is NOT_FOUND:
                return await self.reconciler.apply(listing_id, ListingEvent.NOT_FOUND)
            return await self.reconciler.apply(
                listing_id, ListingEvent.REMOTE_OBSERVED, observation=map_listing_state(state)
            )

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    async def listing_snapshot(self, listing_id: int) -> ListingSnapshot:
        async with self.repository_factory() as repo:
            listing = await repo.get_listing(listing_id)
            if listing is None:
                raise RecordNotFoundError(f"Listing {listing_id} not found")
            return ListingSnapshot.from_orm_model(listing)

    async def listings_for_product(self, product_id: int) -> List[ListingSnapshot]:
        async with self.repository_factory() as repo:
            if await repo.get_product(product_id) is None:
                raise RecordNotFoundError(f"Product {product_id} not found")
            return [ListingSnapshot.from_orm_model(l) for l in await repo.list_listings_for_product(product_id)]

    async def credentials_for_seller(self, seller_id: str) -> List[CredentialStatus]:
        return await self.credential_service.list_for_seller(seller_id)

    async def purge_events(self, older_than_days: Optional[int] = None) -> int:
        days = older_than_days if older_than_days is not None else self.settings.SYNC_EVENT_RETENTION_DAYS
        async with self.repository_factory() as repo:
            deleted = await repo.delete_sync_events_before(utcnow() - timedelta(days=days))
        logger.info(f"Purged {deleted} sync events older than {days} days")
        return deleted
