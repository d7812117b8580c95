# channel_sync/services/reconciliation_service.py
"""
Listing reconciliation state machine.

next_status() is the whole transition table as a pure function:

    not_published + observed       -> synchronized (divergent if stock differs)
    synchronized  + remote==central -> synchronized
    synchronized  + remote!=central -> divergent      (divergence_detected)
    divergent     + remote==central -> synchronized   (divergence_resolved)
    any           + not found       -> disconnected   (listing_disconnected)
    any           + auth expired    -> token_expired  (disconnected is kept)
    any           + transient       -> error          (disconnected / token_expired are kept)
    disconnected  + republished     -> not_published  (listing_republished)

ListingReconciler applies a transition to a stored listing under a per-listing
lock, persists it together with any alert row, then publishes the alert.
Central stock is only ever read here.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from channel_sync.core.enums import AlertType, ListingEvent, ListingSyncStatus
from channel_sync.core.exceptions import InvalidListingTransitionError, RecordNotFoundError
from channel_sync.core.utils import KeyedLocks, utcnow
from channel_sync.integrations.events import SyncAlertEvent
from channel_sync.schemas.listings import ListingObservation, ListingSnapshot
from channel_sync.services.notification_service import SyncAlertNotifier
from channel_sync.services.repository import RepositoryFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    previous: ListingSyncStatus
    next: ListingSyncStatus
    alert: Optional[AlertType] = None
    sync_error: Optional[str] = None
    # True when a sticky status absorbed the event; the stored error is left as is
    sticky: bool = False

    @property
    def changed(self) -> bool:
        return self.previous != self.next


def next_status(
    current: ListingSyncStatus,
    event: ListingEvent,
    *,
    central_stock: Optional[int] = None,
    remote_stock: Optional[int] = None,
    error_message: Optional[str] = None,
) -> Transition:
    """
    Compute the next listing status.

    Raises:
        InvalidListingTransitionError: REPUBLISHED from anything but DISCONNECTED
    """
    current = ListingSyncStatus(current)

    if event == ListingEvent.NOT_FOUND:
        alert = None if current == ListingSyncStatus.DISCONNECTED else AlertType.LISTING_DISCONNECTED
        return Transition(
            current, ListingSyncStatus.DISCONNECTED, alert,
            sync_error=error_message or "Listing no longer exists on the platform",
        )

    if event == ListingEvent.AUTH_EXPIRED:
        if current == ListingSyncStatus.DISCONNECTED:
            return Transition(current, current, sticky=True)
        return Transition(
            current, ListingSyncStatus.TOKEN_EXPIRED,
            sync_error=error_message or "Marketplace credential expired; reconnect the account",
        )

    if event == ListingEvent.TRANSIENT_ERROR:
        if current in (ListingSyncStatus.DISCONNECTED, ListingSyncStatus.TOKEN_EXPIRED):
            return Transition(current, current, sticky=True)
        return Transition(current, ListingSyncStatus.ERROR, sync_error=error_message or "Temporary platform error")

    if event == ListingEvent.REPUBLISHED:
        if current != ListingSyncStatus.DISCONNECTED:
            raise InvalidListingTransitionError(
                f"Only disconnected listings can be republished (status is {current.value})"
            )
        return Transition(current, ListingSyncStatus.NOT_PUBLISHED, AlertType.LISTING_REPUBLISHED)

    if event == ListingEvent.REMOTE_OBSERVED:
        if remote_stock is None:
            # Nothing to compare; a known divergence stays reported
            if current == ListingSyncStatus.DIVERGENT:
                return Transition(current, current)
            return Transition(current, ListingSyncStatus.SYNCHRONIZED)

        if central_stock is not None and remote_stock != central_stock:
            alert = None if current == ListingSyncStatus.DIVERGENT else AlertType.DIVERGENCE_DETECTED
            return Transition(
                current, ListingSyncStatus.DIVERGENT, alert,
                sync_error=f"Remote stock {remote_stock} differs from central stock {central_stock}",
            )

        alert = AlertType.DIVERGENCE_RESOLVED if current == ListingSyncStatus.DIVERGENT else None
        return Transition(current, ListingSyncStatus.SYNCHRONIZED, alert)

    raise ValueError(f"Unknown listing event: {event}")


class ListingReconciler:
    def __init__(
        self,
        repository_factory: RepositoryFactory,
        notifier: SyncAlertNotifier,
        locks: Optional[KeyedLocks] = None,
    ):
        self.repository_factory = repository_factory
        self.notifier = notifier
        self.locks = locks or KeyedLocks()

    async def apply(
        self,
        listing_id: int,
        event: ListingEvent,
        *,
        observation: Optional[ListingObservation] = None,
        error_message: Optional[str] = None,
        sync_run_id: Optional[str] = None,
        new_platform_product_id: Optional[str] = None,
        platform_url: Optional[str] = None,
    ) -> ListingSnapshot:
        if event == ListingEvent.REMOTE_OBSERVED and observation is None:
            raise ValueError("REMOTE_OBSERVED requires an observation")
        if event == ListingEvent.REPUBLISHED and not new_platform_product_id:
            raise ValueError("REPUBLISHED requires the new platform product id")

        alert: Optional[SyncAlertEvent] = None

        async with self.locks.hold(("listing", listing_id)):
            async with self.repository_factory() as repo:
                listing = await repo.get_listing(listing_id)
                if listing is None:
                    raise RecordNotFoundError(f"Listing {listing_id} not found")
                product = await repo.get_product(listing.product_id)
                if product is None:
                    raise RecordNotFoundError(f"Product {listing.product_id} not found")

                transition = next_status(
                    ListingSyncStatus(listing.sync_status),
                    event,
                    central_stock=product.stock_quantity,
                    remote_stock=observation.remote_stock if observation else None,
                    error_message=error_message,
                )

                now = utcnow()
                previous_external_id = listing.platform_product_id
                listing.sync_status = transition.next.value
                if not transition.sticky:
                    listing.sync_error = transition.sync_error
                listing.last_checked_at = now

                if event == ListingEvent.REMOTE_OBSERVED:
                    listing.remote_stock = observation.remote_stock
                    listing.remote_status = observation.remote_status
                    if observation.platform_url:
                        listing.platform_url = observation.platform_url
                    listing.last_sync_at = now
                elif event == ListingEvent.REPUBLISHED:
                    listing.platform_product_id = new_platform_product_id
                    listing.platform_url = platform_url
                    listing.remote_stock = None
                    listing.remote_status = None
                    listing.republished_at = now

                await repo.save_listing(listing)

                if transition.alert is not None:
                    alert = SyncAlertEvent(
                        alert_type=transition.alert,
                        seller_id=product.seller_id,
                        platform=listing.platform,
                        credential_id=listing.integration_id,
                        listing_id=listing.id,
                        product_id=product.id,
                        external_id=listing.platform_product_id,
                        sync_run_id=sync_run_id,
                        details={
                            "previous_status": transition.previous.value,
                            "status": transition.next.value,
                            "central_stock": product.stock_quantity,
                            "remote_stock": listing.remote_stock,
                            "previous_external_id": previous_external_id,
                        },
                        detected_at=now,
                    )
                    await repo.add_sync_event(alert.to_record())

                snapshot = ListingSnapshot.from_orm_model(listing)

        if transition.changed:
            logger.info(
                f"Listing {listing_id} ({snapshot.platform}): "
                f"{transition.previous.value} -> {transition.next.value} on {event.value}"
            )
        if alert is not None:
            await self.notifier.publish(alert)
        return snapshot
