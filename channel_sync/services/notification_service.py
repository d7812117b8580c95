"""Fan-out of structured sync alerts to in-process subscribers."""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

from channel_sync.integrations.events import SyncAlertEvent

logger = logging.getLogger(__name__)

AlertSubscriber = Callable[[SyncAlertEvent], Union[None, Awaitable[None]]]


class SyncAlertNotifier:
    """
    Publishes SyncAlertEvent objects to subscribers (sync or async callables).

    A failing subscriber is logged and skipped; it never fails the sync that
    raised the alert. Alerts are persisted as SyncEvent rows before they are
    published, so nothing is lost if a subscriber is down.
    """

    def __init__(self, subscribers: Optional[List[AlertSubscriber]] = None):
        self._subscribers: List[AlertSubscriber] = list(subscribers or [])

    def subscribe(self, subscriber: AlertSubscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    async def publish(self, event: SyncAlertEvent) -> None:
        logger.info(
            "Alert %s for seller %s on %s (listing=%s, credential=%s)",
            event.alert_type.value, event.seller_id, event.platform, event.listing_id, event.credential_id,
        )
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Alert subscriber {subscriber!r} failed for {event.alert_type.value}")
