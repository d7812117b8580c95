# tests/unit/services/test_notification_service.py
from channel_sync.core.enums import AlertType
from channel_sync.integrations.events import SyncAlertEvent
from channel_sync.services.notification_service import SyncAlertNotifier


def _event():
    return SyncAlertEvent(
        alert_type=AlertType.LISTING_DISCONNECTED,
        seller_id="seller-1",
        platform="mercadolivre",
        listing_id=4,
        details={"previous_status": "synchronized"},
    )


async def test_publish_reaches_sync_and_async_subscribers():
    seen = []

    async def async_subscriber(event):
        seen.append(("async", event.listing_id))

    notifier = SyncAlertNotifier([lambda e: seen.append(("sync", e.listing_id))])
    notifier.subscribe(async_subscriber)

    await notifier.publish(_event())

    assert seen == [("sync", 4), ("async", 4)]


async def test_failing_subscriber_does_not_stop_others():
    seen = []

    def broken(event):
        raise RuntimeError("mail server down")

    notifier = SyncAlertNotifier([broken, seen.append])

    await notifier.publish(_event())

    assert len(seen) == 1


async def test_unsubscribe():
    seen = []
    notifier = SyncAlertNotifier()
    unsubscribe = notifier.subscribe(seen.append)
    unsubscribe()

    await notifier.publish(_event())

    assert seen == []


def test_alert_to_record():
    record = _event().to_record()

    assert record.change_type == "listing_disconnected"
    assert record.platform_name == "mercadolivre"
    assert record.status == "pending"
    assert record.change_data == {"previous_status": "synchronized"}
