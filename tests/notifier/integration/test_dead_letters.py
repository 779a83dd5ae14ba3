"""Integration tests for dead-letter sinks, including the projection-backed sink."""

import pytest
from protean import current_domain

from notifier.delivery.dead_letter import (
    DeadLetter,
    DeadLetterEntry,
    InMemoryDeadLetterSink,
    ProjectionDeadLetterSink,
)
from notifier.delivery.dispatcher import DeliveryDispatcher
from notifier.notification.notification import Notification, NotificationChannel, NotificationType

DESKTOP = NotificationChannel.DESKTOP.value


def _entry(**overrides):
    defaults = {
        "notification_id": "n-1",
        "account_id": "acct-800",
        "channel": DESKTOP,
        "error": "Device unregistered",
        "retry_count": 1,
    }
    defaults.update(overrides)
    return DeadLetterEntry(**defaults)


@pytest.mark.asyncio
class TestInMemorySink:
    async def test_records_entries(self):
        sink = InMemoryDeadLetterSink()
        await sink.record(_entry())
        await sink.record(_entry(notification_id="n-2"))

        assert len(sink.entries) == 2
        assert [e.notification_id for e in sink.for_notification("n-2")] == ["n-2"]

        sink.reset()
        assert sink.entries == []

    async def test_entry_serialises(self):
        entry = _entry()
        data = entry.to_dict()
        assert data["channel"] == DESKTOP
        assert data["id"] == entry.id
        assert data["recorded_at"] == entry.recorded_at


@pytest.mark.asyncio
class TestProjectionSink:
    async def test_persists_to_projection(self):
        sink = ProjectionDeadLetterSink()
        entry = _entry()

        await sink.record(entry)

        stored = current_domain.repository_for(DeadLetter).get(entry.id)
        assert stored.notification_id == "n-1"
        assert stored.error == "Device unregistered"
        assert stored.retry_count == 1

    async def test_entries_for_notification(self):
        sink = ProjectionDeadLetterSink()
        await sink.record(_entry())
        await sink.record(_entry(channel=NotificationChannel.SMS.value))
        await sink.record(_entry(notification_id="n-9"))

        channels = sorted(e.channel for e in sink.entries_for("n-1"))

        assert channels == sorted([DESKTOP, NotificationChannel.SMS.value])

    async def test_dispatcher_dead_letters_into_projection(self, senders, dispatch_config, clock, sleeper):
        sink = ProjectionDeadLetterSink()
        dispatcher = DeliveryDispatcher(
            senders=senders, dead_letters=sink, config=dispatch_config, clock=clock, sleep=sleeper
        )
        senders[DESKTOP].configure(should_succeed=False, retryable=False, failure_reason="Device unregistered")
        n = Notification.create(
            account_id="acct-800",
            notification_type=NotificationType.SYSTEM_UPDATE.value,
            title="Update available",
            body="Version 2.1 is ready to install",
            channels=[DESKTOP],
            now=clock(),
        )
        current_domain.repository_for(Notification).save(n)

        await dispatcher.dispatch(n.id)

        entries = sink.entries_for(n.id)
        assert len(entries) == 1
        assert entries[0].channel == DESKTOP
        assert entries[0].error == "Device unregistered"
