"""Application tests for the scheduled dispatch sweep."""

from datetime import timedelta

import pytest
from protean import current_domain

from notifier.notification.notification import (
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationType,
)
from notifier.notification.scheduler import dispatch_due_notifications

DESKTOP = NotificationChannel.DESKTOP.value


def _persist(clock, **overrides):
    defaults = {
        "account_id": "acct-400",
        "notification_type": NotificationType.SCHEDULE_REMINDER.value,
        "title": "Team lunch",
        "body": "Lunch with the team at noon",
        "channels": [DESKTOP],
        "now": clock(),
    }
    defaults.update(overrides)
    n = Notification.create(**defaults)
    current_domain.repository_for(Notification).save(n)
    return n


def _status(notification):
    return current_domain.repository_for(Notification).get(str(notification.id)).status


@pytest.mark.asyncio
class TestDispatchDueNotifications:
    async def test_dispatches_due_notifications_only(self, dispatcher, senders, clock):
        due = _persist(clock, scheduled_at=clock() + timedelta(minutes=5))
        later = _persist(clock, scheduled_at=clock() + timedelta(hours=2))
        clock.advance(600)

        reports = await dispatch_due_notifications(dispatcher, as_of=clock())

        assert [r.notification_id for r in reports] == [str(due.id)]
        assert _status(due) == NotificationStatus.SENT.value
        assert _status(later) == NotificationStatus.PENDING.value

    async def test_unscheduled_pending_notifications_are_due(self, dispatcher, clock):
        n = _persist(clock)

        reports = await dispatch_due_notifications(dispatcher, as_of=clock())

        assert len(reports) == 1
        assert _status(n) == NotificationStatus.SENT.value

    async def test_expired_notifications_are_skipped(self, dispatcher, senders, clock):
        n = _persist(clock, scheduled_at=clock() + timedelta(minutes=1), expires_at=clock() + timedelta(minutes=2))
        clock.advance(300)

        reports = await dispatch_due_notifications(dispatcher, as_of=clock())

        assert reports == []
        assert senders[DESKTOP].attempts == 0
        assert _status(n) == NotificationStatus.PENDING.value

    async def test_nothing_due(self, dispatcher, clock):
        assert await dispatch_due_notifications(dispatcher, as_of=clock()) == []

    async def test_sent_notifications_are_not_redispatched(self, dispatcher, senders, clock):
        _persist(clock)
        await dispatch_due_notifications(dispatcher, as_of=clock())

        reports = await dispatch_due_notifications(dispatcher, as_of=clock())

        assert reports == []
        assert senders[DESKTOP].attempts == 1
