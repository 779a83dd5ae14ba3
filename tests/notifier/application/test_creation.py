"""Application tests for creating notifications through account preferences."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from notifier.errors import PreferenceBlocked
from notifier.notification.creation import create_and_send_notification, create_notification
from notifier.notification.notification import (
    Notification,
    NotificationCategory,
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)
from notifier.preference.cache import PreferenceCache
from notifier.preference.preference import NotificationPreference

NOON = datetime(2030, 3, 4, 12, 0, tzinfo=UTC)


def _create(**overrides):
    defaults = {
        "account_id": "acct-100",
        "notification_type": NotificationType.TASK_REMINDER.value,
        "title": "Pay invoices",
        "body": "Three invoices are waiting for approval",
        "now": NOON,
    }
    defaults.update(overrides)
    return create_notification(**defaults)


def _preference(account_id="acct-100"):
    return current_domain.repository_for(NotificationPreference).get_or_create_default(account_id)


def _save_preference(preference):
    current_domain.repository_for(NotificationPreference).add(preference)


class TestCreateNotification:
    def test_persists_pending_notification(self):
        n = _create()
        stored = current_domain.repository_for(Notification).get(str(n.id))
        assert stored.status == NotificationStatus.PENDING.value
        assert stored.account_id == "acct-100"
        assert stored.category == NotificationCategory.TASK.value

    def test_creates_default_preferences_on_first_use(self):
        _create(account_id="acct-new")
        preference = current_domain.repository_for(NotificationPreference).find_by_account("acct-new")
        assert preference is not None

    def test_normal_priority_uses_in_app_and_sse(self):
        n = _create()
        assert n.channels == [NotificationChannel.IN_APP.value, NotificationChannel.SSE.value]

    def test_high_priority_adds_system(self):
        n = _create(priority=NotificationPriority.HIGH.value)
        assert n.channels == [
            NotificationChannel.IN_APP.value,
            NotificationChannel.SSE.value,
            NotificationChannel.SYSTEM.value,
        ]

    def test_requested_channels_are_honoured(self):
        n = _create(channels=[NotificationChannel.DESKTOP.value])
        assert n.channels == [NotificationChannel.DESKTOP.value]

    def test_disabled_requested_channel_falls_back(self):
        n = _create(channels=[NotificationChannel.EMAIL.value], priority=NotificationPriority.URGENT.value)
        assert NotificationChannel.EMAIL.value not in n.channels
        assert n.channels

    def test_email_once_enabled(self):
        preference = _preference()
        preference.update_channel(NotificationChannel.EMAIL.value, enabled=True)
        _save_preference(preference)

        n = _create(channels=[NotificationChannel.EMAIL.value])
        assert n.channels == [NotificationChannel.EMAIL.value]

    def test_source_event_and_context_are_kept(self):
        n = _create(source_event_type="TaskCreated", source_event_id="evt-77", context_data={"task_id": "t-9"})
        stored = current_domain.repository_for(Notification).get(str(n.id))
        assert stored.source_event_type == "TaskCreated"
        assert stored.source_event_id == "evt-77"
        assert stored.context == {"task_id": "t-9"}


class TestPreferenceBlocking:
    def test_globally_disabled_account_is_blocked(self):
        preference = _preference()
        preference.disable_all()
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked) as exc:
            _create()
        assert exc.value.account_id == "acct-100"
        assert "disabled" in exc.value.reason

    def test_disabled_type_is_blocked(self):
        preference = _preference()
        preference.set_type_enabled(NotificationType.TASK_REMINDER.value, False)
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked):
            _create()

    def test_disabled_category_is_blocked(self):
        preference = _preference()
        preference.set_category_enabled(NotificationCategory.TASK.value, False)
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked):
            _create(notification_type=NotificationType.TASK_DUE.value)

    def test_no_channel_available_is_blocked(self):
        preference = _preference()
        for channel in preference.enabled_channels():
            preference.update_channel(channel, enabled=False)
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked) as exc:
            _create()
        assert exc.value.reason == "no delivery channel is available"

    def test_all_channels_quiet_is_blocked(self):
        preference = _preference()
        local_noon = NOON.astimezone()
        start = (local_noon - timedelta(hours=1)).strftime("%H:%M")
        end = (local_noon + timedelta(hours=1)).strftime("%H:%M")
        for channel in preference.enabled_channels():
            preference.set_quiet_hours(channel, start, end)
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked):
            _create()

    def test_blocked_creation_persists_nothing(self):
        preference = _preference()
        preference.disable_all()
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked):
            _create()
        assert current_domain.repository_for(Notification).find_for_account("acct-100") == []


class TestCreationValidation:
    def test_invalid_content_is_rejected(self):
        with pytest.raises(ValidationError):
            _create(title="")

    def test_past_expiry_is_rejected(self):
        with pytest.raises(ValidationError):
            _create(expires_at=NOON - timedelta(minutes=1))


class TestCreateWithPreferenceCache:
    def test_uses_cached_preferences(self):
        cache = PreferenceCache(ttl_seconds=30)
        _create(preferences=cache)
        assert len(cache) == 1

    def test_stale_cache_hides_recent_disable_until_invalidated(self):
        cache = PreferenceCache(ttl_seconds=30)
        _create(preferences=cache)

        preference = _preference()
        preference.disable_all()
        _save_preference(preference)

        _create(preferences=cache)
        cache.invalidate("acct-100")
        with pytest.raises(PreferenceBlocked):
            _create(preferences=cache)


@pytest.mark.asyncio
class TestCreateAndSend:
    async def test_creates_and_dispatches(self, dispatcher, senders, clock):
        n = await create_and_send_notification(
            dispatcher,
            account_id="acct-100",
            notification_type=NotificationType.SYSTEM_ALERT.value,
            title="Maintenance",
            body="Scheduled maintenance tonight",
            channels=[NotificationChannel.DESKTOP.value],
            now=clock(),
        )
        assert n.status == NotificationStatus.SENT.value
        assert n.all_channels_delivered()
        assert len(senders[NotificationChannel.DESKTOP.value].sent) == 1

    async def test_blocked_notification_is_not_dispatched(self, dispatcher, senders, clock):
        preference = _preference()
        preference.disable_all()
        _save_preference(preference)

        with pytest.raises(PreferenceBlocked):
            await create_and_send_notification(
                dispatcher,
                account_id="acct-100",
                notification_type=NotificationType.SYSTEM_ALERT.value,
                title="Maintenance",
                body="Scheduled maintenance tonight",
            )
        assert all(sender.attempts == 0 for sender in senders.values())
