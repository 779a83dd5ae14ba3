"""Domain events for the NotificationPreference aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from notifier.domain import notifier


@notifier.event(part_of="NotificationPreference")
class PreferencesCreated:
    """Default preferences were created for an account."""

    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    enabled_channels: Text()  # JSON array
    created_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class NotificationsToggled:
    """The account switched all notifications on or off."""

    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    enabled: Boolean(required=True)
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class ChannelUpdated:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    enabled: Boolean()
    allowed_types: Text()  # JSON array
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class QuietHoursSet:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    start: String(required=True, max_length=5)
    end: String(required=True, max_length=5)
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class QuietHoursCleared:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    cleared_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class TypeToggled:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    notification_type: String(required=True)
    enabled: Boolean(required=True)
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class CategoryToggled:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    category: String(required=True)
    enabled: Boolean(required=True)
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class RateLimitChanged:
    """A rate limit was set, or cleared when both limits are empty."""

    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    max_per_hour: Integer()
    max_per_day: Integer()
    updated_at: DateTime(required=True)


@notifier.event(part_of="NotificationPreference")
class RetentionUpdated:
    __version__ = 1

    preference_id: Identifier(required=True)
    account_id: Identifier(required=True)
    max_notifications: Integer(required=True)
    auto_archive_days: Integer(required=True)
    updated_at: DateTime(required=True)
