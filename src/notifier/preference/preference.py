"""NotificationPreference aggregate (CQRS): per-account delivery gating.

One preference record per account decides whether a notification may be
delivered at all and on which channels: a global switch, enabled categories
and types, per-channel toggles with optional type filters and quiet-hours
windows, an optional rate limit and retention settings.

Defaults are created lazily the first time an account is notified.
"""

import json
import re
from datetime import UTC, datetime

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from notifier.domain import notifier
from notifier.notification.notification import (
    NotificationCategory,
    NotificationChannel,
    NotificationType,
    category_for,
    enum_value,
)
from notifier.preference.events import (
    CategoryToggled,
    ChannelUpdated,
    NotificationsToggled,
    PreferencesCreated,
    QuietHoursCleared,
    QuietHoursSet,
    RateLimitChanged,
    RetentionUpdated,
    TypeToggled,
)

_TIME_FORMAT = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Channels switched on for a fresh account; EMAIL and SMS are opt-in.
_DEFAULT_CHANNELS = {
    NotificationChannel.IN_APP,
    NotificationChannel.SSE,
    NotificationChannel.SYSTEM,
    NotificationChannel.DESKTOP,
}


def _clock_time(now):
    """Local ``HH:MM`` for a datetime, a time, or an already formatted string.

    Aware datetimes are converted to the host's local zone first; naive
    datetimes and times are taken as local already.
    """
    if isinstance(now, str):
        return now
    if isinstance(now, datetime) and now.tzinfo is not None:
        now = now.astimezone()
    return now.strftime("%H:%M")


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@notifier.value_object(part_of="NotificationPreference")
class QuietHours:
    """A daily do-not-disturb window; ``start > end`` spans midnight."""

    enabled: Boolean(default=True)
    start_time: String(required=True, max_length=5)
    end_time: String(required=True, max_length=5)

    @invariant.post
    def times_use_24_hour_format(self):
        for label, value in (("start_time", self.start_time), ("end_time", self.end_time)):
            if value is not None and not _TIME_FORMAT.match(value):
                raise ValidationError({label: [f"Invalid time format: {value}. Use HH:MM"]})

    def contains(self, now):
        if not self.enabled:
            return False
        current = _clock_time(now)
        if self.start_time <= self.end_time:
            return self.start_time <= current <= self.end_time
        return current >= self.start_time or current <= self.end_time


@notifier.value_object(part_of="NotificationPreference")
class RateLimit:
    max_per_hour: Integer(min_value=1)
    max_per_day: Integer(min_value=1)

    @invariant.post
    def daily_limit_covers_hourly_limit(self):
        if self.max_per_hour and self.max_per_day and self.max_per_day < self.max_per_hour:
            raise ValidationError({"max_per_day": ["Daily limit cannot be lower than the hourly limit"]})

    def allows(self, sent_last_hour=0, sent_last_day=0):
        if self.max_per_hour is not None and sent_last_hour >= self.max_per_hour:
            return False
        if self.max_per_day is not None and sent_last_day >= self.max_per_day:
            return False
        return True


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@notifier.entity(part_of="NotificationPreference")
class ChannelPreference:
    """Settings for one delivery channel of an account."""

    channel: String(choices=NotificationChannel, required=True)
    enabled: Boolean(default=True)
    allowed_types: Text()  # JSON list of NotificationType values; empty means all
    quiet_hours: ValueObject(QuietHours)

    @property
    def allowed_type_list(self):
        return json.loads(self.allowed_types) if self.allowed_types else []

    def allows_type(self, notification_type):
        allowed = self.allowed_type_list
        return not allowed or NotificationType(notification_type).value in allowed

    def is_quiet(self, now):
        return self.quiet_hours is not None and self.quiet_hours.contains(now)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@notifier.aggregate
class NotificationPreference:
    """An account's notification preferences."""

    # Account link
    account_id: Identifier(required=True, unique=True)

    # Global switch
    enabled: Boolean(default=True)

    # Type and category filters
    enabled_types: Text()  # JSON list of NotificationType values
    enabled_categories: Text()  # JSON list of NotificationCategory values

    # Per-channel settings
    channels: HasMany(ChannelPreference)

    # Throttling
    rate_limit: ValueObject(RateLimit)

    # Retention
    max_notifications: Integer(default=100, min_value=1)
    auto_archive_days: Integer(default=30, min_value=1)

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def one_setting_per_channel(self):
        channels = [c.channel for c in self.channels]
        if len(set(channels)) != len(channels):
            raise ValidationError({"channels": ["Only one setting per channel is allowed"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create_default(cls, account_id):
        """Create default preferences for an account.

        Default: everything enabled on in-app, SSE, system and desktop;
        email and SMS off; no quiet hours; no rate limit.
        """
        now = datetime.now(UTC)

        preference = cls(
            account_id=account_id,
            enabled=True,
            enabled_types=json.dumps([t.value for t in NotificationType]),
            enabled_categories=json.dumps([c.value for c in NotificationCategory]),
            max_notifications=100,
            auto_archive_days=30,
            created_at=now,
            updated_at=now,
        )

        with atomic_change(preference):
            for channel in NotificationChannel:
                preference.add_channels(
                    ChannelPreference(
                        channel=channel.value,
                        enabled=channel in _DEFAULT_CHANNELS,
                        allowed_types=json.dumps([]),
                    )
                )

        preference.raise_(
            PreferencesCreated(
                preference_id=str(preference.id),
                account_id=str(account_id),
                enabled_channels=json.dumps(preference.enabled_channels()),
                created_at=now,
            )
        )

        return preference

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def channel_setting(self, channel):
        value = NotificationChannel(channel).value
        return next((c for c in self.channels if c.channel == value), None)

    def _require_channel(self, channel):
        value = enum_value(NotificationChannel, channel, "channel")
        setting = self.channel_setting(value)
        if setting is None:
            raise ValidationError({"channels": [f"No settings for channel {value}"]})
        return setting

    @property
    def enabled_type_list(self):
        return json.loads(self.enabled_types) if self.enabled_types else []

    @property
    def enabled_category_list(self):
        return json.loads(self.enabled_categories) if self.enabled_categories else []

    def enabled_channels(self):
        return [c.value for c in NotificationChannel if self.is_channel_enabled(c)]

    # -------------------------------------------------------------------
    # Predicates
    # -------------------------------------------------------------------
    def is_type_enabled(self, notification_type):
        return NotificationType(notification_type).value in self.enabled_type_list

    def is_category_enabled(self, category):
        return NotificationCategory(category).value in self.enabled_category_list

    def is_channel_enabled(self, channel):
        setting = self.channel_setting(channel)
        return setting is not None and bool(setting.enabled)

    def is_in_quiet_hours(self, channel, now=None):
        setting = self.channel_setting(channel)
        return setting is not None and setting.is_quiet(now or datetime.now())

    def check_rate_limit(self, sent_last_hour=0, sent_last_day=0):
        """Permissive while no limit is configured."""
        if self.rate_limit is None:
            return True
        return self.rate_limit.allows(sent_last_hour, sent_last_day)

    def accepts(self, notification_type):
        """Whether the account wants this type of notification at all."""
        return (
            bool(self.enabled)
            and self.is_category_enabled(category_for(notification_type))
            and self.is_type_enabled(notification_type)
        )

    def should_send_notification(self, category, notification_type, channel, now=None):
        if not self.enabled:
            return False
        setting = self.channel_setting(channel)
        if setting is None or not setting.enabled:
            return False
        if not self.is_category_enabled(category):
            return False
        if not self.is_type_enabled(notification_type) or not setting.allows_type(notification_type):
            return False
        if setting.is_quiet(now or datetime.now()):
            return False
        return self.check_rate_limit()

    def allowed_channels(self, notification_type, now=None):
        """Channels that may carry ``notification_type`` right now, in channel order."""
        now = now or datetime.now()
        category = category_for(notification_type)
        return [
            c.value
            for c in NotificationChannel
            if self.should_send_notification(category, notification_type, c, now)
        ]

    # -------------------------------------------------------------------
    # Global switch
    # -------------------------------------------------------------------
    def _toggle(self, enabled):
        now = datetime.now(UTC)
        self.enabled = enabled
        self.updated_at = now

        self.raise_(
            NotificationsToggled(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                enabled=enabled,
                updated_at=now,
            )
        )

    def enable_all(self):
        self._toggle(True)

    def disable_all(self):
        self._toggle(False)

    # -------------------------------------------------------------------
    # Channel management
    # -------------------------------------------------------------------
    def update_channel(self, channel, enabled=None, allowed_types=None):
        """Update one channel. Pass None to keep a setting unchanged."""
        if enabled is None and allowed_types is None:
            raise ValidationError({"channels": ["At least one channel setting must be provided"]})
        setting = self._require_channel(channel)
        if allowed_types is not None:
            allowed_types = [enum_value(NotificationType, t, "allowed_types") for t in allowed_types]

        now = datetime.now(UTC)
        with atomic_change(self):
            if enabled is not None:
                setting.enabled = enabled
            if allowed_types is not None:
                setting.allowed_types = json.dumps(allowed_types)
            self.updated_at = now

        self.raise_(
            ChannelUpdated(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                channel=setting.channel,
                enabled=setting.enabled,
                allowed_types=setting.allowed_types,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Quiet hours
    # -------------------------------------------------------------------
    def set_quiet_hours(self, channel, start, end):
        """Set a do-not-disturb window on one channel. Both start and end required."""
        if not start or not end:
            raise ValidationError({"quiet_hours": ["Both start and end times are required"]})
        setting = self._require_channel(channel)
        quiet_hours = QuietHours(enabled=True, start_time=start, end_time=end)

        now = datetime.now(UTC)
        with atomic_change(self):
            setting.quiet_hours = quiet_hours
            self.updated_at = now

        self.raise_(
            QuietHoursSet(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                channel=setting.channel,
                start=start,
                end=end,
                updated_at=now,
            )
        )

    def clear_quiet_hours(self, channel):
        setting = self._require_channel(channel)

        now = datetime.now(UTC)
        with atomic_change(self):
            setting.quiet_hours = None
            self.updated_at = now

        self.raise_(
            QuietHoursCleared(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                channel=setting.channel,
                cleared_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Type and category filters
    # -------------------------------------------------------------------
    def set_type_enabled(self, notification_type, enabled):
        value = enum_value(NotificationType, notification_type, "notification_type")
        types = [t for t in self.enabled_type_list if t != value]
        if enabled:
            types.append(value)

        now = datetime.now(UTC)
        self.enabled_types = json.dumps(types)
        self.updated_at = now

        self.raise_(
            TypeToggled(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                notification_type=value,
                enabled=enabled,
                updated_at=now,
            )
        )

    def set_category_enabled(self, category, enabled):
        value = enum_value(NotificationCategory, category, "category")
        categories = [c for c in self.enabled_category_list if c != value]
        if enabled:
            categories.append(value)

        now = datetime.now(UTC)
        self.enabled_categories = json.dumps(categories)
        self.updated_at = now

        self.raise_(
            CategoryToggled(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                category=value,
                enabled=enabled,
                updated_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Rate limit and retention
    # -------------------------------------------------------------------
    def set_rate_limit(self, max_per_hour=None, max_per_day=None):
        if max_per_hour is None and max_per_day is None:
            raise ValidationError({"rate_limit": ["Provide an hourly or a daily limit"]})
        limit = RateLimit(max_per_hour=max_per_hour, max_per_day=max_per_day)

        now = datetime.now(UTC)
        self.rate_limit = limit
        self.updated_at = now

        self.raise_(
            RateLimitChanged(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                max_per_hour=max_per_hour,
                max_per_day=max_per_day,
                updated_at=now,
            )
        )

    def clear_rate_limit(self):
        now = datetime.now(UTC)
        self.rate_limit = None
        self.updated_at = now

        self.raise_(
            RateLimitChanged(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                updated_at=now,
            )
        )

    def update_retention(self, max_notifications=None, auto_archive_days=None):
        if max_notifications is None and auto_archive_days is None:
            raise ValidationError({"retention": ["At least one retention setting must be provided"]})
        for label, value in (("max_notifications", max_notifications), ("auto_archive_days", auto_archive_days)):
            if value is not None and value < 1:
                raise ValidationError({label: ["Must be at least 1"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            if max_notifications is not None:
                self.max_notifications = max_notifications
            if auto_archive_days is not None:
                self.auto_archive_days = auto_archive_days
            self.updated_at = now

        self.raise_(
            RetentionUpdated(
                preference_id=str(self.id),
                account_id=str(self.account_id),
                max_notifications=self.max_notifications,
                auto_archive_days=self.auto_archive_days,
                updated_at=now,
            )
        )
