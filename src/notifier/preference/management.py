"""Preference management commands + handlers.

Handlers load (or lazily create) the account's preferences, apply one
change and persist. Callers holding a ``PreferenceCache`` invalidate the
account afterwards.
"""

import json

from protean.fields import Boolean, Identifier, Integer, String, Text
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from notifier.domain import notifier
from notifier.preference.preference import NotificationPreference


@notifier.command(part_of="NotificationPreference")
class SetNotificationsEnabled:
    """Switch every notification for an account on or off."""

    account_id: Identifier(required=True)
    enabled: Boolean(required=True)


@notifier.command(part_of="NotificationPreference")
class UpdateChannelPreference:
    account_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    enabled: Boolean()
    allowed_types: Text()  # JSON list; "[]" allows every type


@notifier.command(part_of="NotificationPreference")
class SetChannelQuietHours:
    """Set a do-not-disturb window on one channel."""

    account_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    start: String(required=True, max_length=5)
    end: String(required=True, max_length=5)


@notifier.command(part_of="NotificationPreference")
class ClearChannelQuietHours:
    account_id: Identifier(required=True)
    channel: String(required=True, max_length=20)


@notifier.command(part_of="NotificationPreference")
class SetNotificationTypeEnabled:
    account_id: Identifier(required=True)
    notification_type: String(required=True, max_length=50)
    enabled: Boolean(required=True)


@notifier.command(part_of="NotificationPreference")
class SetCategoryEnabled:
    account_id: Identifier(required=True)
    category: String(required=True, max_length=50)
    enabled: Boolean(required=True)


@notifier.command(part_of="NotificationPreference")
class SetRateLimit:
    """Set or, with both limits empty, clear the account's rate limit."""

    account_id: Identifier(required=True)
    max_per_hour: Integer(min_value=1)
    max_per_day: Integer(min_value=1)


@notifier.command(part_of="NotificationPreference")
class UpdateRetentionSettings:
    account_id: Identifier(required=True)
    max_notifications: Integer()
    auto_archive_days: Integer()


@notifier.command_handler(part_of=NotificationPreference)
class ManagePreferencesHandler:
    def _load(self, account_id):
        repo = current_domain.repository_for(NotificationPreference)
        return repo, repo.get_or_create_default(str(account_id))

    @handle(SetNotificationsEnabled)
    def set_notifications_enabled(self, command: SetNotificationsEnabled):
        repo, preference = self._load(command.account_id)
        if command.enabled:
            preference.enable_all()
        else:
            preference.disable_all()
        repo.add(preference)

    @handle(UpdateChannelPreference)
    def update_channel(self, command: UpdateChannelPreference):
        repo, preference = self._load(command.account_id)
        allowed_types = json.loads(command.allowed_types) if command.allowed_types is not None else None
        preference.update_channel(command.channel, enabled=command.enabled, allowed_types=allowed_types)
        repo.add(preference)

    @handle(SetChannelQuietHours)
    def set_quiet_hours(self, command: SetChannelQuietHours):
        repo, preference = self._load(command.account_id)
        preference.set_quiet_hours(command.channel, command.start, command.end)
        repo.add(preference)

    @handle(ClearChannelQuietHours)
    def clear_quiet_hours(self, command: ClearChannelQuietHours):
        repo, preference = self._load(command.account_id)
        preference.clear_quiet_hours(command.channel)
        repo.add(preference)

    @handle(SetNotificationTypeEnabled)
    def set_type_enabled(self, command: SetNotificationTypeEnabled):
        repo, preference = self._load(command.account_id)
        preference.set_type_enabled(command.notification_type, command.enabled)
        repo.add(preference)

    @handle(SetCategoryEnabled)
    def set_category_enabled(self, command: SetCategoryEnabled):
        repo, preference = self._load(command.account_id)
        preference.set_category_enabled(command.category, command.enabled)
        repo.add(preference)

    @handle(SetRateLimit)
    def set_rate_limit(self, command: SetRateLimit):
        repo, preference = self._load(command.account_id)
        if command.max_per_hour is None and command.max_per_day is None:
            preference.clear_rate_limit()
        else:
            preference.set_rate_limit(command.max_per_hour, command.max_per_day)
        repo.add(preference)

    @handle(UpdateRetentionSettings)
    def update_retention(self, command: UpdateRetentionSettings):
        repo, preference = self._load(command.account_id)
        preference.update_retention(
            max_notifications=command.max_notifications,
            auto_archive_days=command.auto_archive_days,
        )
        repo.add(preference)
