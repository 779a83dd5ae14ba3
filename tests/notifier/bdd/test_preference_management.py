"""BDD tests for preference management and channel selection."""

from datetime import datetime

from pytest_bdd import parsers, scenarios, then, when

from notifier.delivery.selection import ChannelSelectionService
from notifier.preference.preference import NotificationPreference

scenarios("features/preference_management.feature")


def _at(clock_time):
    hour, minute = (int(part) for part in clock_time.split(":"))
    return datetime(2030, 1, 15, hour, minute)


@when("default preferences are created", target_fixture="preference")
def create_default_preferences(account_id):
    return NotificationPreference.create_default(account_id=account_id)


@when(
    parsers.cfparse('the account enables the "{channel}" channel'),
    target_fixture="preference",
)
def enable_channel(preference, channel):
    preference.update_channel(channel, enabled=True)
    return preference


@when(
    parsers.cfparse('the account sets quiet hours on "{channel}" from "{start}" to "{end}"'),
    target_fixture="preference",
)
def set_quiet_hours(preference, channel, start, end):
    preference.set_quiet_hours(channel, start, end)
    return preference


@when(
    parsers.cfparse('the account disables "{notification_type}" notifications'),
    target_fixture="preference",
)
def disable_type(preference, notification_type):
    preference.set_type_enabled(notification_type, False)
    return preference


@then(parsers.cfparse('the "{channel}" channel is enabled'))
def channel_enabled(preference, channel):
    assert preference.is_channel_enabled(channel) is True


@then(parsers.cfparse('the "{channel}" channel is disabled'))
def channel_disabled(preference, channel):
    assert preference.is_channel_enabled(channel) is False


@then(parsers.cfparse('a "{priority}" "{notification_type}" notification at "{clock_time}" goes to "{channels}"'))
def selected_channels(preference, priority, notification_type, clock_time, channels):
    selected = ChannelSelectionService.select_channels(preference, notification_type, priority, now=_at(clock_time))
    assert selected == channels.split(",")


@then(parsers.cfparse('a "{priority}" "{notification_type}" notification at "{clock_time}" goes nowhere'))
def no_channels(preference, priority, notification_type, clock_time):
    assert ChannelSelectionService.select_channels(preference, notification_type, priority, now=_at(clock_time)) == []
