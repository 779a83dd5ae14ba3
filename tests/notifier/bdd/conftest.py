"""Shared BDD fixtures and step definitions for the notifier domain."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

from notifier.notification.events import (
    NotificationCreated,
    NotificationDismissed,
    NotificationFailed,
    NotificationRead,
    NotificationSent,
)
from notifier.notification.notification import (
    Notification,
    NotificationChannel,
    NotificationType,
)
from notifier.preference.preference import NotificationPreference

_NOTIFICATION_EVENT_CLASSES = {
    "NotificationCreated": NotificationCreated,
    "NotificationSent": NotificationSent,
    "NotificationRead": NotificationRead,
    "NotificationDismissed": NotificationDismissed,
    "NotificationFailed": NotificationFailed,
}

CREATED_AT = datetime(2030, 1, 15, 9, 0, tzinfo=UTC)


@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


def _notification(**overrides):
    defaults = {
        "account_id": "acct-bdd",
        "notification_type": NotificationType.TASK_REMINDER.value,
        "title": "Review pull request",
        "body": "A review was requested from you",
        "channels": [NotificationChannel.IN_APP.value, NotificationChannel.DESKTOP.value],
        "now": CREATED_AT,
    }
    defaults.update(overrides)
    return Notification.create(**defaults)


# ---------------------------------------------------------------------------
# Given steps: notifications
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse('a new notification for account "{account_id}"'),
    target_fixture="notification",
)
def new_notification(account_id):
    return _notification(account_id=account_id)


@given("a pending notification", target_fixture="notification")
def pending_notification():
    n = _notification()
    n._events.clear()
    return n


@given("a pending notification that expired", target_fixture="notification")
def expired_pending_notification():
    n = _notification(expires_at=CREATED_AT + timedelta(minutes=30))
    n._events.clear()
    return n


@given("a sent notification", target_fixture="notification")
def sent_notification():
    n = _notification()
    n.record_channel_sent(NotificationChannel.DESKTOP.value, sent_at=CREATED_AT)
    n._events.clear()
    return n


# ---------------------------------------------------------------------------
# Given steps: preferences
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse('a new account "{account_id}"'),
    target_fixture="account_id",
)
def new_account(account_id):
    return account_id


@given("an account with default preferences", target_fixture="preference")
def account_with_default_prefs():
    pref = NotificationPreference.create_default(account_id="acct-bdd-pref")
    pref._events.clear()
    return pref


# ---------------------------------------------------------------------------
# Then steps: notification status, events and errors
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the notification status is "{status}"'))
def notification_status_is(notification, status):
    assert notification.status == status


@then(parsers.cfparse("a {event_type} event is raised"))
def notification_event_raised(notification, event_type):
    event_cls = _NOTIFICATION_EVENT_CLASSES[event_type]
    assert any(
        isinstance(e, event_cls) for e in notification._events
    ), f"No {event_type} event found. Events: {[type(e).__name__ for e in notification._events]}"


@then("the action is rejected")
def action_rejected(error):
    assert isinstance(error["exc"], ValidationError)
