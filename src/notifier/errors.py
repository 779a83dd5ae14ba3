"""Error taxonomy for the notifier context.

Construction and state-machine errors subclass Protean's ``ValidationError``
so they carry a ``field -> [messages]`` mapping and surface through command
handlers unchanged. Delivery and persistence errors are plain exceptions
with structured attributes.
"""

from protean.exceptions import ValidationError


class InvalidStateTransition(ValidationError):
    """A state-machine method was called from a state that does not permit it."""

    def __init__(self, current, target, field="status"):
        self.current = current
        self.target = target
        super().__init__({field: [f"Cannot transition from {current} to {target}"]})


class ExpiredError(ValidationError):
    """The notification's schedule window has already lapsed."""

    def __init__(self, expires_at):
        self.expires_at = expires_at
        super().__init__({"expires_at": [f"Notification expired at {expires_at.isoformat()}"]})


class NotYetExpiredError(ValidationError):
    """``mark_as_expired`` was called before the window closed."""

    def __init__(self, expires_at=None):
        self.expires_at = expires_at
        if expires_at is None:
            message = "Notification has no expiry"
        else:
            message = f"Notification does not expire until {expires_at.isoformat()}"
        super().__init__({"expires_at": [message]})


class PreferenceBlocked(Exception):
    """The account's preferences leave no channel for this notification."""

    def __init__(self, account_id, notification_type, reason):
        self.account_id = account_id
        self.notification_type = notification_type
        self.reason = reason
        super().__init__(f"Notification {notification_type} blocked for account {account_id}: {reason}")


class ChannelSendError(Exception):
    """A channel sender could not deliver.

    ``retryable=False`` marks the failure permanent: the dispatcher stops
    retrying that channel at once.
    """

    def __init__(self, channel, message, retryable=True):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class StaleNotificationError(Exception):
    """The stored notification moved past the version the caller loaded."""

    def __init__(self, notification_id, expected_version, actual_version):
        self.notification_id = notification_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Notification {notification_id} is at version {actual_version}, expected {expected_version}"
        )
