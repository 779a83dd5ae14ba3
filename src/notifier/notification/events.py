"""Domain events for the Notification aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from notifier.domain import notifier


@notifier.event(part_of="Notification")
class NotificationCreated:
    """A notification was created with one pending receipt per channel."""

    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    notification_type: String(required=True)
    category: String(required=True)
    priority: String(required=True)
    channels: Text(required=True)  # JSON array
    title: String(max_length=200)
    scheduled_at: DateTime()
    expires_at: DateTime()
    created_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationSent:
    """The first channel delivered; the notification is now visible."""

    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    sent_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationChannelSent:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    sent_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationChannelDelivered:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    delivered_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationChannelFailed:
    """A delivery attempt failed on one channel.

    ``retrying`` is False once the channel has given up.
    """

    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    reason: String(required=True)
    retry_count: Integer(required=True)
    retrying: Boolean(default=False)
    failed_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationChannelRetried:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True)
    retry_count: Integer(required=True)
    retried_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationRead:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    read_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationDismissed:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    dismissed_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationExpired:
    """A pending notification passed its expiry without being sent."""

    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    expired_at: DateTime(required=True)


@notifier.event(part_of="Notification")
class NotificationFailed:
    __version__ = 1

    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    reason: String(required=True)
    failed_at: DateTime(required=True)
