"""Read-path commands + handlers: read, dismiss and confirm delivery.

Every handler checks that the notification belongs to the acting account
and saves against the version it loaded, so a read never overwrites a
receipt update that landed in between.
"""

import json

import structlog
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, String, Text
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from notifier.domain import notifier
from notifier.notification.notification import Notification, NotificationStatus

logger = structlog.get_logger(__name__)


@notifier.command(part_of="Notification")
class MarkNotificationAsRead:
    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    read_at: DateTime()


@notifier.command(part_of="Notification")
class DismissNotification:
    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    dismissed_at: DateTime()


@notifier.command(part_of="Notification")
class MarkAllNotificationsAsRead:
    """Mark every delivered, unread notification of an account as read."""

    account_id: Identifier(required=True)
    read_at: DateTime()


@notifier.command(part_of="Notification")
class DismissNotifications:
    """Dismiss several notifications at once; ids the account does not own are rejected."""

    account_id: Identifier(required=True)
    notification_ids: Text(required=True)  # JSON list of ids
    dismissed_at: DateTime()


@notifier.command(part_of="Notification")
class ConfirmChannelDelivery:
    """Delivery receipt from a request/response channel (email, SMS)."""

    notification_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    delivered_at: DateTime()


def _load_owned(repo, notification_id, account_id):
    notification = repo.get(str(notification_id))
    if str(notification.account_id) != str(account_id):
        raise ValidationError({"account_id": ["Notification belongs to another account"]})
    return notification


def _save(repo, notification, mutate):
    expected_version = notification.version
    mutate(notification)
    repo.save(notification, expected_version=expected_version)


@notifier.command_handler(part_of=Notification)
class NotificationReadingHandler:
    @handle(MarkNotificationAsRead)
    def mark_as_read(self, command: MarkNotificationAsRead):
        repo = current_domain.repository_for(Notification)
        notification = _load_owned(repo, command.notification_id, command.account_id)
        _save(repo, notification, lambda n: n.mark_as_read(command.read_at))

    @handle(DismissNotification)
    def dismiss(self, command: DismissNotification):
        repo = current_domain.repository_for(Notification)
        notification = _load_owned(repo, command.notification_id, command.account_id)
        _save(repo, notification, lambda n: n.mark_as_dismissed(command.dismissed_at))

    @handle(MarkAllNotificationsAsRead)
    def mark_all_as_read(self, command: MarkAllNotificationsAsRead):
        repo = current_domain.repository_for(Notification)
        unread = repo.find_for_account(command.account_id, status=NotificationStatus.SENT.value)
        for notification in unread:
            _save(repo, notification, lambda n: n.mark_as_read(command.read_at))

        logger.info("Notifications marked as read", account_id=str(command.account_id), count=len(unread))
        return len(unread)

    @handle(DismissNotifications)
    def dismiss_many(self, command: DismissNotifications):
        repo = current_domain.repository_for(Notification)
        notification_ids = json.loads(command.notification_ids)
        notifications = [_load_owned(repo, nid, command.account_id) for nid in notification_ids]
        for notification in notifications:
            _save(repo, notification, lambda n: n.mark_as_dismissed(command.dismissed_at))

        logger.info("Notifications dismissed", account_id=str(command.account_id), count=len(notifications))
        return len(notifications)

    @handle(ConfirmChannelDelivery)
    def confirm_delivery(self, command: ConfirmChannelDelivery):
        repo = current_domain.repository_for(Notification)
        notification = repo.get(str(command.notification_id))
        _save(repo, notification, lambda n: n.record_channel_delivered(command.channel, command.delivered_at))
