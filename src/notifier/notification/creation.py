"""Creation helpers: turn a trigger into a persisted, dispatchable notification.

Provides the common pattern: look up preferences -> check the type is
wanted -> select channels -> create one Notification with a receipt per
channel -> persist (-> dispatch).
"""

import structlog
from protean.utils.globals import current_domain

from notifier.delivery.selection import ChannelSelectionService
from notifier.errors import PreferenceBlocked
from notifier.notification.notification import Notification, NotificationPriority
from notifier.preference.preference import NotificationPreference

logger = structlog.get_logger(__name__)


def _preference_for(account_id, preferences=None):
    if preferences is not None:
        return preferences.get(account_id)
    return current_domain.repository_for(NotificationPreference).get_or_create_default(str(account_id))


def create_notification(
    account_id: str,
    notification_type: str,
    title: str,
    body: str,
    priority: str = NotificationPriority.NORMAL.value,
    channels: list[str] | None = None,
    icon: str | None = None,
    image: str | None = None,
    scheduled_at=None,
    expires_at=None,
    source_event_type: str | None = None,
    source_event_id: str | None = None,
    context_data: dict | None = None,
    preferences=None,
    now=None,
) -> Notification:
    """Create and persist a notification for an account.

    ``channels`` narrows delivery to the requested channels where the
    account allows them. ``preferences`` is an optional PreferenceCache.

    Raises:
        PreferenceBlocked: the type is disabled or no channel is available.
        ValidationError: the content or schedule is invalid.
    """
    preference = _preference_for(account_id, preferences)

    if not preference.accepts(notification_type):
        logger.info(
            "Notification type disabled for account",
            account_id=str(account_id),
            notification_type=notification_type,
        )
        raise PreferenceBlocked(account_id, notification_type, "notification type or category is disabled")

    selected = ChannelSelectionService.select_channels(
        preference,
        notification_type,
        priority,
        requested_channels=channels,
        now=now,
    )
    if not selected:
        logger.info(
            "No enabled channels for notification",
            account_id=str(account_id),
            notification_type=notification_type,
        )
        raise PreferenceBlocked(account_id, notification_type, "no delivery channel is available")

    notification = Notification.create(
        account_id=str(account_id),
        notification_type=notification_type,
        title=title,
        body=body,
        channels=selected,
        priority=priority,
        icon=icon,
        image=image,
        scheduled_at=scheduled_at,
        expires_at=expires_at,
        source_event_type=source_event_type,
        source_event_id=source_event_id,
        context_data=context_data,
        now=now,
    )
    current_domain.repository_for(Notification).save(notification)

    logger.info(
        "Notification created",
        notification_id=str(notification.id),
        account_id=str(account_id),
        notification_type=notification_type,
        priority=notification.priority,
        channels=selected,
    )

    return notification


async def create_and_send_notification(dispatcher, **kwargs) -> Notification:
    """Create a notification and deliver it right away.

    Only preference and validation errors reach the caller; channel
    failures stay on the receipts. Returns the notification as stored
    after dispatch.
    """
    notification = create_notification(**kwargs)
    await dispatcher.dispatch(notification.id)
    return current_domain.repository_for(Notification).get(notification.id)
