"""ChannelSelectionService: which channels carry a notification.

Pure function of the preference, the notification type and priority, the
caller's requested channels and the current time. Results come back in
channel declaration order so repeated calls compare equal.
"""

from datetime import datetime

import structlog

from notifier.notification.notification import (
    NotificationChannel,
    NotificationPriority,
    ordered_channels,
)

logger = structlog.get_logger(__name__)

# Preferred channels per priority; URGENT uses every allowed channel.
_PRIORITY_DEFAULTS = {
    NotificationPriority.HIGH: {
        NotificationChannel.IN_APP.value,
        NotificationChannel.SSE.value,
        NotificationChannel.SYSTEM.value,
    },
    NotificationPriority.NORMAL: {
        NotificationChannel.IN_APP.value,
        NotificationChannel.SSE.value,
    },
    NotificationPriority.LOW: {
        NotificationChannel.IN_APP.value,
        NotificationChannel.SSE.value,
    },
}


class ChannelSelectionService:
    @staticmethod
    def select_channels(preference, notification_type, priority, requested_channels=None, now=None):
        """Return the channels to deliver on, or ``[]`` when none is allowed.

        Requested channels are intersected with the allowed set; an empty
        intersection falls back to every allowed channel. Without a request
        the priority picks a preferred subset, with the same fallback.
        """
        allowed = preference.allowed_channels(notification_type, now or datetime.now())
        if not allowed:
            return []

        if requested_channels:
            requested = set(ordered_channels(requested_channels))
            chosen = [c for c in allowed if c in requested]
            return chosen or allowed

        priority = NotificationPriority(priority)
        preferred = _PRIORITY_DEFAULTS.get(priority)
        if preferred is None:
            return allowed
        chosen = [c for c in allowed if c in preferred]
        return chosen or allowed
