"""Fake push sender: broadcast-style delivery keyed by account id.

Serves the in-app, SSE, system and desktop channels; each channel gets its
own instance so failures can be configured per channel.
"""

from notifier.channel.fake import FakeChannelSender
from notifier.notification.notification import NotificationChannel

PUSH_CHANNELS = (
    NotificationChannel.IN_APP.value,
    NotificationChannel.SSE.value,
    NotificationChannel.SYSTEM.value,
    NotificationChannel.DESKTOP.value,
)


class FakePushSender(FakeChannelSender):
    prefix = "push"
    default_failure_reason = "Push delivery failed"

    def __init__(self, channel=NotificationChannel.DESKTOP.value):
        if channel not in PUSH_CHANNELS:
            raise ValueError(f"Not a push channel: {channel}")
        super().__init__(channel)

    @property
    def sent_pushes(self):
        return self.sent
