"""Channel senders: pluggable per-channel delivery adapters.

``build_fake_senders`` returns a fresh sender map for wiring a dispatcher;
there is no shared registry, so each dispatcher owns its senders.
"""

from notifier.channel.fake_email import FakeEmailSender
from notifier.channel.fake_push import PUSH_CHANNELS, FakePushSender
from notifier.channel.fake_sms import FakeSMSSender
from notifier.notification.notification import NotificationChannel


def build_fake_senders() -> dict:
    """Return a sender for every channel, keyed by NotificationChannel value."""
    senders = {channel: FakePushSender(channel) for channel in PUSH_CHANNELS}
    senders[NotificationChannel.EMAIL.value] = FakeEmailSender()
    senders[NotificationChannel.SMS.value] = FakeSMSSender()
    return senders
