"""Fake SMS sender: records sent messages for testing."""

from notifier.channel.fake import FakeChannelSender
from notifier.notification.notification import NotificationChannel


class FakeSMSSender(FakeChannelSender):
    prefix = "sms"
    default_failure_reason = "SMS delivery failed"

    def __init__(self):
        super().__init__(NotificationChannel.SMS.value)

    @property
    def sent_messages(self):
        return self.sent

    def address(self, recipient):
        return recipient.phone
