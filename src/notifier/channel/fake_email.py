"""Fake email sender: records sent emails for testing."""

from notifier.channel.fake import FakeChannelSender
from notifier.notification.notification import NotificationChannel


class FakeEmailSender(FakeChannelSender):
    prefix = "email"
    default_failure_reason = "Email delivery failed"

    def __init__(self):
        super().__init__(NotificationChannel.EMAIL.value)

    @property
    def sent_emails(self):
        return self.sent

    def address(self, recipient):
        return recipient.email
