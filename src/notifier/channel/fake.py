"""Configurable failure behaviour shared by the fake channel senders."""

import asyncio
from uuid import uuid4

from notifier.channel.port import ChannelSender
from notifier.errors import ChannelSendError


class FakeChannelSender(ChannelSender):
    """Sender that records messages in memory for test assertions."""

    prefix = "msg"
    default_failure_reason = "Delivery failed"

    def __init__(self, channel):
        self.channel = channel
        self.sent: list[dict] = []
        self.attempts = 0
        self.reset()

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str | None = None,
        fail_times: int | None = None,
        retryable: bool = True,
        raise_errors: bool = False,
        delivery_confirmed: bool = True,
        delay: float = 0,
    ):
        """Configure the fake sender behavior for testing.

        ``fail_times`` fails that many attempts and then succeeds; it wins
        over ``should_succeed``. Non-retryable failures are always raised.
        """
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason or self.default_failure_reason
        self.fail_times = fail_times
        self.retryable = retryable
        self.raise_errors = raise_errors or not retryable
        self.delivery_confirmed = delivery_confirmed
        self.delay = delay

    def reset(self):
        """Clear recorded messages and restore success (useful between tests)."""
        self.sent.clear()
        self.attempts = 0
        self.configure()

    def _should_fail(self):
        if self.fail_times is not None:
            return self.attempts <= self.fail_times
        return not self.should_succeed

    def address(self, recipient):
        """Channel address for the recipient, or None when it cannot be reached."""
        return recipient.account_id

    async def send(self, notification, recipient) -> dict:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        address = self.address(recipient)
        if address is None:
            raise ChannelSendError(self.channel, f"No {self.channel} address for account {recipient.account_id}", False)

        if self._should_fail():
            if self.raise_errors:
                raise ChannelSendError(self.channel, self.failure_reason, self.retryable)
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"{self.prefix}-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "to": address,
                "notification_id": str(notification.id),
                "title": notification.content.title,
                "body": notification.content.body,
            }
        )
        return {"message_id": message_id, "status": "delivered" if self.delivery_confirmed else "sent"}
