"""Channel sender port: abstract interface for per-channel delivery."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Recipient:
    """Addressing details for an account, resolved at dispatch time."""

    account_id: str
    email: str | None = None
    phone: str | None = None
    device_tokens: tuple[str, ...] = field(default_factory=tuple)


class ChannelSender(ABC):
    """Abstract interface for channel delivery adapters.

    Senders are fallible and not idempotent: a retried send may reach the
    recipient twice.
    """

    channel: str

    @abstractmethod
    async def send(self, notification, recipient: Recipient) -> dict:
        """Deliver a notification on this channel.

        Returns:
            dict with keys: message_id, status ("sent", "delivered" or "failed"), error (optional)

        Raises:
            ChannelSendError: the channel rejected the message; ``retryable``
                says whether another attempt may succeed.
        """
        ...
