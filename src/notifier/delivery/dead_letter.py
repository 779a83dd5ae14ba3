"""Dead-letter sinks: permanently failed channel deliveries.

The dispatcher hands every exhausted channel to a sink and never waits on
the outcome: sink errors are logged by the dispatcher, not raised.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from notifier.domain import notifier


@dataclass(frozen=True)
class DeadLetterEntry:
    notification_id: str
    account_id: str
    channel: str
    error: str
    retry_count: int
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self):
        return asdict(self)


class DeadLetterSink(ABC):
    @abstractmethod
    async def record(self, entry: DeadLetterEntry) -> None: ...


class InMemoryDeadLetterSink(DeadLetterSink):
    """Sink that keeps entries in memory for test assertions."""

    def __init__(self):
        self.entries: list[DeadLetterEntry] = []

    async def record(self, entry: DeadLetterEntry) -> None:
        self.entries.append(entry)

    def for_notification(self, notification_id):
        return [e for e in self.entries if e.notification_id == str(notification_id)]

    def reset(self):
        self.entries.clear()


@notifier.projection
class DeadLetter:
    """Queue of permanently failed channel deliveries for manual inspection."""

    entry_id: Identifier(identifier=True, required=True)
    notification_id: Identifier(required=True)
    account_id: Identifier(required=True)
    channel: String(required=True, max_length=20)
    error: Text(required=True)
    retry_count: Integer(default=0)
    recorded_at: DateTime(required=True)


class ProjectionDeadLetterSink(DeadLetterSink):
    """Sink that persists entries to the DeadLetter projection."""

    async def record(self, entry: DeadLetterEntry) -> None:
        current_domain.repository_for(DeadLetter).add(
            DeadLetter(
                entry_id=entry.id,
                notification_id=entry.notification_id,
                account_id=entry.account_id,
                channel=entry.channel,
                error=entry.error,
                retry_count=entry.retry_count,
                recorded_at=entry.recorded_at,
            )
        )

    def entries_for(self, notification_id):
        repo = current_domain.repository_for(DeadLetter)
        return repo._dao.query.filter(notification_id=str(notification_id)).all().items
