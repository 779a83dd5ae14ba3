"""Repository for the Notification aggregate.

``save`` is the single write path: receipts persist with their parent, and
an ``expected_version`` turns the aggregate's ``version`` into an
optimistic-concurrency check.
"""

from collections import Counter
from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError

from notifier.domain import notifier
from notifier.errors import StaleNotificationError
from notifier.notification.notification import (
    Notification,
    NotificationStatus,
    as_utc,
)


@notifier.repository(part_of=Notification)
class NotificationRepository:
    def save(self, notification: Notification, expected_version: int | None = None) -> Notification:
        """Persist a notification with its receipts.

        Raises:
            StaleNotificationError: the stored version is not ``expected_version``.
        """
        # Checks the domain ``version`` field, which every mutation bumps;
        # Protean's internal ``_version`` guard only tracks persisted writes.
        if expected_version is not None:
            stored = self.find_by_id(notification.id)
            actual = stored.version if stored is not None else None
            if actual != expected_version:
                raise StaleNotificationError(str(notification.id), expected_version, actual)
        self.add(notification)
        return notification

    def find_by_id(self, notification_id) -> Notification | None:
        try:
            return self._dao.get(str(notification_id))
        except ObjectNotFoundError:
            return None

    def find_pending(self, before: datetime | None = None) -> list[Notification]:
        """PENDING notifications, limited to those due by ``before`` when given."""
        pending = self._dao.query.filter(status=NotificationStatus.PENDING.value).all().items
        if before is None:
            return pending
        before = as_utc(before)
        return [n for n in pending if n.scheduled_at is None or as_utc(n.scheduled_at) <= before]

    def find_expired(self, as_of: datetime | None = None) -> list[Notification]:
        """PENDING notifications whose expiry has passed."""
        as_of = as_of or datetime.now(UTC)
        pending = self._dao.query.filter(status=NotificationStatus.PENDING.value).all().items
        return [n for n in pending if n.is_expired(as_of)]

    def count_unread(self, account_id) -> int:
        """Notifications delivered to the account and not yet read or dismissed."""
        return (
            self._dao.query.filter(account_id=str(account_id), status=NotificationStatus.SENT.value).all().total
        )

    def find_for_account(self, account_id, status: str | None = None) -> list[Notification]:
        """Newest first."""
        filters = {"account_id": str(account_id)}
        if status is not None:
            filters["status"] = status
        results = self._dao.query.filter(**filters).all().items
        return sorted(results, key=lambda n: as_utc(n.created_at), reverse=True)

    def stats_for(self, account_id) -> dict:
        notifications = self._dao.query.filter(account_id=str(account_id)).all().items
        return {
            "total": len(notifications),
            "unread": sum(1 for n in notifications if n.status == NotificationStatus.SENT.value),
            "by_status": dict(Counter(n.status for n in notifications)),
            "by_type": dict(Counter(n.notification_type for n in notifications)),
            "by_priority": dict(Counter(n.priority for n in notifications)),
        }
