"""DeliveryDispatcher: concurrent per-channel delivery with bounded retries.

One task per pending channel runs under ``asyncio.gather`` and settles
independently: a failing channel backs off on its own timer and never
delays its siblings. Every receipt change is written back through the
Notification aggregate with its ``version`` as the expected version.

Per channel:
    gate -> send -> SENT (-> DELIVERED)
    gate -> send -> RETRYING -> backoff -> PENDING -> gate -> send ...
    ... -> FAILED -> dead-letter sink
    gate closed -> FAILED (no dead letter)
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from notifier.channel.port import Recipient
from notifier.config import DispatchConfig
from notifier.delivery.dead_letter import DeadLetterEntry, InMemoryDeadLetterSink
from notifier.errors import ChannelSendError, StaleNotificationError
from notifier.notification.notification import (
    DeliveryStatus,
    Notification,
    NotificationStatus,
    ordered_channels,
)

logger = structlog.get_logger(__name__)

_SUCCESS_STATUSES = ("sent", "delivered")


@dataclass
class ChannelResult:
    """Outcome of one channel within a dispatch.

    ``status`` is the receipt status the channel ended in, or ``"Error"``
    when the channel task itself crashed.
    """

    channel: str
    status: str
    attempts: int = 0
    error: str | None = None
    dead_lettered: bool = False
    skipped: bool = False


@dataclass
class DispatchReport:
    notification_id: str
    status: str | None = None
    success_rate: float = 0.0
    channels: dict[str, ChannelResult] = field(default_factory=dict)

    def result_for(self, channel):
        return self.channels.get(channel)

    @property
    def delivered_channels(self):
        return [c for c, r in self.channels.items() if r.status == DeliveryStatus.DELIVERED.value]

    @property
    def failed_channels(self):
        return [c for c, r in self.channels.items() if r.status == DeliveryStatus.FAILED.value]


def _utc_now():
    return datetime.now(UTC)


def _default_recipient(account_id):
    return Recipient(account_id=str(account_id))


class DeliveryDispatcher:
    """Fan a persisted notification out over its channels.

    All collaborators are injected; ``clock`` returns the current aware
    datetime and ``sleep`` awaits a backoff in seconds.
    """

    def __init__(
        self,
        repository=None,
        senders=None,
        dead_letters=None,
        config=None,
        clock=None,
        sleep=None,
        recipient_resolver=None,
    ):
        self._repository = repository
        self.senders = dict(senders or {})
        self.dead_letters = dead_letters if dead_letters is not None else InMemoryDeadLetterSink()
        self.config = config or DispatchConfig()
        self.clock = clock or _utc_now
        self.sleep = sleep or asyncio.sleep
        self.recipient_resolver = recipient_resolver or _default_recipient

    @property
    def repository(self):
        return self._repository or current_domain.repository_for(Notification)

    # -------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------
    async def dispatch(self, notification_id) -> DispatchReport:
        """Deliver every unsettled channel of a notification.

        Channel failures never propagate: they end up on the receipts, in
        the dead-letter sink and in the returned report.
        """
        repo = self.repository
        notification_id = str(notification_id)
        notification = repo.find_by_id(notification_id)
        if notification is None:
            raise ObjectNotFoundError(f"Notification {notification_id} does not exist")

        recipient = self.recipient_resolver(notification.account_id)
        if inspect.isawaitable(recipient):
            recipient = await recipient

        report = DispatchReport(notification_id=notification_id)
        not_due = not notification.is_due(self.clock())
        if not_due:
            logger.info("Notification not yet due", notification_id=notification_id, scheduled_at=notification.scheduled_at)

        pending = []
        for channel in ordered_channels(notification.receipts_by_channel):
            receipt = notification.receipt_for(channel)
            if receipt.is_settled() or not_due:
                report.channels[channel] = ChannelResult(channel, receipt.status, skipped=True)
            else:
                pending.append(channel)

        outcomes = await asyncio.gather(
            *(self._deliver_channel(repo, notification_id, channel, recipient) for channel in pending),
            return_exceptions=True,
        )
        for channel, outcome in zip(pending, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Channel delivery crashed",
                    notification_id=notification_id,
                    channel=channel,
                    error=repr(outcome),
                )
                outcome = ChannelResult(channel, "Error", error=str(outcome))
            report.channels[channel] = outcome

        final = repo.find_by_id(notification_id)
        report.status = final.status
        report.success_rate = final.delivery_success_rate()

        logger.info(
            "Notification dispatched",
            notification_id=notification_id,
            status=report.status,
            delivered=report.delivered_channels,
            failed=report.failed_channels,
            success_rate=report.success_rate,
        )
        return report

    async def dispatch_many(self, notification_ids) -> list[DispatchReport]:
        ids = [str(i) for i in notification_ids]
        outcomes = await asyncio.gather(*(self.dispatch(i) for i in ids), return_exceptions=True)
        reports = []
        for notification_id, outcome in zip(ids, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error("Notification dispatch crashed", notification_id=notification_id, error=repr(outcome))
                continue
            reports.append(outcome)
        return reports

    # -------------------------------------------------------------------
    # Per-channel task
    # -------------------------------------------------------------------
    async def _deliver_channel(self, repo, notification_id, channel, recipient) -> ChannelResult:
        sender = self.senders.get(channel)
        attempts = 0

        while True:
            started = self.clock()
            notification = repo.find_by_id(notification_id)
            receipt = notification.receipt_for(channel)
            if receipt.is_settled():
                return ChannelResult(channel, receipt.status, attempts, receipt.failure_reason, skipped=attempts == 0)

            if not notification.accepts_delivery(started):
                return self._abandon(repo, notification_id, channel, attempts, started)

            if receipt.status == DeliveryStatus.RETRYING.value:
                self._commit(repo, notification_id, lambda n: n.prepare_channel_retry(channel, now=started))

            attempts += 1
            error, retryable, outcome = await self._attempt(sender, channel, notification, recipient)

            if error is None:
                return self._record_success(repo, notification_id, channel, outcome, started, attempts)

            notification, terminal = self._commit(
                repo,
                notification_id,
                lambda n: n.record_channel_failure(
                    channel,
                    error,
                    can_retry=retryable,
                    max_retries=self.config.max_retries,
                    failed_at=self.clock(),
                ),
            )
            receipt = notification.receipt_for(channel)

            if terminal:
                logger.error(
                    "Channel delivery exhausted",
                    notification_id=notification_id,
                    channel=channel,
                    attempts=attempts,
                    retry_count=receipt.retry_count,
                    error=error,
                )
                await self._dead_letter(notification, channel, error, receipt.retry_count)
                return ChannelResult(channel, receipt.status, attempts, error, dead_lettered=True)

            delay = self.config.backoff_delay(receipt.retry_count)
            logger.warning(
                "Channel delivery attempt failed",
                notification_id=notification_id,
                channel=channel,
                attempt=attempts,
                error=error,
                retry_in_seconds=delay,
            )
            await self.sleep(delay)

    async def _attempt(self, sender, channel, notification, recipient):
        """Run one send. Returns ``(error, retryable, outcome)``; ``error`` is None on success."""
        if sender is None:
            return f"No sender configured for channel {channel}", False, None

        try:
            outcome = await sender.send(notification, recipient)
        except ChannelSendError as exc:
            return str(exc) or "Channel send failed", exc.retryable, None
        except Exception as exc:
            logger.exception("Channel sender raised", notification_id=str(notification.id), channel=channel)
            return f"{type(exc).__name__}: {exc}", True, None

        outcome = outcome or {}
        if outcome.get("status") in _SUCCESS_STATUSES:
            return None, True, outcome
        return outcome.get("error") or "Unknown dispatch error", True, outcome

    def _record_success(self, repo, notification_id, channel, outcome, started, attempts):
        metadata = {"message_id": outcome["message_id"]} if outcome.get("message_id") else None
        notification, _ = self._commit(
            repo,
            notification_id,
            lambda n: n.record_channel_sent(channel, sent_at=started, metadata=metadata),
        )
        if outcome.get("status") == "delivered":
            delivered_at = max(self.clock(), started)
            notification, _ = self._commit(
                repo,
                notification_id,
                lambda n: n.record_channel_delivered(channel, delivered_at=delivered_at),
            )

        status = notification.receipt_for(channel).status
        logger.info(
            "Channel delivery succeeded",
            notification_id=notification_id,
            channel=channel,
            attempts=attempts,
            status=status,
        )
        return ChannelResult(channel, status, attempts)

    def _abandon(self, repo, notification_id, channel, attempts, now):
        """Close a channel whose notification no longer accepts delivery."""

        def close(notification):
            if notification.status == NotificationStatus.PENDING.value and notification.is_expired(now):
                notification.mark_as_expired(now)
            receipt = notification.receipt_for(channel)
            if not receipt.is_settled():
                notification.record_channel_failure(
                    channel,
                    f"Delivery abandoned: notification is {notification.status}",
                    can_retry=False,
                    max_retries=self.config.max_retries,
                    failed_at=now,
                )

        notification, _ = self._commit(repo, notification_id, close)
        receipt = notification.receipt_for(channel)
        logger.info(
            "Channel delivery abandoned",
            notification_id=notification_id,
            channel=channel,
            notification_status=notification.status,
            attempts=attempts,
        )
        return ChannelResult(channel, receipt.status, attempts, receipt.failure_reason)

    # -------------------------------------------------------------------
    # Persistence and dead letters
    # -------------------------------------------------------------------
    def _commit(self, repo, notification_id, mutate):
        """Reload, apply ``mutate`` and save against the loaded version.

        A version conflict reloads and re-applies, up to ``save_attempts``.
        """
        for attempt in range(1, self.config.save_attempts + 1):
            notification = repo.find_by_id(notification_id)
            expected_version = notification.version
            result = mutate(notification)
            try:
                repo.save(notification, expected_version=expected_version)
                return notification, result
            except StaleNotificationError:
                if attempt == self.config.save_attempts:
                    raise
                logger.info(
                    "Notification changed concurrently, reapplying",
                    notification_id=notification_id,
                    attempt=attempt,
                )

    async def _dead_letter(self, notification, channel, error, retry_count):
        entry = DeadLetterEntry(
            notification_id=str(notification.id),
            account_id=str(notification.account_id),
            channel=channel,
            error=error,
            retry_count=retry_count,
            recorded_at=self.clock(),
        )
        try:
            await self.dead_letters.record(entry)
        except Exception:
            logger.exception(
                "Dead-letter sink failed",
                notification_id=entry.notification_id,
                channel=channel,
                retry_count=retry_count,
            )
