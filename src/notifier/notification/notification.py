"""Notification aggregate: one message to one account, fanned out over channels.

A notification carries immutable content, the selected channel set with its
priority, an optional schedule window and one DeliveryReceipt per selected
channel. Receipts are driven by the delivery dispatcher; the aggregate's
own status is derived from them (first successful channel promotes it to
SENT, every channel failing moves it to FAILED).

State Machine (6 states):
    PENDING -> SENT -> READ -> DISMISSED
    PENDING -> SENT -> DISMISSED
    PENDING -> SENT -> FAILED
    PENDING -> EXPIRED
    PENDING -> FAILED

Receipt State Machine (5 states):
    PENDING -> SENT -> DELIVERED
    PENDING | SENT | RETRYING -> RETRYING | FAILED
    RETRYING -> PENDING (via increment_retry)
    RETRYING -> SENT
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from notifier.domain import notifier
from notifier.errors import ExpiredError, InvalidStateTransition, NotYetExpiredError
from notifier.notification.events import (
    NotificationChannelDelivered,
    NotificationChannelFailed,
    NotificationChannelRetried,
    NotificationChannelSent,
    NotificationCreated,
    NotificationDismissed,
    NotificationExpired,
    NotificationFailed,
    NotificationRead,
    NotificationSent,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class NotificationType(Enum):
    TASK_REMINDER = "TaskReminder"
    TASK_DUE = "TaskDue"
    GOAL_MILESTONE = "GoalMilestone"
    GOAL_PROGRESS = "GoalProgress"
    SCHEDULE_REMINDER = "ScheduleReminder"
    REMINDER = "Reminder"
    ACCOUNT_SECURITY = "AccountSecurity"
    SYSTEM_ALERT = "SystemAlert"
    SYSTEM_UPDATE = "SystemUpdate"


class NotificationCategory(Enum):
    TASK = "Task"
    GOAL = "Goal"
    SCHEDULE = "Schedule"
    REMINDER = "Reminder"
    ACCOUNT = "Account"
    SYSTEM = "System"


class NotificationPriority(Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"


class NotificationChannel(Enum):
    IN_APP = "InApp"
    SSE = "SSE"
    SYSTEM = "System"
    DESKTOP = "Desktop"
    EMAIL = "Email"
    SMS = "SMS"


class NotificationStatus(Enum):
    PENDING = "Pending"
    SENT = "Sent"
    READ = "Read"
    DISMISSED = "Dismissed"
    EXPIRED = "Expired"
    FAILED = "Failed"


class DeliveryStatus(Enum):
    PENDING = "Pending"
    SENT = "Sent"
    DELIVERED = "Delivered"
    FAILED = "Failed"
    RETRYING = "Retrying"


CATEGORY_FOR_TYPE = {
    NotificationType.TASK_REMINDER: NotificationCategory.TASK,
    NotificationType.TASK_DUE: NotificationCategory.TASK,
    NotificationType.GOAL_MILESTONE: NotificationCategory.GOAL,
    NotificationType.GOAL_PROGRESS: NotificationCategory.GOAL,
    NotificationType.SCHEDULE_REMINDER: NotificationCategory.SCHEDULE,
    NotificationType.REMINDER: NotificationCategory.REMINDER,
    NotificationType.ACCOUNT_SECURITY: NotificationCategory.ACCOUNT,
    NotificationType.SYSTEM_ALERT: NotificationCategory.SYSTEM,
    NotificationType.SYSTEM_UPDATE: NotificationCategory.SYSTEM,
}


def enum_value(enum_cls, value, field):
    """Coerce an enum member or raw value, reporting unknown values as validation errors."""
    try:
        return enum_cls(value).value
    except ValueError:
        raise ValidationError({field: [f"Unknown {field}: {value}"]}) from None


def category_for(notification_type):
    """Category a notification type belongs to (accepts the enum or its value)."""
    return CATEGORY_FOR_TYPE[NotificationType(notification_type)]


def ordered_channels(channels):
    """Channel values de-duplicated and sorted in enum declaration order."""
    wanted = {NotificationChannel(c) for c in channels}
    return [c.value for c in NotificationChannel if c in wanted]


def as_utc(value):
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# State Machines
# ---------------------------------------------------------------------------
_VALID_TRANSITIONS = {
    NotificationStatus.PENDING: {
        NotificationStatus.SENT,
        NotificationStatus.EXPIRED,
        NotificationStatus.FAILED,
    },
    NotificationStatus.SENT: {
        NotificationStatus.READ,
        NotificationStatus.DISMISSED,
        NotificationStatus.FAILED,
    },
    NotificationStatus.READ: {NotificationStatus.DISMISSED},
    NotificationStatus.DISMISSED: set(),  # Terminal
    NotificationStatus.EXPIRED: set(),  # Terminal
    NotificationStatus.FAILED: set(),  # Terminal
}

_OPEN_FOR_DELIVERY = {
    NotificationStatus.PENDING.value,
    NotificationStatus.SENT.value,
    NotificationStatus.READ.value,
    NotificationStatus.DISMISSED.value,
}

_VALID_RECEIPT_TRANSITIONS = {
    DeliveryStatus.PENDING: {
        DeliveryStatus.SENT,
        DeliveryStatus.FAILED,
        DeliveryStatus.RETRYING,
    },
    DeliveryStatus.SENT: {
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
        DeliveryStatus.RETRYING,
    },
    DeliveryStatus.RETRYING: {
        DeliveryStatus.PENDING,  # Via increment_retry
        DeliveryStatus.SENT,
        DeliveryStatus.FAILED,
    },
    DeliveryStatus.DELIVERED: set(),  # Terminal
    DeliveryStatus.FAILED: set(),  # Terminal
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@notifier.value_object(part_of="Notification")
class NotificationContent:
    """What the account holder sees: title, body and optional artwork."""

    title: String(required=True, max_length=200)
    body: String(required=True, max_length=2000)
    icon: String(max_length=500)
    image: String(max_length=500)

    @invariant.post
    def title_must_not_be_blank(self):
        if self.title is not None and not self.title.strip():
            raise ValidationError({"title": ["Title cannot be blank"]})

    @invariant.post
    def body_must_not_be_blank(self):
        if self.body is not None and not self.body.strip():
            raise ValidationError({"body": ["Body cannot be blank"]})


@notifier.value_object(part_of="Notification")
class DeliveryChannels:
    """The selected channel set paired with the notification's priority."""

    channels: Text(required=True)  # JSON array of NotificationChannel values
    priority: String(choices=NotificationPriority, default=NotificationPriority.NORMAL.value)

    @classmethod
    def of(cls, channels, priority=NotificationPriority.NORMAL.value):
        values = [enum_value(NotificationChannel, c, "channels") for c in channels]
        return cls(channels=json.dumps(values), priority=enum_value(NotificationPriority, priority, "priority"))

    @invariant.post
    def channels_must_be_a_non_empty_unique_list(self):
        try:
            values = json.loads(self.channels)
        except (TypeError, ValueError):
            raise ValidationError({"channels": ["Channels must be a JSON list"]})
        if not isinstance(values, list) or not values:
            raise ValidationError({"channels": ["At least one channel is required"]})
        if len(set(values)) != len(values):
            raise ValidationError({"channels": ["Channels must not contain duplicates"]})
        valid = {c.value for c in NotificationChannel}
        unknown = [v for v in values if v not in valid]
        if unknown:
            raise ValidationError({"channels": [f"Unknown channels: {', '.join(map(str, unknown))}"]})

    @property
    def channel_list(self):
        return json.loads(self.channels)


@notifier.value_object(part_of="Notification")
class ScheduleWindow:
    """Optional earliest-send time and expiry."""

    scheduled_at: DateTime()
    expires_at: DateTime()

    @invariant.post
    def scheduled_before_expiry(self):
        if self.scheduled_at and self.expires_at:
            if as_utc(self.scheduled_at) >= as_utc(self.expires_at):
                raise ValidationError({"scheduled_at": ["Scheduled time must be before expiry"]})

    def is_expired(self, now):
        return self.expires_at is not None and as_utc(now) >= as_utc(self.expires_at)

    def is_due(self, now):
        return self.scheduled_at is None or as_utc(self.scheduled_at) <= as_utc(now)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@notifier.entity(part_of="Notification")
class DeliveryReceipt:
    """Delivery record for one channel of a notification."""

    channel: String(choices=NotificationChannel, required=True)
    status: String(choices=DeliveryStatus, default=DeliveryStatus.PENDING.value)
    sent_at: DateTime()
    delivered_at: DateTime()
    failure_reason: String(max_length=1000)
    retry_count: Integer(default=0, min_value=0)
    channel_metadata: Text()  # JSON object, channel specific

    @invariant.post
    def sent_receipts_have_sent_at(self):
        if self.status in (DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value) and self.sent_at is None:
            raise ValidationError({"sent_at": ["Sent receipts must record sent_at"]})

    @invariant.post
    def delivered_receipts_are_ordered(self):
        if self.status != DeliveryStatus.DELIVERED.value:
            return
        if self.delivered_at is None:
            raise ValidationError({"delivered_at": ["Delivered receipts must record delivered_at"]})
        if as_utc(self.delivered_at) < as_utc(self.sent_at):
            raise ValidationError({"delivered_at": ["Delivery cannot precede sending"]})

    @invariant.post
    def failures_carry_a_reason(self):
        if self.status in (DeliveryStatus.FAILED.value, DeliveryStatus.RETRYING.value) and not self.failure_reason:
            raise ValidationError({"failure_reason": ["Failed receipts must record a reason"]})

    def _assert_can_transition(self, target_status):
        current = DeliveryStatus(self.status)
        if target_status not in _VALID_RECEIPT_TRANSITIONS.get(current, set()):
            raise InvalidStateTransition(current.value, target_status.value)

    # Field assignments are ordered so every intermediate state is valid.
    def mark_as_sent(self, sent_at=None, metadata=None):
        self._assert_can_transition(DeliveryStatus.SENT)
        self.sent_at = sent_at or datetime.now(UTC)
        if metadata:
            self.channel_metadata = json.dumps(metadata)
        self.status = DeliveryStatus.SENT.value

    def mark_as_delivered(self, delivered_at=None):
        self._assert_can_transition(DeliveryStatus.DELIVERED)
        delivered_at = delivered_at or datetime.now(UTC)
        if as_utc(delivered_at) < as_utc(self.sent_at):
            raise ValidationError({"delivered_at": ["Delivery cannot precede sending"]})
        self.delivered_at = delivered_at
        self.status = DeliveryStatus.DELIVERED.value

    def mark_as_failed(self, reason, can_retry=True, max_retries=3):
        """Record a failed attempt.

        The receipt stays retryable only while another attempt fits under
        ``max_retries``; the terminal failure counts the final attempt.
        """
        retrying = can_retry and self.retry_count + 1 < max_retries
        target = DeliveryStatus.RETRYING if retrying else DeliveryStatus.FAILED
        self._assert_can_transition(target)

        self.failure_reason = reason or "Unknown delivery error"
        if not retrying:
            self.retry_count = self.retry_count + 1
        self.status = target.value

    def increment_retry(self):
        self._assert_can_transition(DeliveryStatus.PENDING)
        self.status = DeliveryStatus.PENDING.value
        self.sent_at = None
        self.failure_reason = None
        self.retry_count = self.retry_count + 1

    def can_retry(self, max_retries=3):
        return (
            self.status in (DeliveryStatus.FAILED.value, DeliveryStatus.RETRYING.value)
            and self.retry_count < max_retries
        )

    def is_delivered(self):
        return self.status == DeliveryStatus.DELIVERED.value

    def is_settled(self):
        return self.status in (
            DeliveryStatus.SENT.value,
            DeliveryStatus.DELIVERED.value,
            DeliveryStatus.FAILED.value,
        )

    @property
    def metadata_dict(self):
        return json.loads(self.channel_metadata) if self.channel_metadata else {}


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@notifier.aggregate
class Notification:
    """A notification addressed to one account and delivered on one or more channels.

    The aggregate is the single unit of mutation for its receipts; every
    mutation bumps ``version``, which the repository uses as an optimistic
    concurrency token.
    """

    # Recipient
    account_id: Identifier(required=True)

    # Classification
    notification_type: String(choices=NotificationType, required=True)
    category: String(choices=NotificationCategory, required=True)

    # Content and delivery plan
    content: ValueObject(NotificationContent, required=True)
    delivery: ValueObject(DeliveryChannels, required=True)
    schedule: ValueObject(ScheduleWindow)
    receipts: HasMany(DeliveryReceipt)

    # Status
    status: String(choices=NotificationStatus, default=NotificationStatus.PENDING.value)
    sent_at: DateTime()
    read_at: DateTime()
    dismissed_at: DateTime()
    failure_reason: String(max_length=1000)

    # Source event correlation
    source_event_type: String(max_length=200)
    source_event_id: String(max_length=200)
    context_data: Text()  # JSON object

    # Concurrency
    version: Integer(default=1)

    # Timestamps
    created_at: DateTime()
    updated_at: DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def delivered_states_have_sent_at(self):
        delivered = (
            NotificationStatus.SENT.value,
            NotificationStatus.READ.value,
            NotificationStatus.DISMISSED.value,
        )
        if self.status in delivered and self.sent_at is None:
            raise ValidationError({"sent_at": [f"{self.status} notifications must record sent_at"]})

    @invariant.post
    def read_at_follows_sent_at(self):
        if self.status == NotificationStatus.READ.value and self.read_at is None:
            raise ValidationError({"read_at": ["Read notifications must record read_at"]})
        if self.read_at and self.sent_at and as_utc(self.read_at) < as_utc(self.sent_at):
            raise ValidationError({"read_at": ["A notification cannot be read before it was sent"]})

    @invariant.post
    def dismissed_notifications_have_dismissed_at(self):
        if self.status == NotificationStatus.DISMISSED.value and self.dismissed_at is None:
            raise ValidationError({"dismissed_at": ["Dismissed notifications must record dismissed_at"]})

    @invariant.post
    def one_receipt_per_selected_channel(self):
        if not self.receipts:
            return
        channels = [r.channel for r in self.receipts]
        if len(set(channels)) != len(channels):
            raise ValidationError({"receipts": ["Only one receipt per channel is allowed"]})
        if self.delivery is not None:
            selected = set(self.delivery.channel_list)
            stray = [c for c in channels if c not in selected]
            if stray:
                raise ValidationError({"receipts": [f"Receipts for unselected channels: {', '.join(stray)}"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        account_id,
        notification_type,
        title,
        body,
        channels,
        priority=NotificationPriority.NORMAL.value,
        icon=None,
        image=None,
        scheduled_at=None,
        expires_at=None,
        source_event_type=None,
        source_event_id=None,
        context_data=None,
        now=None,
    ):
        """Create a PENDING notification with one pending receipt per channel."""
        now = now or datetime.now(UTC)

        if not account_id or not str(account_id).strip():
            raise ValidationError({"account_id": ["Account id is required"]})
        if expires_at is not None and as_utc(expires_at) <= as_utc(now):
            raise ValidationError({"expires_at": ["Expiry must be in the future"]})

        notification_type = enum_value(NotificationType, notification_type, "notification_type")
        category = category_for(notification_type).value
        delivery = DeliveryChannels.of(channels, priority)
        schedule = None
        if scheduled_at is not None or expires_at is not None:
            schedule = ScheduleWindow(scheduled_at=scheduled_at, expires_at=expires_at)

        notification = cls(
            account_id=account_id,
            notification_type=notification_type,
            category=category,
            content=NotificationContent(title=title, body=body, icon=icon, image=image),
            delivery=delivery,
            schedule=schedule,
            status=NotificationStatus.PENDING.value,
            source_event_type=source_event_type,
            source_event_id=source_event_id,
            context_data=json.dumps(context_data) if context_data else None,
            version=1,
            created_at=now,
            updated_at=now,
        )

        with atomic_change(notification):
            for channel in delivery.channel_list:
                notification.add_receipts(DeliveryReceipt(channel=channel))

        notification.raise_(
            NotificationCreated(
                notification_id=str(notification.id),
                account_id=str(account_id),
                notification_type=notification_type,
                category=category,
                priority=delivery.priority,
                channels=delivery.channels,
                title=title,
                scheduled_at=scheduled_at,
                expires_at=expires_at,
                created_at=now,
            )
        )

        return notification

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def priority(self):
        return self.delivery.priority

    @property
    def channels(self):
        return self.delivery.channel_list

    @property
    def scheduled_at(self):
        return self.schedule.scheduled_at if self.schedule else None

    @property
    def expires_at(self):
        return self.schedule.expires_at if self.schedule else None

    @property
    def receipts_by_channel(self):
        return {r.channel: r for r in self.receipts}

    @property
    def context(self):
        return json.loads(self.context_data) if self.context_data else {}

    def receipt_for(self, channel):
        return self.receipts_by_channel.get(NotificationChannel(channel).value)

    def _require_receipt(self, channel):
        receipt = self.receipt_for(channel)
        if receipt is None:
            raise ValidationError({"receipts": [f"No receipt for channel {NotificationChannel(channel).value}"]})
        return receipt

    def _channels_with(self, *statuses):
        wanted = {s.value for s in statuses}
        return ordered_channels(r.channel for r in self.receipts if r.status in wanted)

    def sent_channels(self):
        return self._channels_with(DeliveryStatus.SENT, DeliveryStatus.DELIVERED)

    def failed_channels(self):
        return self._channels_with(DeliveryStatus.FAILED)

    def pending_channels(self):
        return self._channels_with(DeliveryStatus.PENDING, DeliveryStatus.RETRYING)

    def delivered_channel_count(self):
        return sum(1 for r in self.receipts if r.is_delivered())

    def delivery_success_rate(self):
        total = len(self.receipts)
        if total == 0:
            return 0.0
        return self.delivered_channel_count() / total * 100

    def all_channels_delivered(self):
        return bool(self.receipts) and all(r.is_delivered() for r in self.receipts)

    def is_expired(self, now=None):
        return self.schedule is not None and self.schedule.is_expired(now or datetime.now(UTC))

    def is_due(self, now=None):
        return self.schedule is None or self.schedule.is_due(now or datetime.now(UTC))

    def is_read(self):
        return self.status == NotificationStatus.READ.value

    def is_dismissed(self):
        return self.status == NotificationStatus.DISMISSED.value

    def should_send(self, now=None):
        """True while the notification is still waiting for its first delivery."""
        now = now or datetime.now(UTC)
        return self.status == NotificationStatus.PENDING.value and not self.is_expired(now) and self.is_due(now)

    def accepts_delivery(self, now=None):
        """Per-attempt gate: like ``should_send`` but stays open after the first channel lands.

        Reading or dismissing the notification does not close the gate for
        channels still retrying; only expiry and aggregate failure do.
        """
        now = now or datetime.now(UTC)
        return (
            self.status in _OPEN_FOR_DELIVERY
            and not self.is_expired(now)
            and self.is_due(now)
        )

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status):
        """Validate state machine transition."""
        current = NotificationStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidStateTransition(current.value, target_status.value)

    def _touch(self, now):
        self.version = (self.version or 0) + 1
        self.updated_at = now

    def _event_ids(self):
        return {"notification_id": str(self.id), "account_id": str(self.account_id)}

    def mark_as_sent(self, sent_at=None):
        self._assert_can_transition(NotificationStatus.SENT)
        now = sent_at or datetime.now(UTC)
        if self.is_expired(now):
            raise ExpiredError(self.expires_at)

        with atomic_change(self):
            self.status = NotificationStatus.SENT.value
            self.sent_at = now
            self._touch(now)

        self.raise_(NotificationSent(**self._event_ids(), sent_at=now))

    def mark_as_read(self, read_at=None):
        self._assert_can_transition(NotificationStatus.READ)
        now = read_at or datetime.now(UTC)
        if as_utc(now) < as_utc(self.sent_at):
            raise ValidationError({"read_at": ["A notification cannot be read before it was sent"]})

        with atomic_change(self):
            self.status = NotificationStatus.READ.value
            self.read_at = now
            self._touch(now)

        self.raise_(NotificationRead(**self._event_ids(), read_at=now))

    def mark_as_dismissed(self, dismissed_at=None):
        self._assert_can_transition(NotificationStatus.DISMISSED)
        now = dismissed_at or datetime.now(UTC)
        if as_utc(now) < as_utc(self.sent_at):
            raise ValidationError({"dismissed_at": ["A notification cannot be dismissed before it was sent"]})

        with atomic_change(self):
            self.status = NotificationStatus.DISMISSED.value
            self.dismissed_at = now
            self._touch(now)

        self.raise_(NotificationDismissed(**self._event_ids(), dismissed_at=now))

    def mark_as_expired(self, now=None):
        self._assert_can_transition(NotificationStatus.EXPIRED)
        now = now or datetime.now(UTC)
        if not self.is_expired(now):
            raise NotYetExpiredError(self.expires_at)

        with atomic_change(self):
            self.status = NotificationStatus.EXPIRED.value
            self._touch(now)

        self.raise_(NotificationExpired(**self._event_ids(), expired_at=now))

    def mark_as_failed(self, reason=None, failed_at=None):
        self._assert_can_transition(NotificationStatus.FAILED)
        now = failed_at or datetime.now(UTC)
        reason = reason or "All delivery channels failed"

        with atomic_change(self):
            self.status = NotificationStatus.FAILED.value
            self.failure_reason = reason
            self._touch(now)

        self.raise_(NotificationFailed(**self._event_ids(), reason=reason, failed_at=now))

    # -------------------------------------------------------------------
    # Per-channel delivery
    # -------------------------------------------------------------------
    def record_channel_sent(self, channel, sent_at=None, metadata=None):
        """Mark one channel sent; the first successful channel promotes the notification."""
        receipt = self._require_receipt(channel)
        receipt._assert_can_transition(DeliveryStatus.SENT)
        now = sent_at or datetime.now(UTC)
        promote = self.status == NotificationStatus.PENDING.value
        if promote and self.is_expired(now):
            raise ExpiredError(self.expires_at)
        if self.status in (NotificationStatus.EXPIRED.value, NotificationStatus.FAILED.value):
            raise InvalidStateTransition(self.status, NotificationStatus.SENT.value)

        with atomic_change(self):
            receipt.mark_as_sent(now, metadata)
            if promote:
                self.status = NotificationStatus.SENT.value
                self.sent_at = now
            self._touch(now)

        self.raise_(NotificationChannelSent(**self._event_ids(), channel=receipt.channel, sent_at=now))
        if promote:
            self.raise_(NotificationSent(**self._event_ids(), sent_at=now))

    def record_channel_delivered(self, channel, delivered_at=None):
        receipt = self._require_receipt(channel)
        receipt._assert_can_transition(DeliveryStatus.DELIVERED)
        now = delivered_at or datetime.now(UTC)
        if as_utc(now) < as_utc(receipt.sent_at):
            raise ValidationError({"delivered_at": ["Delivery cannot precede sending"]})

        with atomic_change(self):
            receipt.mark_as_delivered(now)
            self._touch(now)

        self.raise_(NotificationChannelDelivered(**self._event_ids(), channel=receipt.channel, delivered_at=now))

    def record_channel_failure(self, channel, reason, can_retry=True, max_retries=3, failed_at=None):
        """Record a failed attempt on one channel.

        Returns True when the receipt reached terminal FAILED. Once every
        receipt has failed, a PENDING or SENT notification fails as a whole.
        """
        receipt = self._require_receipt(channel)
        now = failed_at or datetime.now(UTC)
        retrying = can_retry and receipt.retry_count + 1 < max_retries
        receipt._assert_can_transition(DeliveryStatus.RETRYING if retrying else DeliveryStatus.FAILED)

        with atomic_change(self):
            receipt.mark_as_failed(reason, can_retry=can_retry, max_retries=max_retries)
            self._touch(now)

        self.raise_(
            NotificationChannelFailed(
                **self._event_ids(),
                channel=receipt.channel,
                reason=receipt.failure_reason,
                retry_count=receipt.retry_count,
                retrying=retrying,
                failed_at=now,
            )
        )

        every_channel_failed = all(r.status == DeliveryStatus.FAILED.value for r in self.receipts)
        if every_channel_failed and self.status in (NotificationStatus.PENDING.value, NotificationStatus.SENT.value):
            self.mark_as_failed("All delivery channels failed", failed_at=now)

        return not retrying

    def prepare_channel_retry(self, channel, now=None):
        receipt = self._require_receipt(channel)
        receipt._assert_can_transition(DeliveryStatus.PENDING)
        now = now or datetime.now(UTC)

        with atomic_change(self):
            receipt.increment_retry()
            self._touch(now)

        self.raise_(
            NotificationChannelRetried(
                **self._event_ids(),
                channel=receipt.channel,
                retry_count=receipt.retry_count,
                retried_at=now,
            )
        )
