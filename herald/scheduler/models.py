"""Data models for the notification scheduling system.

Defines queue items, scheduling options, quiet hours, recurrence patterns,
and the value objects exchanged with external collaborators.

Usage:
    from herald.scheduler.models import QueueItem, Priority, QueueStatus

    item = QueueItem(
        user_id="u1",
        payload=NotificationPayload(title="Hi", body="New article"),
        scheduled_for=datetime.now(UTC) + timedelta(hours=2),
        priority=Priority.HIGH,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from herald.errors import HeraldError, InvalidTransitionError, ValidationError
from herald.scheduler.clock import parse_hhmm, to_utc


class Priority(str, Enum):
    """Priority levels for scheduled notifications."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def score(self) -> int:
        """Get ordinal score for dispatch ordering (higher = dispatched first)."""
        scores = {Priority.LOW: 1, Priority.NORMAL: 2, Priority.HIGH: 3, Priority.URGENT: 4}
        return scores[self]

    @classmethod
    def parse(cls, value: Priority | str | None) -> Priority:
        """Map a symbolic level to a Priority; unknown or missing means NORMAL."""
        if isinstance(value, Priority):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.NORMAL


class QueueStatus(str, Enum):
    """Status of a queue item."""

    PENDING = "pending"  # Waiting for scheduled_for
    PROCESSING = "processing"  # Claimed by a dispatch tick
    SENT = "sent"  # Delivered
    FAILED = "failed"  # Retries exhausted
    CANCELLED = "cancelled"  # Cancelled by request

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.CANCELLED})

# Transitions the dispatch loop and retry policy may perform. Cancel and
# reschedule are explicit requests with their own rules (see QueueItem).
_DISPATCH_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.SENT, QueueStatus.PENDING, QueueStatus.FAILED}
    ),
}


class Frequency(str, Enum):
    """Recurrence frequencies."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def generate_item_id() -> str:
    """Generate a unique queue item id."""
    return f"notif_{uuid.uuid4().hex}"


def _parse_dt(value: str | None) -> datetime | None:
    return to_utc(datetime.fromisoformat(value)) if value else None


@dataclass
class NotificationPayload:
    """Rendered notification content. Opaque to scheduling logic.

    Attributes:
        title: Notification title.
        body: Notification body text.
        icon: Icon URL.
        badge: Badge URL.
        image: Image URL.
        tag: Collapse tag.
        data: Arbitrary data delivered with the notification.
        actions: Action buttons ({"action", "title", "icon"}).
        require_interaction: Keep visible until the user acts.
        silent: Deliver without sound/vibration.
    """

    title: str
    body: str
    icon: str | None = None
    badge: str | None = None
    image: str | None = None
    tag: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[dict[str, Any]] = field(default_factory=list)
    require_interaction: bool = False
    silent: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "image": self.image,
            "tag": self.tag,
            "data": self.data,
            "actions": self.actions,
            "require_interaction": self.require_interaction,
            "silent": self.silent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationPayload:
        """Create from dictionary."""
        return cls(
            title=data.get("title", ""),
            body=data.get("body", ""),
            icon=data.get("icon"),
            badge=data.get("badge"),
            image=data.get("image"),
            tag=data.get("tag"),
            data=data.get("data") or {},
            actions=data.get("actions") or [],
            require_interaction=data.get("require_interaction", False),
            silent=data.get("silent", False),
        )


@dataclass
class QuietHours:
    """Nightly suppression window in day-local HH:MM, possibly spanning midnight.

    Attributes:
        enabled: Whether quiet hours apply.
        start: Window start (inclusive), e.g. "22:00".
        end: Window end (exclusive), e.g. "08:00".
        timezone: IANA zone the window is expressed in.
    """

    enabled: bool = True
    start: str = "22:00"
    end: str = "08:00"
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        """Validate the window bounds."""
        parse_hhmm(self.start)
        parse_hhmm(self.end)

    @property
    def start_minute(self) -> int:
        hour, minute = parse_hhmm(self.start)
        return hour * 60 + minute

    @property
    def end_minute(self) -> int:
        hour, minute = parse_hhmm(self.end)
        return hour * 60 + minute

    @property
    def spans_midnight(self) -> bool:
        return self.start_minute > self.end_minute

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "start": self.start,
            "end": self.end,
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuietHours:
        """Create from dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            start=data.get("start", "22:00"),
            end=data.get("end", "08:00"),
            timezone=data.get("timezone") or "UTC",
        )


@dataclass
class RecurrencePattern:
    """A repeating schedule.

    Attributes:
        frequency: daily, weekly, or monthly.
        time: Day-local send time "HH:MM".
        days_of_week: Weekday ordinals for weekly patterns (0=Sunday .. 6=Saturday).
        day_of_month: Day of month for monthly patterns (defaults to the 1st).
        end_date: Last instant an occurrence may fall on (defaults to the horizon).
    """

    frequency: Frequency
    time: str
    days_of_week: frozenset[int] | None = None
    day_of_month: int | None = None
    end_date: datetime | None = None

    def __post_init__(self) -> None:
        """Normalize and validate fields."""
        if not isinstance(self.frequency, Frequency):
            try:
                self.frequency = Frequency(str(self.frequency).lower())
            except ValueError as e:
                raise ValidationError(
                    f"Unknown frequency: {self.frequency!r}",
                    field="frequency",
                    value=self.frequency,
                    cause=e,
                ) from e

        parse_hhmm(self.time)

        if self.days_of_week is not None:
            days = frozenset(int(d) for d in self.days_of_week)
            if any(d < 0 or d > 6 for d in days):
                raise ValidationError(
                    "days_of_week must be in 0..6 (0=Sunday)",
                    field="days_of_week",
                    value=sorted(days),
                )
            self.days_of_week = days

        if self.day_of_month is not None and not (1 <= self.day_of_month <= 31):
            raise ValidationError(
                "day_of_month must be in 1..31",
                field="day_of_month",
                value=self.day_of_month,
            )

        if self.end_date is not None:
            self.end_date = to_utc(self.end_date)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "frequency": self.frequency.value,
            "time": self.time,
            "days_of_week": sorted(self.days_of_week) if self.days_of_week is not None else None,
            "day_of_month": self.day_of_month,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


@dataclass
class ScheduleOptions:
    """Per-request scheduling options.

    Attributes:
        scheduled_for: Requested delivery time (past times dispatch on the next tick).
        timezone: Zone for quiet-hours evaluation; overrides the user's setting.
        respect_quiet_hours: Shift the time out of the user's quiet hours.
        max_retries: Retry ceiling; None uses the configured default.
        priority: Symbolic priority level.
        retry_delay_minutes: Requested backoff base. Ignored unless the retry
            config sets honor_retry_delay.
    """

    scheduled_for: datetime
    timezone: str | None = None
    respect_quiet_hours: bool = True
    max_retries: int | None = None
    priority: Priority = Priority.NORMAL
    retry_delay_minutes: float | None = None

    def __post_init__(self) -> None:
        """Normalize priority and time, validate retry bounds."""
        self.scheduled_for = to_utc(self.scheduled_for)
        self.priority = Priority.parse(self.priority)
        if self.max_retries is not None and self.max_retries < 1:
            raise ValidationError(
                "max_retries must be at least 1",
                field="max_retries",
                value=self.max_retries,
            )
        if self.retry_delay_minutes is not None and self.retry_delay_minutes <= 0:
            raise ValidationError(
                "retry_delay_minutes must be positive",
                field="retry_delay_minutes",
                value=self.retry_delay_minutes,
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "scheduled_for": self.scheduled_for.isoformat(),
            "timezone": self.timezone,
            "respect_quiet_hours": self.respect_quiet_hours,
            "max_retries": self.max_retries,
            "priority": self.priority.value,
            "retry_delay_minutes": self.retry_delay_minutes,
        }


@dataclass
class QueueItem:
    """A scheduled notification held by the queue store.

    Attributes:
        user_id: Owning user.
        payload: Rendered notification content.
        scheduled_for: Earliest dispatch time (UTC).
        id: Unique identifier.
        priority: Priority level.
        retry_count: Failed dispatch attempts so far.
        max_retries: Retry ceiling.
        status: Current status.
        created_at: When the item was created.
        last_attempt: When dispatch was last attempted.
        last_error: Error from the last failed attempt.
        message_id: Gateway message id after a successful delivery.
        metadata: Tracing context (template id, original context, options).
    """

    user_id: str
    payload: NotificationPayload
    scheduled_for: datetime
    id: str = field(default_factory=generate_item_id)
    priority: Priority = Priority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    status: QueueStatus = QueueStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_attempt: datetime | None = None
    last_error: str | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Normalize timestamps and check retry bounds."""
        self.scheduled_for = to_utc(self.scheduled_for)
        self.created_at = to_utc(self.created_at)
        if self.last_attempt is not None:
            self.last_attempt = to_utc(self.last_attempt)
        if self.max_retries < 1:
            raise ValidationError("max_retries must be at least 1", field="max_retries")
        if not 0 <= self.retry_count <= self.max_retries:
            raise ValidationError(
                f"retry_count must be in 0..{self.max_retries}",
                field="retry_count",
                value=self.retry_count,
            )

    @property
    def is_terminal(self) -> bool:
        """Check if this item is in a terminal state."""
        return self.status.is_terminal

    @property
    def template_id(self) -> str:
        return self.metadata.get("template_id", "")

    def is_due(self, now: datetime) -> bool:
        """Check if this item is eligible for dispatch at ``now``."""
        return self.status == QueueStatus.PENDING and self.scheduled_for <= now

    def sort_key(self) -> tuple[int, datetime, datetime]:
        """Dispatch order: priority descending, then scheduled_for, then created_at."""
        return (-self.priority.score, self.scheduled_for, self.created_at)

    def transition(self, status: QueueStatus) -> None:
        """Apply a dispatch-driven status change.

        Raises:
            InvalidTransitionError: If the change is not in the dispatch state machine.
        """
        allowed = _DISPATCH_TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidTransitionError(
                f"Cannot move {self.id} from {self.status.value} to {status.value}",
                item_id=self.id,
                current_status=self.status.value,
                target_status=status.value,
            )
        self.status = status

    def mark_processing(self, now: datetime) -> None:
        """Claim for dispatch."""
        self.transition(QueueStatus.PROCESSING)
        self.last_attempt = to_utc(now)

    def mark_sent(self, message_id: str | None = None) -> None:
        """Mark as successfully delivered."""
        self.transition(QueueStatus.SENT)
        self.message_id = message_id
        self.last_error = None

    def mark_cancelled(self) -> None:
        """Cancel by request. Allowed from any status except SENT."""
        if self.status == QueueStatus.SENT:
            raise InvalidTransitionError(
                f"Cannot cancel sent notification {self.id}",
                item_id=self.id,
                current_status=self.status.value,
                target_status=QueueStatus.CANCELLED.value,
            )
        self.status = QueueStatus.CANCELLED

    def reschedule(self, new_time: datetime) -> None:
        """Treat as a fresh scheduling attempt at ``new_time``."""
        if self.status == QueueStatus.SENT:
            raise InvalidTransitionError(
                f"Cannot reschedule sent notification {self.id}",
                item_id=self.id,
                current_status=self.status.value,
                target_status=QueueStatus.PENDING.value,
            )
        self.scheduled_for = to_utc(new_time)
        self.status = QueueStatus.PENDING
        self.retry_count = 0
        self.last_error = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "payload": self.payload.to_dict(),
            "scheduled_for": self.scheduled_for.isoformat(),
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_error": self.last_error,
            "message_id": self.message_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            payload=NotificationPayload.from_dict(data.get("payload") or {}),
            scheduled_for=to_utc(datetime.fromisoformat(data["scheduled_for"])),
            priority=Priority.parse(data.get("priority")),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            status=QueueStatus(data.get("status", "pending")),
            created_at=to_utc(datetime.fromisoformat(data["created_at"])),
            last_attempt=_parse_dt(data.get("last_attempt")),
            last_error=data.get("last_error"),
            message_id=data.get("message_id"),
            metadata=data.get("metadata") or {},
        )


@dataclass
class UserPreferences:
    """A user's notification preferences.

    Attributes:
        enabled: Global on/off switch.
        categories: Per-category switches; categories not listed are allowed.
        quiet_hours: The user's quiet hours, if any.
    """

    enabled: bool = True
    categories: dict[str, bool] = field(default_factory=dict)
    quiet_hours: QuietHours | None = None

    def is_category_enabled(self, category: str | None) -> bool:
        """Check a category switch (absent categories are enabled)."""
        if not category:
            return True
        return bool(self.categories.get(category, True))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "enabled": self.enabled,
            "categories": self.categories,
            "quiet_hours": self.quiet_hours.to_dict() if self.quiet_hours else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserPreferences:
        """Create from dictionary.

        Accepts either a ``quiet_hours`` object or the notification API's
        ``schedule`` block (quiet_hours_enabled, quiet_start, quiet_end, timezone).
        """
        quiet_hours = None
        if data.get("quiet_hours"):
            quiet_hours = QuietHours.from_dict(data["quiet_hours"])
        elif data.get("schedule"):
            schedule = data["schedule"]
            quiet_hours = QuietHours(
                enabled=schedule.get("quiet_hours_enabled", False),
                start=schedule.get("quiet_start", "22:00"),
                end=schedule.get("quiet_end", "08:00"),
                timezone=schedule.get("timezone") or "UTC",
            )

        return cls(
            enabled=data.get("enabled", True),
            categories={k: bool(v) for k, v in (data.get("categories") or {}).items()},
            quiet_hours=quiet_hours,
        )


@dataclass
class RenderedTemplate:
    """Output of a template renderer."""

    payload: NotificationPayload
    category: str | None = None


@dataclass
class DeliveryResult:
    """Result of one delivery attempt.

    Attributes:
        success: Whether the gateway accepted the notification.
        message_id: Gateway message id on success.
        error: Error description on failure.
    """

    success: bool = False
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"success": self.success, "message_id": self.message_id, "error": self.error}


@dataclass
class TrackingEvent:
    """Delivery outcome emitted to the tracking sink."""

    item_id: str
    outcome: str
    timestamp: datetime
    message_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "item_id": self.item_id,
            "outcome": self.outcome,
            "timestamp": self.timestamp.isoformat(),
            "message_id": self.message_id,
            "error": self.error,
        }


@dataclass
class BulkScheduleRequest:
    """One entry of a bulk scheduling call."""

    user_id: str
    template_id: str
    context: dict[str, Any]
    options: ScheduleOptions


@dataclass
class ScheduleResult:
    """Outcome of one scheduling request in a batch.

    Exactly one of ``id`` and ``error`` is set.
    """

    index: int
    id: str | None = None
    error: HeraldError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "id": self.id,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class NotificationStatus:
    """Read-only projection of a queue item."""

    id: str
    user_id: str
    template_id: str
    payload: NotificationPayload
    scheduled_for: datetime
    status: QueueStatus
    priority: Priority
    retry_count: int
    max_retries: int
    created_at: datetime
    sent_at: datetime | None = None
    last_error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_item(cls, item: QueueItem) -> NotificationStatus:
        """Project a queue item."""
        return cls(
            id=item.id,
            user_id=item.user_id,
            template_id=item.template_id,
            payload=item.payload,
            scheduled_for=item.scheduled_for,
            status=item.status,
            priority=item.priority,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            created_at=item.created_at,
            sent_at=item.last_attempt if item.status == QueueStatus.SENT else None,
            last_error=item.last_error,
            metadata=dict(item.metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "template_id": self.template_id,
            "payload": self.payload.to_dict(),
            "scheduled_for": self.scheduled_for.isoformat(),
            "status": self.status.value,
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": self.created_at.isoformat(),
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "last_error": self.last_error,
            "metadata": self.metadata,
        }


# Export all public symbols
__all__ = [
    "Priority",
    "QueueStatus",
    "TERMINAL_STATUSES",
    "Frequency",
    "NotificationPayload",
    "QuietHours",
    "RecurrencePattern",
    "ScheduleOptions",
    "QueueItem",
    "UserPreferences",
    "RenderedTemplate",
    "DeliveryResult",
    "TrackingEvent",
    "BulkScheduleRequest",
    "ScheduleResult",
    "NotificationStatus",
    "generate_item_id",
]
