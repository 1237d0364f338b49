"""Test doubles and builders shared across the herald test suite."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime

from herald.errors import DeliveryError
from herald.scheduler.models import (
    DeliveryResult,
    NotificationPayload,
    QueueItem,
    TrackingEvent,
)

START = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class RecordingGateway:
    """DeliveryGateway double that records calls and replays scripted outcomes.

    Outcomes are consumed in order; once exhausted every send succeeds.
    An outcome may be a DeliveryResult or an exception to raise.
    """

    def __init__(self, outcomes: list[DeliveryResult | Exception] | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[str, NotificationPayload]] = []
        self.on_send: Callable[[str, NotificationPayload], None] | None = None
        self._lock = threading.Lock()

    def send(self, user_id: str, payload: NotificationPayload) -> DeliveryResult:
        with self._lock:
            self.calls.append((user_id, payload))
            outcome = self.outcomes.pop(0) if self.outcomes else None
            counter = len(self.calls)

        if self.on_send is not None:
            self.on_send(user_id, payload)

        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return DeliveryResult(success=True, message_id=f"msg-{counter}")


class FailingGateway(RecordingGateway):
    """Gateway whose every send raises."""

    def send(self, user_id: str, payload: NotificationPayload) -> DeliveryResult:
        super().send(user_id, payload)
        raise DeliveryError("push service unavailable")


class RecordingTrackingSink:
    def __init__(self) -> None:
        self.events: list[TrackingEvent] = []

    def track(self, event: TrackingEvent) -> None:
        self.events.append(event)


def make_item(**overrides) -> QueueItem:
    """Build a queue item with sensible defaults."""
    values = {
        "user_id": "u1",
        "payload": NotificationPayload(title="Hello", body="World"),
        "scheduled_for": START,
        "created_at": START,
    }
    values.update(overrides)
    return QueueItem(**values)
