"""Protocols for the collaborators the scheduler depends on.

Implementations are injected into NotificationScheduler; herald ships
reference adapters in herald.templates, herald.preferences, herald.delivery
and herald.scheduler.store.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from herald.scheduler.models import (
    DeliveryResult,
    NotificationPayload,
    QueueItem,
    QueueStatus,
    RenderedTemplate,
    TrackingEvent,
    UserPreferences,
)


@runtime_checkable
class DeliveryGateway(Protocol):
    """Push transport. Must not block indefinitely."""

    def send(self, user_id: str, payload: NotificationPayload) -> DeliveryResult: ...


@runtime_checkable
class PreferenceProvider(Protocol):
    """Source of per-user notification preferences."""

    def get_preferences(self, user_id: str) -> UserPreferences: ...


@runtime_checkable
class TemplateRenderer(Protocol):
    """Turns a template reference and context into a payload.

    Raises TemplateNotFoundError when the reference does not resolve.
    """

    def render(self, template_id: str, context: Mapping[str, Any]) -> RenderedTemplate: ...


@runtime_checkable
class TrackingSink(Protocol):
    """Receives delivery outcomes. Fire-and-forget."""

    def track(self, event: TrackingEvent) -> None: ...


@runtime_checkable
class QueueStore(Protocol):
    """Keyed holder of queue items.

    Implementations return copies: mutating a returned item has no effect
    until it is written back with update() or update_if_status().
    Errors surface as StoreError.
    """

    def create(self, item: QueueItem) -> QueueItem: ...

    def get(self, item_id: str) -> QueueItem | None: ...

    def update(self, item: QueueItem) -> None:
        """Overwrite a stored item; NotificationNotFoundError if it is unknown."""
        ...

    def update_if_status(self, item: QueueItem, expected: QueueStatus) -> bool:
        """Write ``item`` only if the stored status still equals ``expected``."""
        ...

    def claim(self, item_id: str, now: datetime) -> QueueItem | None:
        """Atomically move a due pending item to processing.

        Returns the claimed item, or None if it is no longer pending.
        """
        ...

    def release_stale(self, older_than: datetime) -> int:
        """Move processing items last claimed before ``older_than`` back to pending.

        Returns the number of items released.
        """
        ...

    def list_due(self, now: datetime) -> list[QueueItem]: ...

    def list_items(
        self,
        user_id: str | None = None,
        status: QueueStatus | None = None,
    ) -> list[QueueItem]: ...

    def count_by_status(self) -> dict[QueueStatus, int]: ...

    def delete(self, item_id: str) -> bool: ...


__all__ = [
    "DeliveryGateway",
    "PreferenceProvider",
    "TemplateRenderer",
    "TrackingSink",
    "QueueStore",
]
