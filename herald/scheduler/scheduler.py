"""Notification scheduling service.

Accepts requests to deliver a templated notification to a user at a given
(or recurring) time, applies the user's preferences and quiet hours, and
queues the result for the dispatch loop.

Usage:
    from herald.scheduler import NotificationScheduler, ScheduleOptions

    scheduler = NotificationScheduler(
        store=InMemoryQueueStore(),
        gateway=HttpDeliveryGateway(config.gateway),
        preferences=HttpPreferenceProvider(config.gateway),
        renderer=TemplateRegistry.with_defaults(),
    )

    with scheduler:
        notification_id = scheduler.schedule_notification(
            user_id="u1",
            template_id="new-article",
            context={"title": "Engines", "author": "Ada", "slug": "engines"},
            options=ScheduleOptions(scheduled_for=datetime.now(UTC) + timedelta(hours=2)),
        )
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from herald.config import HeraldConfig
from herald.errors import (
    CategoryDisabledError,
    HeraldError,
    PreferencesDisabledError,
    ValidationError,
)
from herald.scheduler.clock import Clock, SystemClock, to_utc
from herald.scheduler.dispatcher import DispatchLoop, TickReport
from herald.scheduler.housekeeping import QueueHousekeeper
from herald.scheduler.interfaces import (
    DeliveryGateway,
    PreferenceProvider,
    QueueStore,
    TemplateRenderer,
    TrackingSink,
)
from herald.scheduler.models import (
    BulkScheduleRequest,
    NotificationStatus,
    QueueItem,
    QueueStatus,
    RecurrencePattern,
    ScheduleOptions,
    ScheduleResult,
)
from herald.scheduler.quiet_hours import adjust_for_quiet_hours
from herald.scheduler.recurrence import expand_recurrence
from herald.scheduler.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Attempts at a compare-and-set status change before giving up
_CAS_ATTEMPTS = 5


class NotificationScheduler:
    """Public entry point for scheduling notifications.

    Owns a DispatchLoop built from the dispatch config. Collaborators are
    injected; nothing here is shared between scheduler instances.
    """

    def __init__(
        self,
        store: QueueStore,
        gateway: DeliveryGateway,
        preferences: PreferenceProvider,
        renderer: TemplateRenderer,
        clock: Clock | None = None,
        tracking_sink: TrackingSink | None = None,
        retry_policy: RetryPolicy | None = None,
        config: HeraldConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Queue store.
            gateway: Delivery transport used by the dispatch loop.
            preferences: Source of user preferences.
            renderer: Template renderer.
            clock: Time source (system clock if None).
            tracking_sink: Receives delivery outcomes, if set.
            retry_policy: Failure handling (built from config if None).
            config: Settings (defaults if None).
        """
        self._config = config or HeraldConfig()
        self._store = store
        self._preferences = preferences
        self._renderer = renderer
        self._clock = clock or SystemClock()
        self._retry_policy = retry_policy or RetryPolicy(
            base_delay_minutes=self._config.retry.base_delay_minutes,
            honor_retry_delay=self._config.retry.honor_retry_delay,
        )
        self._housekeeper = QueueHousekeeper(store)
        self._dispatcher = DispatchLoop(
            store=store,
            gateway=gateway,
            retry_policy=self._retry_policy,
            clock=self._clock,
            tracking_sink=tracking_sink,
            interval_seconds=self._config.dispatch.interval_seconds,
            batch_size=self._config.dispatch.batch_size,
            claim_timeout_seconds=self._config.dispatch.claim_timeout_seconds,
        )

        self._callbacks_lock = threading.Lock()
        self._on_schedule_callbacks: list[Callable[[QueueItem], None]] = []

    # Lifecycle

    @property
    def is_running(self) -> bool:
        """Check if the dispatch loop is running."""
        return self._dispatcher.is_running

    def start(self) -> None:
        """Start the background dispatch loop."""
        self._dispatcher.start()

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the background dispatch loop.

        Args:
            timeout: Seconds to wait for the thread to stop.
        """
        self._dispatcher.stop(timeout=timeout)

    def process_due(self) -> TickReport:
        """Run one dispatch tick synchronously."""
        return self._dispatcher.tick()

    def __enter__(self) -> NotificationScheduler:
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def register_on_schedule(self, callback: Callable[[QueueItem], None]) -> None:
        """Register a callback invoked after a notification is queued."""
        with self._callbacks_lock:
            self._on_schedule_callbacks.append(callback)

    # Scheduling

    def schedule_notification(
        self,
        user_id: str,
        template_id: str,
        context: Mapping[str, Any],
        options: ScheduleOptions,
    ) -> str:
        """Schedule a templated notification for a user.

        Args:
            user_id: Recipient.
            template_id: Template reference passed to the renderer.
            context: Template variables.
            options: Delivery time and policy.

        Returns:
            The new notification id.

        Raises:
            ValidationError: If the request is malformed.
            PreferencesDisabledError: If the user turned notifications off.
            TemplateNotFoundError: If the template does not resolve.
            CategoryDisabledError: If the template's category is turned off.
            StoreError: If the item cannot be stored.
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id is required", field="user_id", value=user_id)
        if not isinstance(options, ScheduleOptions):
            raise ValidationError("options must be ScheduleOptions", field="options")

        prefs = self._preferences.get_preferences(user_id)
        if not prefs.enabled:
            raise PreferencesDisabledError(
                f"Notifications disabled for user {user_id}",
                user_id=user_id,
                template_id=template_id,
            )

        render_context = dict(context)
        render_context.setdefault("user_id", user_id)
        rendered = self._renderer.render(template_id, render_context)
        if not prefs.is_category_enabled(rendered.category):
            raise CategoryDisabledError(
                f"Category {rendered.category!r} disabled for user {user_id}",
                category=rendered.category,
                user_id=user_id,
                template_id=template_id,
            )

        scheduled_for = options.scheduled_for
        if options.respect_quiet_hours:
            scheduled_for = adjust_for_quiet_hours(
                scheduled_for, prefs.quiet_hours, options.timezone
            )

        max_retries = options.max_retries or self._config.retry.max_retries
        item = QueueItem(
            user_id=user_id,
            payload=rendered.payload,
            scheduled_for=scheduled_for,
            priority=options.priority,
            max_retries=max_retries,
            created_at=self._clock.now(),
            metadata={
                "template_id": template_id,
                "original_context": dict(context),
                "options": options.to_dict(),
            },
        )

        self._store.create(item)
        logger.info(
            f"Notification scheduled: {item.id} ({template_id}) for {user_id} "
            f"at {item.scheduled_for.isoformat()}"
        )

        with self._callbacks_lock:
            callbacks = list(self._on_schedule_callbacks)
        for callback in callbacks:
            try:
                callback(item)
            except Exception as e:
                logger.exception(f"Schedule callback error: {e}")

        return item.id

    def schedule_bulk(self, requests: Sequence[BulkScheduleRequest]) -> list[ScheduleResult]:
        """Schedule many notifications, isolating failures per entry.

        Returns:
            One result per request, in input order.
        """
        results: list[ScheduleResult] = []
        for index, request in enumerate(requests):
            try:
                notification_id = self.schedule_notification(
                    request.user_id,
                    request.template_id,
                    request.context,
                    request.options,
                )
            except HeraldError as e:
                logger.warning(f"Bulk entry {index} for {request.user_id} not scheduled: {e}")
                results.append(ScheduleResult(index=index, error=e))
            else:
                results.append(ScheduleResult(index=index, id=notification_id))

        succeeded = sum(1 for r in results if r.ok)
        logger.info(f"Bulk schedule: {succeeded}/{len(results)} scheduled")
        return results

    def schedule_recurring(
        self,
        user_id: str,
        template_id: str,
        context: Mapping[str, Any],
        pattern: RecurrencePattern,
        options: ScheduleOptions,
    ) -> list[str]:
        """Schedule one notification per occurrence of a recurrence pattern.

        The pattern's time is read in ``options.timezone`` (or the configured
        default zone). Occurrences that fail to schedule are logged and skipped.

        Returns:
            Ids of the scheduled occurrences.
        """
        occurrences = expand_recurrence(
            pattern,
            self._clock.now(),
            timezone=options.timezone or self._config.default_timezone,
            horizon_days=self._config.recurrence.horizon_days,
        )

        ids: list[str] = []
        for occurrence in occurrences:
            occurrence_options = dataclasses.replace(options, scheduled_for=occurrence)
            try:
                ids.append(
                    self.schedule_notification(user_id, template_id, context, occurrence_options)
                )
            except HeraldError as e:
                logger.warning(
                    f"Recurring {template_id} for {user_id} at {occurrence.isoformat()} "
                    f"not scheduled: {e}"
                )

        logger.info(
            f"Recurring {pattern.frequency.value} {template_id} for {user_id}: "
            f"{len(ids)}/{len(occurrences)} occurrences scheduled"
        )
        return ids

    # Management

    def cancel_notification(self, notification_id: str) -> bool:
        """Cancel a notification.

        A notification already being delivered is marked cancelled, but the
        in-flight delivery is not retracted.

        Returns:
            True if cancelled, False if missing or already sent.
        """

        def apply(item: QueueItem) -> bool:
            if item.status == QueueStatus.SENT:
                return False
            item.mark_cancelled()
            return True

        changed = self._compare_and_set(notification_id, apply)
        if changed:
            logger.info(f"Notification cancelled: {notification_id}")
        return changed

    def reschedule_notification(self, notification_id: str, new_time: datetime) -> bool:
        """Move a notification to a new time as a fresh pending attempt.

        Returns:
            True if rescheduled, False if missing or already sent.
        """
        new_time = to_utc(new_time)

        def apply(item: QueueItem) -> bool:
            if item.status == QueueStatus.SENT:
                return False
            item.reschedule(new_time)
            return True

        changed = self._compare_and_set(notification_id, apply)
        if changed:
            logger.info(f"Notification rescheduled: {notification_id} to {new_time.isoformat()}")
        return changed

    def _compare_and_set(
        self, notification_id: str, apply: Callable[[QueueItem], bool]
    ) -> bool:
        """Apply a change to a stored item unless its status moved underneath us."""
        for _ in range(_CAS_ATTEMPTS):
            item = self._store.get(notification_id)
            if item is None:
                return False
            observed = item.status
            if not apply(item):
                return False
            if self._store.update_if_status(item, observed):
                return True
            logger.debug(f"Notification {notification_id} changed concurrently, retrying")

        logger.warning(f"Gave up updating {notification_id} after {_CAS_ATTEMPTS} attempts")
        return False

    def get_status(self, notification_id: str) -> NotificationStatus | None:
        """Get a read-only view of a notification."""
        item = self._store.get(notification_id)
        return NotificationStatus.from_item(item) if item else None

    def get_user_pending(self, user_id: str) -> list[NotificationStatus]:
        """Get a user's pending notifications ordered by scheduled_for."""
        items = self._store.list_items(user_id=user_id, status=QueueStatus.PENDING)
        items.sort(key=lambda i: i.scheduled_for)
        return [NotificationStatus.from_item(i) for i in items]

    def get_queue_stats(self) -> dict[str, int]:
        """Get counts by status plus ``total``."""
        return self._housekeeper.get_queue_stats()

    def clear_completed(self) -> int:
        """Delete sent, failed and cancelled notifications."""
        return self._housekeeper.clear_completed()


__all__ = ["NotificationScheduler"]
