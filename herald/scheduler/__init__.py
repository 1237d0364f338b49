"""Scheduler module for notification scheduling and dispatch.

Provides a scheduling system for push notifications with features like:
- Priority-ordered dispatch queue
- Per-user quiet hours with time zone awareness
- Daily, weekly and monthly recurrence
- Retry with exponential backoff
- In-memory and SQLite queue stores

Usage:
    from herald.scheduler import NotificationScheduler, ScheduleOptions, Priority

    scheduler = NotificationScheduler(store, gateway, preferences, renderer)
    notification_id = scheduler.schedule_notification(
        user_id="u1",
        template_id="new_article",
        context={"authorName": "Ada", "articleTitle": "Engines"},
        options=ScheduleOptions(
            scheduled_for=datetime.now(UTC) + timedelta(hours=2),
            priority=Priority.HIGH,
        ),
    )
"""

from herald.scheduler.clock import Clock, ManualClock, SystemClock
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
    DeliveryResult,
    Frequency,
    NotificationPayload,
    NotificationStatus,
    Priority,
    QueueItem,
    QueueStatus,
    QuietHours,
    RecurrencePattern,
    RenderedTemplate,
    ScheduleOptions,
    ScheduleResult,
    TrackingEvent,
    UserPreferences,
)
from herald.scheduler.quiet_hours import adjust_for_quiet_hours, is_quiet_time
from herald.scheduler.recurrence import expand_recurrence
from herald.scheduler.retry import RetryPolicy
from herald.scheduler.scheduler import NotificationScheduler
from herald.scheduler.store import InMemoryQueueStore, SqliteQueueStore, create_store

__all__ = [
    # Models
    "BulkScheduleRequest",
    "DeliveryResult",
    "Frequency",
    "NotificationPayload",
    "NotificationStatus",
    "Priority",
    "QueueItem",
    "QueueStatus",
    "QuietHours",
    "RecurrencePattern",
    "RenderedTemplate",
    "ScheduleOptions",
    "ScheduleResult",
    "TrackingEvent",
    "UserPreferences",
    # Time
    "Clock",
    "ManualClock",
    "SystemClock",
    "adjust_for_quiet_hours",
    "is_quiet_time",
    "expand_recurrence",
    # Collaborators
    "DeliveryGateway",
    "PreferenceProvider",
    "QueueStore",
    "TemplateRenderer",
    "TrackingSink",
    # Stores
    "InMemoryQueueStore",
    "SqliteQueueStore",
    "create_store",
    # Dispatch
    "DispatchLoop",
    "TickReport",
    "RetryPolicy",
    "QueueHousekeeper",
    # Scheduler
    "NotificationScheduler",
]
