"""herald - Notification scheduling and delivery-dispatch core.

Queues templated push notifications for future delivery, honoring user
preferences and quiet hours, and dispatches them with retry and backoff.
"""

from herald.scheduler import (
    NotificationScheduler,
    Priority,
    QueueStatus,
    RecurrencePattern,
    ScheduleOptions,
)

__version__ = "1.0.0"

__all__ = [
    "NotificationScheduler",
    "Priority",
    "QueueStatus",
    "RecurrencePattern",
    "ScheduleOptions",
]
