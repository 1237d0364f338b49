"""Unified exception hierarchy for herald.

Exception Hierarchy:
    HeraldError (base)
    +-- ConfigurationError - Configuration and settings issues
    +-- ValidationError - Input validation failures
    +-- SchedulingError - Request rejected before a queue item exists
    |   +-- PreferencesDisabledError - User turned notifications off
    |   +-- CategoryDisabledError - Template category turned off
    |   +-- TemplateNotFoundError - Template reference did not resolve
    +-- NotificationNotFoundError - Unknown queue item
    +-- InvalidTransitionError - Status change not allowed
    +-- StoreError - Queue store read/write failures
    +-- DeliveryError - Delivery adapter failures

Usage:
    from herald.errors import PreferencesDisabledError, SchedulingError

    try:
        scheduler.schedule_notification(user_id, "new-article", context, options)
    except SchedulingError as e:
        logger.warning(f"Not scheduled: {e.message} (code: {e.code})")
"""

# --- base ---
from herald.errors.base import (
    ConfigurationError,
    ErrorCode,
    HeraldError,
)

# --- domain errors ---
from herald.errors.domain import (
    CategoryDisabledError,
    DeliveryError,
    InvalidTransitionError,
    NotificationNotFoundError,
    PreferencesDisabledError,
    SchedulingError,
    StoreError,
    TemplateNotFoundError,
    ValidationError,
)

__all__ = [
    # Error codes
    "ErrorCode",
    # Base exception
    "HeraldError",
    # Configuration errors
    "ConfigurationError",
    # Validation errors
    "ValidationError",
    # Scheduling errors
    "SchedulingError",
    "PreferencesDisabledError",
    "CategoryDisabledError",
    "TemplateNotFoundError",
    "NotificationNotFoundError",
    "InvalidTransitionError",
    # Store errors
    "StoreError",
    # Delivery errors
    "DeliveryError",
]
