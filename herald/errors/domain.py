"""Domain errors for notification scheduling, storage, and delivery."""

from __future__ import annotations

from typing import Any

from herald.errors.base import ErrorCode, HeraldError

# Validation Errors


class ValidationError(HeraldError):
    """Raised when input validation fails."""

    default_message = "Invalid input"
    default_code = ErrorCode.VAL_INVALID_INPUT

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = repr(value)
        super().__init__(message, code=code, details=details, cause=cause)


# Scheduling Errors


class SchedulingError(HeraldError):
    """Raised when a notification cannot be scheduled for a user.

    No queue item is created when this error (or a subclass) is raised.
    """

    default_message = "Notification could not be scheduled"
    default_code = ErrorCode.SCH_PREFERENCES_DISABLED

    def __init__(
        self,
        message: str | None = None,
        *,
        user_id: str | None = None,
        template_id: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if user_id:
            details["user_id"] = user_id
        if template_id:
            details["template_id"] = template_id
        super().__init__(message, code=code, details=details, cause=cause)


class PreferencesDisabledError(SchedulingError):
    """Raised when the user has turned notifications off entirely."""

    default_message = "Notifications disabled for user"
    default_code = ErrorCode.SCH_PREFERENCES_DISABLED


class CategoryDisabledError(SchedulingError):
    """Raised when the template's category is turned off for the user."""

    default_message = "Notification category disabled for user"
    default_code = ErrorCode.SCH_CATEGORY_DISABLED

    def __init__(
        self,
        message: str | None = None,
        *,
        category: str | None = None,
        user_id: str | None = None,
        template_id: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if category:
            details["category"] = category
        super().__init__(
            message,
            user_id=user_id,
            template_id=template_id,
            code=code,
            details=details,
            cause=cause,
        )


class TemplateNotFoundError(SchedulingError):
    """Raised when a template reference does not resolve."""

    default_message = "Template not found"
    default_code = ErrorCode.SCH_TEMPLATE_NOT_FOUND


class NotificationNotFoundError(HeraldError):
    """Raised when a queue item lookup fails."""

    default_message = "Notification not found"
    default_code = ErrorCode.SCH_NOT_FOUND

    def __init__(
        self,
        message: str | None = None,
        *,
        item_id: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if item_id:
            details["item_id"] = item_id
        super().__init__(message, code=code, details=details, cause=cause)


class InvalidTransitionError(HeraldError):
    """Raised when a queue item status change is not allowed."""

    default_message = "Invalid status transition"
    default_code = ErrorCode.SCH_INVALID_TRANSITION

    def __init__(
        self,
        message: str | None = None,
        *,
        item_id: str | None = None,
        current_status: str | None = None,
        target_status: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if item_id:
            details["item_id"] = item_id
        if current_status:
            details["current_status"] = current_status
        if target_status:
            details["target_status"] = target_status
        super().__init__(message, code=code, details=details, cause=cause)


# Store Errors


class StoreError(HeraldError):
    """Raised when the queue store cannot be read or written."""

    default_message = "Queue store unavailable"
    default_code = ErrorCode.STO_UNAVAILABLE

    def __init__(
        self,
        message: str | None = None,
        *,
        store: str | None = None,
        operation: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if store:
            details["store"] = store
        if operation:
            details["operation"] = operation
        super().__init__(message, code=code, details=details, cause=cause)


# Delivery Errors


class DeliveryError(HeraldError):
    """Raised by delivery adapters when a send cannot be completed.

    The dispatch loop converts this into a failed delivery result; it never
    reaches the caller that scheduled the notification.
    """

    default_message = "Notification delivery failed"
    default_code = ErrorCode.DLV_SEND_FAILED
