"""Error codes and the HeraldError base class.

Every exception raised by herald derives from HeraldError and carries a
machine-readable ErrorCode plus a details dict, so callers can branch on
``error.code`` and API layers can return ``error.to_dict()`` unchanged.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Machine-readable codes, grouped by prefix."""

    # Configuration (CFG_*)
    CFG_INVALID = "CFG_INVALID"

    # Input validation (VAL_*)
    VAL_INVALID_INPUT = "VAL_INVALID_INPUT"
    VAL_INVALID_TIME = "VAL_INVALID_TIME"

    # Scheduling (SCH_*)
    SCH_PREFERENCES_DISABLED = "SCH_PREFERENCES_DISABLED"
    SCH_CATEGORY_DISABLED = "SCH_CATEGORY_DISABLED"
    SCH_TEMPLATE_NOT_FOUND = "SCH_TEMPLATE_NOT_FOUND"
    SCH_NOT_FOUND = "SCH_NOT_FOUND"
    SCH_INVALID_TRANSITION = "SCH_INVALID_TRANSITION"

    # Queue store (STO_*)
    STO_UNAVAILABLE = "STO_UNAVAILABLE"
    STO_DUPLICATE = "STO_DUPLICATE"
    STO_WRITE_FAILED = "STO_WRITE_FAILED"

    # Delivery (DLV_*)
    DLV_SEND_FAILED = "DLV_SEND_FAILED"

    UNKNOWN = "UNKNOWN"


class HeraldError(Exception):
    """Root of the herald exception hierarchy.

    Subclasses set ``default_message`` and ``default_code``; constructors
    accept keyword context that ends up in ``details``.

    Attributes:
        message: Text shown to humans.
        code: ErrorCode for programmatic handling.
        details: Extra context (ids, field names, offending values).
        cause: The lower-level exception, also chained as ``__cause__``.
    """

    default_message: str = "An error occurred"
    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        extras = ""
        if self.code != self.default_code:
            extras += f", code={self.code.value!r}"
        if self.details:
            extras += f", details={self.details!r}"
        if self.cause:
            extras += f", cause={self.cause!r}"
        return f"{type(self).__name__}({self.message!r}{extras})"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error response."""
        payload: dict[str, Any] = {
            "error": type(self).__name__,
            "code": self.code.value,
            "detail": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(HeraldError):
    """Raised when settings cannot be turned into a working component."""

    default_message = "Invalid configuration"
    default_code = ErrorCode.CFG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        config_key: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        super().__init__(message, code=code, details=details, cause=cause)
