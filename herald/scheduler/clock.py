"""Clock abstraction and day-local time helpers.

All scheduling arithmetic goes through a Clock so tests can pin "now".
Timestamps inside herald are timezone-aware UTC datetimes; naive values
coming from callers are interpreted as UTC.

Usage:
    from herald.scheduler.clock import ManualClock

    clock = ManualClock(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))
    clock.advance(minutes=5)
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol, runtime_checkable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from herald.errors import ErrorCode, ValidationError

logger = logging.getLogger(__name__)


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Clock that only moves when told to. Thread-safe."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = to_utc(start) if start is not None else datetime.now(UTC)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        """Jump to an absolute time."""
        with self._lock:
            self._now = to_utc(value)

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move forward by a timedelta or timedelta keyword arguments.

        Returns:
            The new current time.
        """
        step = delta if delta is not None else timedelta(**kwargs)
        with self._lock:
            self._now = self._now + step
            return self._now


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def resolve_timezone(name: str | None, fallback: str = "UTC") -> ZoneInfo:
    """Look up an IANA zone, falling back when the name is unknown.

    Args:
        name: Zone name such as "America/New_York". None uses the fallback.
        fallback: Zone used when name is empty or invalid.

    Returns:
        ZoneInfo instance.
    """
    for candidate in (name, fallback):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {candidate!r}, falling back")
    return ZoneInfo("UTC")


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse a day-local "HH:MM" string.

    Raises:
        ValidationError: If the string is malformed or out of range.
    """
    parts = value.split(":") if isinstance(value, str) else []
    if len(parts) != 2 or not all(p.strip().isdigit() for p in parts):
        raise ValidationError(
            f"Expected HH:MM time, got {value!r}",
            field="time",
            value=value,
            code=ErrorCode.VAL_INVALID_TIME,
        )

    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValidationError(
            f"Time out of range: {value!r}",
            field="time",
            value=value,
            code=ErrorCode.VAL_INVALID_TIME,
        )
    return hour, minute


def minute_of_day(value: datetime) -> int:
    """Minutes since local midnight for an aware or naive datetime."""
    return value.hour * 60 + value.minute


__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "to_utc",
    "resolve_timezone",
    "parse_hhmm",
    "minute_of_day",
]
