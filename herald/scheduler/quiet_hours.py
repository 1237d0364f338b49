"""Quiet-hours adjustment.

Shifts a delivery time out of a user's nightly quiet window. The window is
[start, end) in day-local time; when start > end it spans midnight.

Usage:
    from herald.scheduler.quiet_hours import adjust_for_quiet_hours

    quiet = QuietHours(start="22:00", end="08:00", timezone="UTC")
    adjust_for_quiet_hours(datetime(2024, 1, 1, 23, 30, tzinfo=UTC), quiet)
    # -> 2024-01-02 08:00 UTC
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from herald.scheduler.clock import minute_of_day, parse_hhmm, resolve_timezone, to_utc
from herald.scheduler.models import QuietHours

logger = logging.getLogger(__name__)


def _window_contains(minute: int, start: int, end: int) -> bool:
    if start > end:
        return minute >= start or minute < end
    return start <= minute < end


def is_quiet_time(
    time: datetime,
    quiet_hours: QuietHours | None,
    timezone: str | None = None,
) -> bool:
    """Check whether a time falls inside the quiet window.

    Args:
        time: The instant to check.
        quiet_hours: The user's quiet hours (None or disabled means never quiet).
        timezone: Zone to evaluate in; defaults to the quiet hours' own zone.

    Returns:
        True if within quiet hours.
    """
    if quiet_hours is None or not quiet_hours.enabled:
        return False

    tz = resolve_timezone(timezone or quiet_hours.timezone)
    local = to_utc(time).astimezone(tz)
    return _window_contains(
        minute_of_day(local), quiet_hours.start_minute, quiet_hours.end_minute
    )


def adjust_for_quiet_hours(
    time: datetime,
    quiet_hours: QuietHours | None,
    timezone: str | None = None,
) -> datetime:
    """Move a delivery time to the end of the quiet window if it falls inside.

    The result is never earlier than the input. For a midnight-spanning window,
    a time on the evening side (at or after start) moves to ``end`` on the next
    local day; a time on the morning side moves to ``end`` on the same day.

    Args:
        time: Requested delivery time.
        quiet_hours: The user's quiet hours (None or disabled returns ``time``).
        timezone: Zone to evaluate in; defaults to the quiet hours' own zone.

    Returns:
        Adjusted delivery time in UTC.
    """
    time = to_utc(time)
    if quiet_hours is None or not quiet_hours.enabled:
        return time

    tz = resolve_timezone(timezone or quiet_hours.timezone)
    local = time.astimezone(tz)
    minute = minute_of_day(local)
    start = quiet_hours.start_minute
    end = quiet_hours.end_minute

    if not _window_contains(minute, start, end):
        return time

    end_hour, end_min = parse_hhmm(quiet_hours.end)
    target_date = local.date()
    if start > end and minute >= start:
        target_date = target_date + timedelta(days=1)

    # Build the wall-clock time in the zone so DST offsets resolve for that day
    adjusted = to_utc(
        datetime(
            target_date.year, target_date.month, target_date.day, end_hour, end_min, tzinfo=tz
        )
    )
    if adjusted <= time:
        # Repeated hour after a fall-back transition: take the second occurrence
        adjusted = to_utc(
            datetime(
                target_date.year,
                target_date.month,
                target_date.day,
                end_hour,
                end_min,
                tzinfo=tz,
                fold=1,
            )
        )

    logger.debug(
        f"Quiet hours {quiet_hours.start}-{quiet_hours.end} ({tz.key}): "
        f"moved {time.isoformat()} to {adjusted.isoformat()}"
    )
    return adjusted


__all__ = ["adjust_for_quiet_hours", "is_quiet_time"]
