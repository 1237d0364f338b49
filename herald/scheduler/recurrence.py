"""Recurrence expansion.

Turns a RecurrencePattern into the concrete delivery times between now and
the pattern's end date. Occurrences are computed as wall-clock times in the
requested zone, so "09:00" stays 09:00 local across DST changes.

Weekday ordinals follow the notification API convention: 0=Sunday .. 6=Saturday.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from herald.scheduler.clock import parse_hhmm, resolve_timezone, to_utc
from herald.scheduler.models import Frequency, RecurrencePattern

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_DAYS = 365


def weekday_ordinal(day: date) -> int:
    """Weekday as 0=Sunday .. 6=Saturday."""
    return day.isoweekday() % 7


def _matches(pattern: RecurrencePattern, day: date) -> bool:
    if pattern.frequency == Frequency.DAILY:
        return True
    if pattern.frequency == Frequency.WEEKLY:
        if not pattern.days_of_week:
            return True
        return weekday_ordinal(day) in pattern.days_of_week
    # Months without the requested day (e.g. the 31st) are skipped
    return day.day == (pattern.day_of_month or 1)


def expand_recurrence(
    pattern: RecurrencePattern,
    now: datetime,
    timezone: str | None = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> list[datetime]:
    """Generate the occurrence times of a pattern.

    The first occurrence is strictly after ``now``: if today's slot at
    ``pattern.time`` has already passed, expansion starts tomorrow.

    Args:
        pattern: The recurrence pattern.
        now: Reference time.
        timezone: Zone the pattern's time is expressed in (default UTC).
        horizon_days: Window used when the pattern has no end date.

    Returns:
        Occurrence times in UTC, ascending.
    """
    now = to_utc(now)
    tz = resolve_timezone(timezone)
    end = pattern.end_date or (now + timedelta(days=horizon_days))
    hour, minute = parse_hhmm(pattern.time)

    def slot(day: date) -> datetime:
        return to_utc(datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz))

    day = now.astimezone(tz).date()
    if slot(day) <= now:
        day += timedelta(days=1)

    occurrences: list[datetime] = []
    while True:
        candidate = slot(day)
        if candidate > end:
            break
        if _matches(pattern, day):
            occurrences.append(candidate)
        day += timedelta(days=1)

    logger.debug(
        f"Expanded {pattern.frequency.value} pattern at {pattern.time} ({tz.key}) "
        f"into {len(occurrences)} occurrences through {end.isoformat()}"
    )
    return occurrences


__all__ = ["expand_recurrence", "weekday_ordinal", "DEFAULT_HORIZON_DAYS"]
