"""
Time interval helpers shared by validation, lookup and booking.

Session times are zero-padded 24h ``HH:MM`` strings and intervals are half-open:
a session ending at 10:00 does not collide with one starting at 10:00.

Day-of-week resolution works on the calendar date a value carries. ``date``
objects and bare ``YYYY-MM-DD`` strings are taken as-is (no midnight-UTC shift).
Aware datetimes are converted into ``tz`` first when one is given, so callers that
hold UTC timestamps must pass the clinic timezone to get the local weekday.
"""

import re
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

TimeValue = Union[str, int]
DateValue = Union[date, datetime, str]


class DayOfWeek(str, Enum):
    """Day of week, Monday first (matches ``date.weekday()``)."""
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


DAYS_OF_WEEK = [day.value for day in DayOfWeek]


def time_to_minutes(time_str: str) -> int:
    """Convert ``HH:MM`` to minutes since midnight."""
    match = _TIME_PATTERN.match(time_str.strip()) if isinstance(time_str, str) else None
    if not match:
        raise ValueError(f"Invalid time format (expected HH:MM): {time_str!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


def minutes_to_time(minutes: int) -> str:
    minutes = minutes % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _as_minutes(value: TimeValue) -> int:
    return value if isinstance(value, int) else time_to_minutes(value)


def intervals_overlap(start_a: TimeValue, end_a: TimeValue, start_b: TimeValue, end_b: TimeValue) -> bool:
    """
    Half-open interval overlap test.

    Accepts minute offsets or ``HH:MM`` strings. Adjacent intervals sharing an
    endpoint do not overlap; identical intervals do.
    """
    return _as_minutes(start_a) < _as_minutes(end_b) and _as_minutes(start_b) < _as_minutes(end_a)


def interval_contains(outer_start: TimeValue, outer_end: TimeValue, start: TimeValue, end: TimeValue) -> bool:
    """True when ``[start, end)`` lies fully inside ``[outer_start, outer_end)``."""
    return _as_minutes(outer_start) <= _as_minutes(start) and _as_minutes(end) <= _as_minutes(outer_end)


def to_date(value: DateValue, tz: Optional[str] = None) -> date:
    """
    Resolve the calendar date of a date-like value.

    Args:
        value: ``date``, ``datetime`` or ISO-8601 string (date or timestamp)
        tz: Optional IANA timezone; aware datetimes are converted into it

    Returns:
        The calendar date
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))

    if isinstance(value, datetime):
        if tz and value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(tz))
        return value.date()

    return value


def day_of_week(value: DateValue, tz: Optional[str] = None) -> DayOfWeek:
    """Day of week for the calendar date carried by ``value`` (see module notes)."""
    return DayOfWeek(DAYS_OF_WEEK[to_date(value, tz).weekday()])


def week_start_date(value: DateValue) -> date:
    """Monday of the week containing ``value``."""
    day = to_date(value)
    return day - timedelta(days=day.weekday())


def calculate_new_end_time(start_time: str, duration_minutes: int = 60) -> str:
    """End time for a session of ``duration_minutes`` starting at ``start_time``."""
    return minutes_to_time(time_to_minutes(start_time) + duration_minutes)


def get_date_for_day_of_week(week_start: DateValue, target_day: str) -> date:
    """
    Date of ``target_day`` within the week that starts at ``week_start``.

    Raises:
        ValueError: If ``target_day`` is not a day name
    """
    target = target_day.lower().strip()
    if target not in DAYS_OF_WEEK:
        raise ValueError(f"Invalid day of week: {target_day}")

    start = to_date(week_start)
    return start + timedelta(days=DAYS_OF_WEEK.index(target) - start.weekday())
