"""
Date and time helpers for timetable arithmetic.

All "today" computations take an explicit timezone name (defaulting to
Config.TIMEZONE) and an explicit instant, so nothing depends on the server
locale. Clock times are "HH:MM" strings; arithmetic is done on integer
minutes since midnight.
"""
import re
from datetime import date, datetime
from typing import Optional, Union

import pytz

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import ValidationError

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

MINUTES_PER_DAY = 24 * 60

_TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


def parse_time(value: str) -> int:
    """
    Convert an "HH:MM" string to minutes since midnight.

    Raises:
        ValidationError: if the value is not a valid 24h clock time
    """
    if not isinstance(value, str):
        raise ValidationError(f"Invalid time value: {value!r}")
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(f"Invalid time format: {value!r}. Use HH:MM (e.g. 10:00)")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    """Render minutes since midnight as zero-padded "HH:MM"."""
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(value: str) -> str:
    """Canonicalize "9:05" to "09:05"."""
    return format_minutes(parse_time(value))


def compute_end_time(start_time: str, duration_minutes: Optional[int] = None) -> str:
    """
    Add a fixed duration to a start time.

    Slots never cross midnight, so an end time past 23:59 is rejected
    instead of wrapping around.
    """
    duration = Config.DEFAULT_SLOT_MINUTES if duration_minutes is None else duration_minutes
    if duration <= 0:
        raise ValidationError("Duration must be positive")
    end = parse_time(start_time) + duration
    if end >= MINUTES_PER_DAY:
        raise ValidationError(f"Slot starting at {start_time} would end after midnight")
    return format_minutes(end)


def get_timezone(tz_name: Optional[str] = None):
    """Resolve a timezone name, defaulting to the configured one."""
    try:
        return pytz.timezone(tz_name or Config.TIMEZONE)
    except pytz.UnknownTimeZoneError as e:
        raise ValidationError(f"Unknown timezone: {tz_name}") from e


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Make a datetime timezone-aware in UTC.

    Naive values are assumed to already be UTC (that is how MongoDB
    returns them when the client is not tz_aware).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


def local_today(tz_name: Optional[str] = None, now: Optional[datetime] = None) -> date:
    """Calendar date of `now` (default: current instant) in the given timezone."""
    instant = ensure_utc(now) if now is not None else utc_now()
    return instant.astimezone(get_timezone(tz_name)).date()


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_date(value: Union[str, date, datetime, None], tz_name: Optional[str] = None,
               now: Optional[datetime] = None) -> date:
    """
    Normalize a request date into a calendar date.

    Strings must be ISO "YYYY-MM-DD". Aware datetimes are converted into the
    target timezone before taking the date. None means "today".
    """
    if value is None or value == "":
        return local_today(tz_name, now)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(get_timezone(tz_name)).date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}. Use YYYY-MM-DD") from e


def local_instant(day: Union[str, date], time_of_day: str, tz_name: Optional[str] = None) -> datetime:
    """UTC instant of a wall-clock "HH:MM" on a calendar date in the given timezone."""
    if isinstance(day, str):
        day = parse_date(day)
    minutes = parse_time(time_of_day)
    naive = datetime(day.year, day.month, day.day, minutes // 60, minutes % 60)
    return get_timezone(tz_name).localize(naive).astimezone(pytz.utc)
