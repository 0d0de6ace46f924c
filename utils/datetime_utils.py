"""
Datetime utilities for the clinic's single local calendar.
Appointments are stored as a local date plus a local time-of-day;
instants (creation time, payment expiry) are timezone-aware.
"""

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


@lru_cache(maxsize=8)
def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve a zone name once per process."""
    return ZoneInfo(tz_name)


def local_now(tz_name: str) -> datetime:
    """Current wall-clock time in the clinic's timezone."""
    return datetime.now(get_zone(tz_name))


def combine_local(day: date, at: time, tz_name: str) -> datetime:
    """Turn a local calendar date and time-of-day into an aware instant."""
    return datetime.combine(day, at, tzinfo=get_zone(tz_name))


def parse_hhmm(value: str) -> time:
    """
    Parse an 'HH:MM' (or 'HH:MM:SS') string to a time-of-day.

    Raises:
        ValueError: If the string is not a valid time
    """
    try:
        return time.fromisoformat(value.strip())
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid time string: {value}") from e


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def format_display_date(value: date) -> str:
    """Format a date the way the clinic prints it (dd/mm/yyyy)."""
    return value.strftime("%d/%m/%Y")


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    return time(hour=minutes // 60, minute=minutes % 60)


def add_minutes(value: time, minutes: int) -> time:
    """Shift a time-of-day forward. The result must stay within the same day."""
    shifted = datetime.combine(date.min, value) + timedelta(minutes=minutes)
    if shifted.date() != date.min:
        raise ValueError(f"{format_hhmm(value)} + {minutes} min crosses midnight")
    return shifted.time()


def parse_iso_datetime(iso_string: str) -> datetime:
    """
    Parse ISO format datetime string to timezone-aware datetime.
    Handles both 'Z' suffix and '+00:00' timezone formats.

    Raises:
        ValueError: If datetime string cannot be parsed
    """
    normalized = iso_string.replace("Z", "+00:00")

    try:
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError as e:
        raise ValueError(f"Invalid datetime string: {iso_string}") from e


def to_iso_string(dt: datetime) -> str:
    """
    Convert datetime to ISO format string.
    Naive datetimes are treated as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.isoformat()
