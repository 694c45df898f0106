"""
Calendar bucket keys for period reports.

Keys sort chronologically as plain strings. Every key is computed in either
the local calendar or UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def to_calendar(timestamp: datetime, utc: bool = False) -> datetime:
    """Convert an aware timestamp into the calendar the report uses."""
    return timestamp.astimezone(timezone.utc) if utc else timestamp.astimezone()


def day_key(timestamp: datetime, utc: bool = False) -> str:
    return to_calendar(timestamp, utc).strftime("%Y-%m-%d")


def month_key(timestamp: datetime, utc: bool = False) -> str:
    return to_calendar(timestamp, utc).strftime("%Y-%m")


def iso_week_key(timestamp: datetime, utc: bool = False) -> str:
    """ISO-8601 week, e.g. 2025-12-29 -> 2026-W01."""
    year, week, _ = to_calendar(timestamp, utc).isocalendar()
    return f"{year}-W{week:02d}"


def week_start_key(timestamp: datetime, start_of_week: int = 0, utc: bool = False) -> str:
    """Date of the first day of the timestamp's week.

    Args:
        start_of_week: 0 for Monday through 6 for Sunday
    """
    local = to_calendar(timestamp, utc).date()
    offset = (local.weekday() - start_of_week) % 7
    return (local - timedelta(days=offset)).isoformat()


def parse_start_of_week(value: str) -> int:
    """Parse a weekday name into 0 (Monday) .. 6 (Sunday).

    Raises:
        ValueError: If the value is not a weekday name
    """
    normalized = (value or "").strip().lower()
    if normalized not in WEEKDAYS:
        raise ValueError(f"Invalid start of week '{value}'. Expected one of: {', '.join(WEEKDAYS)}")
    return WEEKDAYS.index(normalized)


def weekly_key_function(
    start_of_week: Optional[int] = None,
    utc: bool = False,
) -> Callable[[datetime], str]:
    """ISO week keys by default, week-start dates when a start day is set."""
    if start_of_week is None:
        return lambda timestamp: iso_week_key(timestamp, utc)
    return lambda timestamp: week_start_key(timestamp, start_of_week, utc)
