"""
Date range options: `--since`, `--until` and `--last`.

Bounds are interpreted in the local calendar unless a timezone is given.
A `since` bound starts at the first millisecond of its minute or day and an
`until` bound ends at the last one, so both are inclusive.
"""

import re
from datetime import datetime, timedelta, tzinfo
from typing import List, Optional, Tuple

from ai_usage_meter.storage.models import UsageRecord


DATE_FILTER_FORMAT_HINT = (
    "YYYYMMDD, YYYYMMDDHHMM, YYYY-MM-DD, YYYY-MM-DDTHH:MM, MMDD, MM-DD, "
    "MM-DDTHH:MM, HH:MM, or ISO datetime"
)
LAST_DURATION_FORMAT_HINT = "15m, 2h, 3d, or 1w"

SINCE = "since"
UNTIL = "until"

DURATION_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}

# (pattern, has_year, has_time); groups are year?, month, day, hour?, minute?
_DATE_PATTERNS = (
    (re.compile(r"^(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})$"), True, True),
    (re.compile(r"^(\d{4})(\d{2})(\d{2})$"), True, False),
    (re.compile(r"^(\d{2})(\d{2})$"), False, False),
    (re.compile(r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2})$"), True, True),
    (re.compile(r"^(\d{4})-(\d{2})-(\d{2})$"), True, False),
    (re.compile(r"^(\d{1,2})-(\d{1,2})[ T](\d{2}):(\d{2})$"), False, True),
    (re.compile(r"^(\d{1,2})-(\d{1,2})$"), False, False),
)
_TIME_ONLY = re.compile(r"^(\d{1,2}):(\d{2})$")
_DURATION = re.compile(r"^(\d+)([mhdw])$", re.IGNORECASE)


def _localize(value: datetime, tz: Optional[tzinfo]) -> datetime:
    if tz is not None:
        return value.replace(tzinfo=tz)
    return value.astimezone()


def _build(
    year: int,
    month: int,
    day: int,
    boundary: str,
    tz: Optional[tzinfo],
    hour: Optional[int] = None,
    minute: Optional[int] = None,
) -> Optional[datetime]:
    is_since = boundary == SINCE
    if hour is None:
        hour = 0 if is_since else 23
    if minute is None:
        minute = 0 if is_since else 59
    second = 0 if is_since else 59
    microsecond = 0 if is_since else 999000
    try:
        return _localize(datetime(year, month, day, hour, minute, second, microsecond), tz)
    except ValueError:
        return None


def parse_date_filter_value(
    value: str,
    boundary: str,
    reference: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """Parse one date bound.

    Args:
        value: Raw option value
        boundary: SINCE or UNTIL, selecting the start or end of the period
        reference: Supplies the year (and day, for HH:MM) when omitted
        tz: Calendar timezone, defaults to local time

    Returns:
        Aware datetime, or None when the value is empty or unparsable
    """
    text = (value or "").strip()
    if not text:
        return None

    reference = reference or datetime.now(tz)

    time_only = _TIME_ONLY.match(text)
    if time_only:
        hour, minute = int(time_only.group(1)), int(time_only.group(2))
        return _build(reference.year, reference.month, reference.day, boundary, tz, hour, minute)

    for pattern, has_year, has_time in _DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        parts = [int(group) for group in match.groups()]
        year = parts.pop(0) if has_year else reference.year
        month, day = parts[0], parts[1]
        if has_time:
            return _build(year, month, day, boundary, tz, parts[2], parts[3])
        return _build(year, month, day, boundary, tz)

    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else _localize(parsed, tz)


def parse_last_duration(value: str) -> Optional[timedelta]:
    """Parse a `--last` duration such as 15m, 2h, 3d or 1w."""
    match = _DURATION.match((value or "").strip())
    if not match:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return amount * DURATION_UNITS[match.group(2).lower()]


def resolve_date_range(
    since: Optional[str] = None,
    until: Optional[str] = None,
    last: Optional[str] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Resolve the date options into an inclusive (since, until) window.

    Raises:
        ValueError: On unparsable values, `--last` combined with explicit
            bounds, or a `since` later than `until`
    """
    since = (since or "").strip()
    until = (until or "").strip()
    last = (last or "").strip()

    if last and (since or until):
        raise ValueError("--last cannot be used with --since or --until")

    if last:
        duration = parse_last_duration(last)
        if duration is None:
            raise ValueError(f"Invalid --last value: {last}. Use {LAST_DURATION_FORMAT_HINT}.")
        end = now or datetime.now(tz)
        if end.tzinfo is None:
            end = end.astimezone()
        return end - duration, end

    since_date = None
    if since:
        since_date = parse_date_filter_value(since, SINCE, now, tz)
        if since_date is None:
            raise ValueError(f"Invalid --since value: {since}. Use {DATE_FILTER_FORMAT_HINT}.")

    until_date = None
    if until:
        until_date = parse_date_filter_value(until, UNTIL, now, tz)
        if until_date is None:
            raise ValueError(f"Invalid --until value: {until}. Use {DATE_FILTER_FORMAT_HINT}.")

    if since_date is not None and until_date is not None and since_date > until_date:
        raise ValueError("--since must be earlier than or equal to --until")

    return since_date, until_date


def filter_entries_by_date_range(
    records: List[UsageRecord],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[UsageRecord]:
    """Keep records whose timestamp lies in the inclusive window."""
    if since is None and until is None:
        return list(records)
    return [
        record for record in records
        if (since is None or record.timestamp >= since)
        and (until is None or record.timestamp <= until)
    ]
