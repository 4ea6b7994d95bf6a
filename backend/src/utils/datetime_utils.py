"""
Datetime utilities for consistent timezone handling across the application.

All instants are stored and compared in UTC. Therapist-local wall clock
values (working hours, date ranges, slot alignment) are converted through
IANA zones with ``zoneinfo`` so DST transitions are honored.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = timezone.utc


def utc_now() -> datetime:
    """Get the current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware UTC.

    Naive datetimes are assumed to already be UTC, which is how SQLite hands
    back stored values.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware UTC datetime, or None if input is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def get_zone(tz_name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ValueError: If the zone is unknown
    """
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {tz_name}") from e


def is_valid_timezone(tz_name: str) -> bool:
    try:
        get_zone(tz_name)
        return True
    except ValueError:
        return False


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert an aware datetime to the given zone's wall clock."""
    aware = ensure_utc(dt)
    assert aware is not None
    return aware.astimezone(get_zone(tz_name))


def local_to_utc(day: date, wall_time: time, tz_name: str) -> datetime:
    """
    Combine a local date and wall clock time and convert to UTC.

    Nonexistent times inside a spring-forward gap resolve forward by the gap
    length (``fold=0`` semantics of zoneinfo).
    """
    local = datetime.combine(day, wall_time, tzinfo=get_zone(tz_name))
    return local.astimezone(UTC)


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """UTC instants of local midnight at the start and end of ``day``."""
    return (
        local_to_utc(day, time(0, 0), tz_name),
        local_to_utc(day + timedelta(days=1), time(0, 0), tz_name),
    )


def format_datetime(dt: datetime, tz_name: str = "UTC") -> str:
    """
    Format datetime for user-facing notification text.

    Formats as ``Mon 2025-03-03 9:30 AM (Europe/Berlin)`` in the recipient's zone.
    """
    local_datetime = to_local(dt, tz_name)
    hour = local_datetime.hour % 12 or 12
    period = "AM" if local_datetime.hour < 12 else "PM"
    return (
        f"{local_datetime.strftime('%a %Y-%m-%d')} "
        f"{hour}:{local_datetime.minute:02d} {period} ({tz_name})"
    )


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD or YYYY/MM/DD format.

    Automatically normalizes single-digit months/days.

    Raises:
        ValueError: If date string cannot be parsed
    """
    if not date_str or not date_str.strip():
        raise ValueError("Date string cannot be empty")

    date_str = date_str.strip()

    if '/' in date_str:
        parts = date_str.split('/')
    elif '-' in date_str:
        parts = date_str.split('-')
    else:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    if len(parts) != 3:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    normalized = f"{parts[0].zfill(4)}-{parts[1].zfill(2)}-{parts[2].zfill(2)}"

    try:
        return datetime.strptime(normalized, '%Y-%m-%d').date()
    except ValueError as e:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}") from e


def parse_datetime_to_utc(v: str | datetime) -> datetime:
    """
    Parse an ISO string (``Z`` suffix accepted) or datetime to aware UTC.

    Raises:
        ValueError: If the value is naive or unparseable. Instants crossing
            the API boundary must carry an offset.
    """
    if isinstance(v, str):
        try:
            v = datetime.fromisoformat(v.replace('Z', '+00:00'))
        except ValueError as e:
            raise ValueError(f"Invalid datetime string format: {v}") from e
    if not isinstance(v, datetime):
        raise ValueError(f"Expected an ISO 8601 datetime, got {type(v).__name__}")
    if v.tzinfo is None:
        raise ValueError("Datetime must include a timezone offset")
    return v.astimezone(UTC)
