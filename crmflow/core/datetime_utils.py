"""Centralized datetime utilities for consistent timezone handling.

All persisted timestamps are naive UTC (SQLAlchemy models use naive UTC).
Schedule times ("HH:MM") are wall-clock times in an automation's IANA zone;
the helpers below convert between the two.

Usage:
    from crmflow.core.datetime_utils import utc_now, to_local, from_local

    now = utc_now()
    local_now = to_local(now, "Europe/Paris")
    candidate = local_now.replace(hour=9, minute=0, second=0, microsecond=0)
    next_run = from_local(candidate)
"""

import re
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_SCHEDULE_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_expired(expires_at: datetime) -> bool:
    """Check if a timestamp has expired.

    Args:
        expires_at: Expiry timestamp (naive UTC)

    Returns:
        True if current time is past expires_at
    """
    return utc_now() > expires_at


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier."""
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return False


def get_zone(tz_name: str | None) -> ZoneInfo | None:
    """Resolve an IANA zone name, None if unknown."""
    if not tz_name or not is_valid_timezone(tz_name):
        return None
    return ZoneInfo(tz_name)


def to_local(dt: datetime, zone: ZoneInfo) -> datetime:
    """Convert a naive UTC datetime to an aware datetime in `zone`."""
    return dt.replace(tzinfo=UTC).astimezone(zone)


def from_local(dt: datetime) -> datetime:
    """Convert an aware local datetime back to naive UTC."""
    return to_naive_utc(dt)


def parse_schedule_time(value: str | None) -> time | None:
    """Parse a schedule time string (HH:MM).

    Unlike a user preference, a schedule time has no sensible default:
    a missing or malformed value returns None so the caller can leave
    the automation unscheduled.

    Args:
        value: Time in "HH:MM" format (e.g., "09:00")

    Returns:
        time object, or None if missing or malformed
    """
    if not value:
        return None
    match = _SCHEDULE_TIME_RE.match(value.strip())
    if not match:
        return None
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def hours_between(earlier: datetime, later: datetime) -> float:
    """Elapsed hours from `earlier` to `later` (naive UTC)."""
    return (later - earlier) / timedelta(hours=1)
