"""
Timezone utilities for consistent datetime handling.

The Problem:
- PostgreSQL stores timezone-aware datetimes (with tzinfo)
- SQLite stores naive datetimes (without tzinfo)
- Hour-of-day and day-of-week views must be computed in the users' local zone

The Solution:
- ensure_utc() makes any datetime aware in UTC (naive values are taken as UTC)
- to_local() converts to Config.LOCAL_TIMEZONE before extracting hours or dates
- local_weekday() numbers days 0=Sunday..6=Saturday
"""

from datetime import date, datetime, timezone as tz
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import Config
from exceptions import ConfigurationError


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: A datetime that may or may not have timezone info

    Returns:
        Timezone-aware datetime in UTC, or None if input was None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Assume naive datetimes are already UTC
        return dt.replace(tzinfo=tz.utc)

    return dt.astimezone(tz.utc)


@lru_cache(maxsize=8)
def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ConfigurationError if unknown."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone {name!r}: {e}", config_key="LOCAL_TIMEZONE") from e


def to_local(dt: datetime, zone_name: Optional[str] = None) -> datetime:
    """Convert a datetime into the configured local zone."""
    return ensure_utc(dt).astimezone(get_zone(zone_name or Config.LOCAL_TIMEZONE))


def local_hour(dt: datetime, zone_name: Optional[str] = None) -> int:
    """Hour of day (0-23) in the local zone."""
    return to_local(dt, zone_name).hour


def local_weekday(dt: datetime, zone_name: Optional[str] = None) -> int:
    """
    Day of week in the local zone, 0=Sunday..6=Saturday.

    Examples:
        >>> local_weekday(datetime(2024, 1, 7, 12, 0, tzinfo=timezone.utc), "UTC")
        0
    """
    return (to_local(dt, zone_name).weekday() + 1) % 7


def local_date(dt: datetime, zone_name: Optional[str] = None) -> date:
    """Calendar date in the local zone."""
    return to_local(dt, zone_name).date()
