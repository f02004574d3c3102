"""Utility modules for Charging Insights."""

from .timezone import (
    ensure_utc,
    local_date,
    local_hour,
    local_weekday,
    to_local,
)

__all__ = [
    'ensure_utc',
    'to_local',
    'local_hour',
    'local_weekday',
    'local_date',
]
