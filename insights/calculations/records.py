"""
Immutable domain records passed between the database layer and the
calculation functions.

The calculations never touch ORM objects: models convert themselves with
``to_record()`` so that reconstruction and aggregation stay pure.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class EventRecord:
    """One raw connect/disconnect event."""

    user_id: str
    event_type: str
    percentage: int
    event_timestamp: datetime
    original_row_id: int = 0
    group_id: Optional[str] = None
    source_file: Optional[str] = None

    @property
    def subject_key(self) -> Tuple[Optional[str], str]:
        return (self.group_id, self.user_id)


@dataclass(frozen=True)
class SessionRecord:
    """A connect event and, when one followed it, the disconnect that closed it."""

    user_id: str
    connect_time: datetime
    start_percentage: int
    disconnect_time: Optional[datetime] = None
    end_percentage: Optional[int] = None
    duration_minutes: Optional[float] = None
    charge_gained: Optional[int] = None
    is_complete: bool = False
    group_id: Optional[str] = None

    @property
    def subject_key(self) -> Tuple[Optional[str], str]:
        return (self.group_id, self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['connect_time'] = _iso(self.connect_time)
        data['disconnect_time'] = _iso(self.disconnect_time)
        return data


@dataclass(frozen=True)
class UserProfile:
    """Per-subject rollup of event counts and session averages."""

    user_id: str
    total_events: int
    connect_count: int
    disconnect_count: int
    event_mismatch: int
    total_sessions: int
    complete_sessions: int
    is_anomalous: bool
    first_event: Optional[datetime] = None
    last_event: Optional[datetime] = None
    avg_duration_minutes: Optional[float] = None
    avg_charge_gained: Optional[float] = None
    avg_connect_percentage: Optional[float] = None
    avg_disconnect_percentage: Optional[float] = None
    group_id: Optional[str] = None
    source_file: Optional[str] = None

    @property
    def subject_key(self) -> Tuple[Optional[str], str]:
        return (self.group_id, self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['first_event'] = _iso(self.first_event)
        data['last_event'] = _iso(self.last_event)
        return data
