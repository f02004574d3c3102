"""
Session Reconstruction

Turns one subject's connect/disconnect events into charging sessions:
- Every connect yields exactly one session, complete or not
- A connect followed by another connect closes the first as incomplete
- A disconnect with no pending connect (orphan) yields nothing
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Tuple

from exceptions import EventValidationError

from .constants import EVENT_CONNECTED, EVENT_DISCONNECTED
from .records import EventRecord, SessionRecord

_EVENT_TYPE_ALIASES = {
    "power_connected": EVENT_CONNECTED,
    "connected": EVENT_CONNECTED,
    "connect": EVENT_CONNECTED,
    "power_disconnected": EVENT_DISCONNECTED,
    "disconnected": EVENT_DISCONNECTED,
    "disconnect": EVENT_DISCONNECTED,
}


def normalize_event_type(raw: Optional[str]) -> str:
    """
    Map a raw event type onto the stored vocabulary.

    Args:
        raw: Event type as found in the source data

    Returns:
        EVENT_CONNECTED or EVENT_DISCONNECTED

    Raises:
        EventValidationError: If the value is not a known connect/disconnect type

    Examples:
        >>> normalize_event_type("Connected")
        'power_connected'
    """
    key = (raw or "").strip().lower()
    if key not in _EVENT_TYPE_ALIASES:
        raise EventValidationError(f"Unknown event type: {raw!r}", field="event_type", value=raw)
    return _EVENT_TYPE_ALIASES[key]


def event_sort_key(event: EventRecord):
    return (event.event_timestamp, event.original_row_id)


def sort_events(events: Iterable[EventRecord]) -> List[EventRecord]:
    """Order events by (timestamp, original row id); the sort is stable for full ties."""
    return sorted(events, key=event_sort_key)


def group_events_by_subject(
    events: Iterable[EventRecord],
) -> Dict[Tuple[Optional[str], str], List[EventRecord]]:
    """Split a mixed event stream into per-subject lists, keyed by (group_id, user_id)."""
    grouped: Dict[Tuple[Optional[str], str], List[EventRecord]] = defaultdict(list)
    for event in events:
        grouped[event.subject_key].append(event)
    return dict(grouped)


def _incomplete(pending: EventRecord) -> SessionRecord:
    return SessionRecord(
        user_id=pending.user_id,
        group_id=pending.group_id,
        connect_time=pending.event_timestamp,
        start_percentage=pending.percentage,
    )


def _complete(pending: EventRecord, disconnect: EventRecord) -> SessionRecord:
    elapsed = (disconnect.event_timestamp - pending.event_timestamp).total_seconds() / 60
    return SessionRecord(
        user_id=pending.user_id,
        group_id=pending.group_id,
        connect_time=pending.event_timestamp,
        disconnect_time=disconnect.event_timestamp,
        start_percentage=pending.percentage,
        end_percentage=disconnect.percentage,
        duration_minutes=round(max(0.0, elapsed), 2),
        charge_gained=disconnect.percentage - pending.percentage,
        is_complete=True,
    )


def reconstruct_sessions(events: Iterable[EventRecord]) -> List[SessionRecord]:
    """
    Pair one subject's connect and disconnect events into sessions.

    The events are sorted by (timestamp, original row id) before the pass,
    so a partially ordered input cannot change the pairing.

    Args:
        events: All events for a single user/device

    Returns:
        Sessions in connect order, one per connect event
    """
    sessions: List[SessionRecord] = []
    pending: Optional[EventRecord] = None

    for event in sort_events(events):
        if event.event_type == EVENT_CONNECTED:
            if pending is not None:
                sessions.append(_incomplete(pending))
            pending = event
        elif event.event_type == EVENT_DISCONNECTED:
            if pending is not None:
                sessions.append(_complete(pending, event))
                pending = None
            # Orphan disconnect: counted by the profile, never a session
        else:
            raise EventValidationError(
                f"Unexpected event type in reconstruction: {event.event_type!r}",
                field="event_type",
                value=event.event_type,
            )

    if pending is not None:
        sessions.append(_incomplete(pending))

    return sessions
