"""
User Profile Aggregation

Per-subject rollup of event counts, session counts and session averages,
plus the two data-quality predicates built on the event mismatch:

- is_anomalous: strict flag, mismatch above 1
- is_clean_cohort_member: loose analysis filter, mismatch of 10 or less
"""

import statistics as stats_module
from typing import Iterable, List, Optional, Set, Tuple

from .constants import (
    ANOMALY_MISMATCH_THRESHOLD,
    CLEAN_COHORT_MAX_MISMATCH,
    EVENT_CONNECTED,
    EVENT_DISCONNECTED,
)
from .records import EventRecord, SessionRecord, UserProfile


def is_anomalous(event_mismatch: int) -> bool:
    """
    Data-quality flag for a subject.

    Examples:
        >>> is_anomalous(1)
        False
        >>> is_anomalous(2)
        True
    """
    return event_mismatch > ANOMALY_MISMATCH_THRESHOLD


def is_clean_cohort_member(event_mismatch: int) -> bool:
    """
    Inclusion filter for the "clean" comparison population.

    Examples:
        >>> is_clean_cohort_member(10)
        True
        >>> is_clean_cohort_member(11)
        False
    """
    return event_mismatch <= CLEAN_COHORT_MAX_MISMATCH


def _mean_or_none(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(stats_module.mean(values), 2)


def compute_user_profile(
    events: Iterable[EventRecord],
    sessions: Iterable[SessionRecord],
) -> Optional[UserProfile]:
    """
    Compute the profile for one subject.

    Args:
        events: Every event recorded for the subject, including orphans
        sessions: Sessions reconstructed from those events

    Returns:
        UserProfile, or None when the subject has no events. Averages are
        None (not zero) when there are no complete sessions.
    """
    events = list(events)
    if not events:
        return None
    sessions = list(sessions)

    connect_count = sum(1 for e in events if e.event_type == EVENT_CONNECTED)
    disconnect_count = sum(1 for e in events if e.event_type == EVENT_DISCONNECTED)
    event_mismatch = abs(connect_count - disconnect_count)

    complete = [s for s in sessions if s.is_complete]
    timestamps = [e.event_timestamp for e in events]
    first = min(events, key=lambda e: (e.event_timestamp, e.original_row_id))

    return UserProfile(
        user_id=first.user_id,
        group_id=first.group_id,
        source_file=first.source_file,
        total_events=len(events),
        connect_count=connect_count,
        disconnect_count=disconnect_count,
        event_mismatch=event_mismatch,
        is_anomalous=is_anomalous(event_mismatch),
        total_sessions=len(sessions),
        complete_sessions=len(complete),
        first_event=min(timestamps),
        last_event=max(timestamps),
        avg_duration_minutes=_mean_or_none([s.duration_minutes for s in complete]),
        avg_charge_gained=_mean_or_none([s.charge_gained for s in complete]),
        avg_connect_percentage=_mean_or_none([s.start_percentage for s in complete]),
        avg_disconnect_percentage=_mean_or_none([s.end_percentage for s in complete]),
    )


def clean_cohort_keys(profiles: Iterable[UserProfile]) -> Set[Tuple[Optional[str], str]]:
    """Subject keys of profiles inside the mismatch-based clean cohort."""
    return {p.subject_key for p in profiles if is_clean_cohort_member(p.event_mismatch)}


def curated_cohort_keys(
    user_ids: Iterable[str],
    group_id: Optional[str] = None,
) -> Set[Tuple[Optional[str], str]]:
    """Subject keys for an explicit, hand-curated list of user ids."""
    return {(group_id, str(user_id)) for user_id in user_ids}


def filter_sessions_by_keys(
    sessions: Iterable[SessionRecord],
    keys: Set[Tuple[Optional[str], str]],
) -> List[SessionRecord]:
    """Restrict sessions to the subjects in ``keys``."""
    return [s for s in sessions if s.subject_key in keys]


def user_sort_key(user_id: str) -> tuple:
    """Numeric ids sort numerically, before any non-numeric ids."""
    return (0, int(user_id), "") if user_id.isdecimal() else (1, 0, user_id)


PROFILE_SORT_FIELDS = {
    "user_id": lambda p: user_sort_key(p.user_id),
    "total_events": lambda p: p.total_events,
    "total_sessions": lambda p: p.total_sessions,
    "avg_duration": lambda p: p.avg_duration_minutes,
    "avg_charge": lambda p: p.avg_charge_gained,
    "mismatch": lambda p: p.event_mismatch,
}


def sort_profiles(
    profiles: Iterable[UserProfile],
    sort_by: str = "user_id",
    descending: bool = False,
    limit: Optional[int] = None,
) -> List[UserProfile]:
    """
    Sort profiles by a whitelisted field; profiles missing the value sort last.

    Raises:
        ValueError: If ``sort_by`` is not in PROFILE_SORT_FIELDS
    """
    if sort_by not in PROFILE_SORT_FIELDS:
        raise ValueError(f"Cannot sort by {sort_by!r}. Expected one of {sorted(PROFILE_SORT_FIELDS)}")

    accessor = PROFILE_SORT_FIELDS[sort_by]
    profiles = list(profiles)
    present = [p for p in profiles if accessor(p) is not None]
    missing = [p for p in profiles if accessor(p) is None]
    ordered = sorted(present, key=lambda p: (accessor(p), user_sort_key(p.user_id)), reverse=descending) + missing
    return ordered[:limit] if limit is not None else ordered
