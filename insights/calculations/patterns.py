"""
Time Patterns, Usage Gaps and Battery Drain

Aggregations keyed on local time or on consecutive sessions of one subject:
- Dense hour-of-day / day-of-week / heatmap grids
- Overnight charging
- Gaps between unplugging and the next plug-in, and the drain rate across them
- Per-day session counts and charging frequency
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from utils.timezone import local_date, local_hour, local_weekday

from .constants import (
    EVENT_CONNECTED,
    FULL_CHARGE_TARGET_LEVEL,
    MAX_DRAIN_GAP_HOURS,
    MAX_DRAIN_RATE_PER_HOUR,
    MAX_USAGE_GAP_HOURS,
    MIN_DRAIN_GAP_HOURS,
    MIN_DRAIN_SAMPLES_PER_HOUR,
    OVERNIGHT_CONNECT_FROM_HOUR,
    OVERNIGHT_DISCONNECT_UNTIL_HOUR,
    PARTIAL_CHARGE_TARGET_LEVEL,
)
from .distributions import LEVEL_BUCKETS, USAGE_GAP_BUCKETS, get_distribution, get_value_distribution
from .records import EventRecord, SessionRecord
from .statistics import calculate_mean, calculate_stddev, percentile_cont, round_or_none

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _avg(values: List[float], digits: int = 2) -> Optional[float]:
    return round_or_none(calculate_mean(values), digits)


def get_time_patterns(sessions: Iterable[SessionRecord]) -> dict:
    """
    Hour-of-day, day-of-week and day-by-hour views over complete sessions.

    Grids are dense: hours or days without sessions appear with a zero
    count and None averages.

    Returns:
        Dict with ``hourly`` (24 entries), ``daily`` (7 entries, 0=Sunday)
        and ``heatmap`` (168 entries, day-major)
    """
    by_hour: Dict[int, List[SessionRecord]] = defaultdict(list)
    by_day: Dict[int, List[SessionRecord]] = defaultdict(list)
    cells: Dict[tuple, int] = defaultdict(int)

    for session in sessions:
        if not session.is_complete:
            continue
        hour = local_hour(session.connect_time)
        day = local_weekday(session.connect_time)
        by_hour[hour].append(session)
        by_day[day].append(session)
        cells[(day, hour)] += 1

    hourly = []
    for hour in range(24):
        members = by_hour[hour]
        hourly.append({
            "hour": hour,
            "session_count": len(members),
            "avg_duration": _avg([s.duration_minutes for s in members], 1),
            "avg_start_level": _avg([s.start_percentage for s in members], 1),
            "avg_charge_gained": _avg([s.charge_gained for s in members], 1),
        })

    daily = []
    for day in range(7):
        members = by_day[day]
        daily.append({
            "day": day,
            "day_name": DAY_NAMES[day],
            "session_count": len(members),
            "avg_duration": _avg([s.duration_minutes for s in members], 1),
            "avg_start_level": _avg([s.start_percentage for s in members], 1),
        })

    heatmap = [
        {"day": day, "hour": hour, "session_count": cells[(day, hour)]}
        for day in range(7)
        for hour in range(24)
    ]

    return {"hourly": hourly, "daily": daily, "heatmap": heatmap}


def hourly_event_counts(events: Iterable[EventRecord], event_type: str = EVENT_CONNECTED) -> List[dict]:
    """Dense 24-hour counts of one event type (plug-in or unplug peaks)."""
    counts = [0] * 24
    for event in events:
        if event.event_type == event_type:
            counts[local_hour(event.event_timestamp)] += 1
    return [{"hour": hour, "count": count} for hour, count in enumerate(counts)]


def is_overnight(session: SessionRecord) -> bool:
    """
    Connected at 21:00 or later and disconnected at or before 08:59 local time.

    Elapsed duration is not considered.
    """
    if not session.is_complete or session.disconnect_time is None:
        return False
    return (
        local_hour(session.connect_time) >= OVERNIGHT_CONNECT_FROM_HOUR
        and local_hour(session.disconnect_time) <= OVERNIGHT_DISCONNECT_UNTIL_HOUR
    )


def get_overnight_summary(sessions: Iterable[SessionRecord]) -> dict:
    """Count overnight sessions and the users who charge overnight."""
    complete = [s for s in sessions if s.is_complete]
    overnight = [s for s in complete if is_overnight(s)]
    total_users = len({s.subject_key for s in complete})
    overnight_users = len({s.subject_key for s in overnight})

    return {
        "overnight_sessions": len(overnight),
        "overnight_users": overnight_users,
        "total_complete": len(complete),
        "total_users": total_users,
        "overnight_session_pct": round(len(overnight) * 100 / len(complete), 1) if complete else None,
        "overnight_user_pct": round(overnight_users * 100 / total_users, 1) if total_users else None,
    }


def _sessions_by_subject(sessions: Iterable[SessionRecord]) -> Dict[tuple, List[SessionRecord]]:
    grouped: Dict[tuple, List[SessionRecord]] = defaultdict(list)
    for session in sessions:
        grouped[session.subject_key].append(session)
    for members in grouped.values():
        members.sort(key=lambda s: s.connect_time)
    return grouped


def compute_usage_gaps(sessions: Iterable[SessionRecord]) -> List[dict]:
    """
    Gaps between each session's disconnect and the same subject's next connect.

    Pairs whose earlier session has no disconnect are skipped. No range
    filter is applied here.

    Returns:
        List of dicts with subject_key, gap_hours, previous_end_level,
        next_start_level and previous_disconnect_time
    """
    gaps = []
    for key, members in _sessions_by_subject(sessions).items():
        for previous, current in zip(members, members[1:]):
            if previous.disconnect_time is None:
                continue
            gap_hours = (current.connect_time - previous.disconnect_time).total_seconds() / 3600
            gaps.append({
                "subject_key": key,
                "gap_hours": gap_hours,
                "previous_end_level": previous.end_percentage,
                "next_start_level": current.start_percentage,
                "previous_disconnect_time": previous.disconnect_time,
            })
    return gaps


def valid_usage_gap_hours(sessions: Iterable[SessionRecord]) -> List[float]:
    """Gap lengths strictly inside (0, 48) hours; longer gaps read as missing data."""
    return [
        g["gap_hours"] for g in compute_usage_gaps(sessions)
        if 0 < g["gap_hours"] < MAX_USAGE_GAP_HOURS
    ]


def get_usage_gap_analysis(sessions: Iterable[SessionRecord]) -> dict:
    """Bucketed histogram and summary of valid usage gaps."""
    hours = valid_usage_gap_hours(sessions)
    buckets = [
        {
            "bucket": b["bucket"],
            "bucket_order": b["bucket_order"],
            "count": b["count"],
            "avg_gap_hours": b["avg_value"],
        }
        for b in get_value_distribution(hours, USAGE_GAP_BUCKETS)
    ]
    return {
        "buckets": buckets,
        "stats": {
            "avg_gap_hours": _avg(hours),
            "median_gap_hours": round_or_none(percentile_cont(hours, 0.5)),
            "gap_count": len(hours),
        },
    }


def compute_drain_samples(sessions: Iterable[SessionRecord]) -> List[dict]:
    """
    Battery drain rates between consecutive complete sessions.

    A sample is kept only when the gap is within [1, 24) hours, the level
    actually dropped, and the rate is below 50 %/hour.

    Returns:
        List of dicts with subject_key, gap_hours, drain_rate (%/hour) and
        hour (local hour of the earlier disconnect)
    """
    samples = []
    complete = [s for s in sessions if s.is_complete]
    for gap in compute_usage_gaps(complete):
        gap_hours = gap["gap_hours"]
        if not MIN_DRAIN_GAP_HOURS <= gap_hours < MAX_DRAIN_GAP_HOURS:
            continue
        dropped = gap["previous_end_level"] - gap["next_start_level"]
        if dropped <= 0:
            continue
        rate = dropped / gap_hours
        if rate >= MAX_DRAIN_RATE_PER_HOUR:
            continue
        samples.append({
            "subject_key": gap["subject_key"],
            "gap_hours": gap_hours,
            "drain_rate": rate,
            "hour": local_hour(gap["previous_disconnect_time"]),
        })
    return samples


def get_drain_rate_summary(sessions: Iterable[SessionRecord]) -> dict:
    """Average, median and quartiles of the drain rate, plus hours per percent."""
    rates = [s["drain_rate"] for s in compute_drain_samples(sessions)]
    return {
        "avg_drain_rate": _avg(rates),
        "median_drain_rate": round_or_none(percentile_cont(rates, 0.5)),
        "p25_drain_rate": round_or_none(percentile_cont(rates, 0.25)),
        "p75_drain_rate": round_or_none(percentile_cont(rates, 0.75)),
        "avg_hours_per_pct": _avg([1 / r for r in rates]),
        "data_points": len(rates),
    }


def get_drain_by_hour(
    sessions: Iterable[SessionRecord],
    min_samples: int = MIN_DRAIN_SAMPLES_PER_HOUR,
) -> List[dict]:
    """Average drain rate by local hour of the earlier disconnect, for well-sampled hours."""
    by_hour: Dict[int, List[float]] = defaultdict(list)
    for sample in compute_drain_samples(sessions):
        by_hour[sample["hour"]].append(sample["drain_rate"])

    return [
        {"hour": hour, "avg_drain_rate": _avg(rates), "samples": len(rates)}
        for hour, rates in sorted(by_hour.items())
        if len(rates) >= min_samples
    ]


def get_charge_target_analysis(sessions: Iterable[SessionRecord]) -> dict:
    """Where complete sessions stop charging: level histogram and full/partial counts."""
    sessions = list(sessions)
    levels = [s.end_percentage for s in sessions if s.is_complete and s.end_percentage is not None]
    total = len(levels)
    full = sum(1 for level in levels if level >= FULL_CHARGE_TARGET_LEVEL)
    partial = sum(1 for level in levels if level < PARTIAL_CHARGE_TARGET_LEVEL)

    return {
        "distribution": get_distribution(sessions, "end_percentage", LEVEL_BUCKETS),
        "stats": {
            "avg_target": _avg(levels, 1),
            "median_target": round_or_none(percentile_cont(levels, 0.5), 0),
            "full_charges": full,
            "partial_charges": partial,
            "total": total,
            "full_charge_pct": round(full * 100 / total, 1) if total else None,
        },
    }


def get_daily_session_counts(sessions: Iterable[SessionRecord]) -> List[dict]:
    """Sessions per local calendar date with completion and active-user counts."""
    by_date: Dict[object, List[SessionRecord]] = defaultdict(list)
    for session in sessions:
        by_date[local_date(session.connect_time)].append(session)

    rows = []
    for day, members in sorted(by_date.items()):
        complete = [s for s in members if s.is_complete]
        rows.append({
            "date": day.isoformat(),
            "session_count": len(members),
            "complete_count": len(complete),
            "avg_duration": _avg([s.duration_minutes for s in complete], 1),
            "active_users": len({s.subject_key for s in members}),
        })
    return rows


def get_daily_charging_frequency(sessions: Iterable[SessionRecord]) -> dict:
    """
    How many times a subject charges on a day it charges at all.

    Returns:
        Dict with ``distribution`` ({charges_per_day, frequency} sorted by
        charges_per_day) and ``stats`` (mean, median, stddev, min, max,
        total_user_days)
    """
    per_user_day: Dict[tuple, int] = defaultdict(int)
    for session in sessions:
        per_user_day[(session.subject_key, local_date(session.connect_time))] += 1

    counts = list(per_user_day.values())
    frequency: Dict[int, int] = defaultdict(int)
    for count in counts:
        frequency[count] += 1

    return {
        "distribution": [
            {"charges_per_day": charges, "frequency": frequency[charges]}
            for charges in sorted(frequency)
        ],
        "stats": {
            "mean": _avg(counts),
            "median": round_or_none(percentile_cont(counts, 0.5), 1),
            "stddev": round_or_none(calculate_stddev(counts)),
            "min": min(counts) if counts else None,
            "max": max(counts) if counts else None,
            "total_user_days": len(counts),
        },
    }
