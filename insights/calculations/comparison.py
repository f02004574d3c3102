"""
Population Comparison and Anomaly Impact

Summaries computed independently for each population (all users versus
the clean cohort, anomalous versus normal users), never by filtering an
already-aggregated summary.
"""

from typing import Dict, Iterable, List, Optional

from utils.timezone import local_date, local_hour

from .constants import SHORT_DATA_SPAN_DAYS
from .distributions import (
    DATA_DAYS_BUCKETS,
    DURATION_BUCKETS,
    complete_non_negative_charge,
    complete_only,
    metric_values,
)
from .records import SessionRecord, UserProfile
from .statistics import calculate_mean, calculate_stddev, percentile_cont, round_or_none


def _avg(values, digits: int = 2) -> Optional[float]:
    return round_or_none(calculate_mean(values), digits)


def summarize_population(sessions: Iterable[SessionRecord]) -> dict:
    """
    Headline statistics for one session population.

    Connect level uses every session; disconnect level, duration and charge
    use complete sessions, with charge further limited to gains of zero or more.
    """
    sessions = list(sessions)
    durations = metric_values(sessions, "duration_minutes")
    charges = metric_values(sessions, "charge_gained", complete_non_negative_charge)

    return {
        "total_users": len({s.subject_key for s in sessions}),
        "total_sessions": len(sessions),
        "complete_sessions": sum(1 for s in sessions if s.is_complete),
        "avg_connect_level": _avg(metric_values(sessions, "start_percentage"), 1),
        "avg_disconnect_level": _avg(metric_values(sessions, "end_percentage"), 1),
        "avg_charge_gained": _avg(charges, 1),
        "avg_duration": _avg(durations, 1),
        "stddev_duration": round_or_none(calculate_stddev(durations), 1),
        "stddev_charge": round_or_none(calculate_stddev(charges), 1),
        "median_duration": round_or_none(percentile_cont(durations, 0.5), 1),
        "median_charge": round_or_none(percentile_cont(charges, 0.5), 1),
    }


def _hourly_counts(sessions: List[SessionRecord]) -> List[int]:
    counts = [0] * 24
    for session in sessions:
        if session.is_complete:
            counts[local_hour(session.connect_time)] += 1
    return counts


def _duration_bucket_counts(sessions: List[SessionRecord]) -> List[int]:
    counts = [0] * len(DURATION_BUCKETS.labels)
    for duration in metric_values(sessions, "duration_minutes"):
        counts[DURATION_BUCKETS.classify(duration)[1]] += 1
    return counts


def get_comparison(
    all_sessions: Iterable[SessionRecord],
    clean_sessions: Iterable[SessionRecord],
) -> dict:
    """
    Side-by-side statistics for every session and for the clean cohort.

    Args:
        all_sessions: Unfiltered population
        clean_sessions: Sessions of clean-cohort subjects only

    Returns:
        Dict with ``summary`` ({all, clean}), ``hourly`` (24 rows of
        all_count/clean_count over complete sessions) and ``duration_buckets``
        (one row per duration bucket, zero-filled)
    """
    all_sessions = list(all_sessions)
    clean_sessions = list(clean_sessions)

    all_hourly = _hourly_counts(all_sessions)
    clean_hourly = _hourly_counts(clean_sessions)
    all_buckets = _duration_bucket_counts(all_sessions)
    clean_buckets = _duration_bucket_counts(clean_sessions)

    return {
        "summary": {
            "all": summarize_population(all_sessions),
            "clean": summarize_population(clean_sessions),
        },
        "hourly": [
            {"hour": hour, "all_count": all_hourly[hour], "clean_count": clean_hourly[hour]}
            for hour in range(24)
        ],
        "duration_buckets": [
            {
                "bucket": label,
                "bucket_order": order,
                "all_count": all_buckets[order],
                "clean_count": clean_buckets[order],
            }
            for order, label in enumerate(DURATION_BUCKETS.labels)
        ],
    }


def _rollup(profiles: List[UserProfile]) -> dict:
    def present(values):
        return [v for v in values if v is not None]

    return {
        "users": len(profiles),
        "total_events": sum(p.total_events for p in profiles),
        "total_sessions": sum(p.total_sessions for p in profiles),
        "complete_sessions": sum(p.complete_sessions for p in profiles),
        "avg_duration": _avg(present(p.avg_duration_minutes for p in profiles), 1),
        # Negative per-user averages are kept here on purpose
        "avg_charge_gained": _avg(present(p.avg_charge_gained for p in profiles), 1),
        "avg_connect_level": _avg(present(p.avg_connect_percentage for p in profiles), 1),
        "avg_disconnect_level": _avg(present(p.avg_disconnect_percentage for p in profiles), 1),
        "avg_mismatch": _avg([p.event_mismatch for p in profiles], 1),
    }


def _share(part: int, whole: int) -> Optional[float]:
    return round(part * 100 / whole, 1) if whole else None


def get_anomaly_impact(profiles: Iterable[UserProfile]) -> dict:
    """
    How much of the data anomalous users account for.

    Returns:
        Dict with ``all``, ``anomalous`` and ``normal`` rollups plus
        ``impact`` shares (percent of users, events and sessions that are
        anomalous; None when there is no data)
    """
    profiles = list(profiles)
    anomalous = [p for p in profiles if p.is_anomalous]
    normal = [p for p in profiles if not p.is_anomalous]

    everyone = _rollup(profiles)
    flagged = _rollup(anomalous)

    return {
        "all": everyone,
        "anomalous": flagged,
        "normal": _rollup(normal),
        "impact": {
            "pct_users": _share(flagged["users"], everyone["users"]),
            "pct_events": _share(flagged["total_events"], everyone["total_events"]),
            "pct_sessions": _share(flagged["total_sessions"], everyone["total_sessions"]),
        },
    }


def get_anomalous_users(profiles: Iterable[UserProfile]) -> List[UserProfile]:
    """Anomalous profiles, largest mismatch first."""
    flagged = [p for p in profiles if p.is_anomalous]
    return sorted(flagged, key=lambda p: p.event_mismatch, reverse=True)


def get_overall_stats(profiles: Iterable[UserProfile], sessions: Iterable[SessionRecord]) -> dict:
    """Dataset-wide headline numbers."""
    profiles = list(profiles)
    sessions = list(sessions)
    firsts = [p.first_event for p in profiles if p.first_event is not None]
    lasts = [p.last_event for p in profiles if p.last_event is not None]

    return {
        "total_users": len(profiles),
        "total_events": sum(p.total_events for p in profiles),
        "total_sessions": len(sessions),
        "complete_sessions": sum(1 for s in sessions if s.is_complete),
        "anomalous_users": sum(1 for p in profiles if p.is_anomalous),
        "avg_duration": _avg(metric_values(sessions, "duration_minutes"), 1),
        "avg_charge_gained": _avg(metric_values(sessions, "charge_gained", complete_non_negative_charge), 1),
        "avg_connect_level": _avg(metric_values(sessions, "start_percentage"), 1),
        "avg_disconnect_level": _avg(metric_values(sessions, "end_percentage", complete_only), 1),
        "data_start": min(firsts).isoformat() if firsts else None,
        "data_end": max(lasts).isoformat() if lasts else None,
    }


def data_span_days(profile: UserProfile) -> Optional[int]:
    """Inclusive count of local calendar days between first and last event, at least 1."""
    if profile.first_event is None or profile.last_event is None:
        return None
    span = (local_date(profile.last_event) - local_date(profile.first_event)).days + 1
    return max(1, span)


def get_user_date_ranges(profiles: Iterable[UserProfile]) -> dict:
    """
    How many days of data each subject contributes.

    Returns:
        Dict with ``buckets`` (user_count and avg_days per span bucket),
        ``stats`` and ``per_user`` rows
    """
    per_user = []
    for profile in profiles:
        days = data_span_days(profile)
        if days is None:
            continue
        per_user.append({
            "user_id": profile.user_id,
            "group_id": profile.group_id,
            "days": days,
            "is_anomalous": profile.is_anomalous,
            "total_sessions": profile.total_sessions,
        })

    spans = [row["days"] for row in per_user]
    grouped: Dict[int, List[int]] = {}
    for days in spans:
        grouped.setdefault(DATA_DAYS_BUCKETS.classify(days)[1], []).append(days)

    return {
        "buckets": [
            {
                "bucket": DATA_DAYS_BUCKETS.labels[order],
                "bucket_order": order,
                "user_count": len(grouped[order]),
                "avg_days": _avg(grouped[order], 1),
            }
            for order in sorted(grouped)
        ],
        "stats": {
            "avg_days": _avg(spans, 1),
            "median_days": round_or_none(percentile_cont(spans, 0.5), 1),
            "min_days": min(spans) if spans else None,
            "max_days": max(spans) if spans else None,
            "short_users": sum(1 for days in spans if days <= SHORT_DATA_SPAN_DAYS),
            "total_users": len(spans),
        },
        "per_user": per_user,
    }
