"""
Charging analytics service for Charging Insights.

Loads sessions, events and profiles (optionally restricted to a cohort)
and hands them to the pure calculations. Database failures surface as
AggregationError so the API can tell "could not compute" from "no data".
"""

import functools
import logging
from typing import List, Optional, Set

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from calculations import comparison, distributions, patterns
from calculations.constants import EVENT_CONNECTED, EVENT_DISCONNECTED
from calculations.distributions import (
    CHARGE_GAINED_BUCKETS,
    DURATION_BUCKETS,
    LEVEL_BUCKETS,
    complete_non_negative_charge,
    complete_non_negative_duration,
    complete_only,
    grouped_duration_filter,
)
from calculations.profiles import clean_cohort_keys, curated_cohort_keys, filter_sessions_by_keys, sort_profiles
from calculations.records import EventRecord, SessionRecord, UserProfile
from calculations.statistics import calculate_confidence_interval, calculate_correlation_simple
from config import Config
from exceptions import AggregationError
from models import ChargingEvent, ChargingSession, UserStats

logger = logging.getLogger(__name__)

COHORTS = ("all", "clean", "curated")


def aggregation(operation: str):
    """Wrap database failures of an aggregation into AggregationError."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Aggregation {operation} failed: {e}", exc_info=True)
                raise AggregationError(f"Could not compute {operation}: {e}", operation=operation) from e

        return wrapper

    return decorator


# ============================================================================
# Loaders
# ============================================================================


def load_profiles(db) -> List[UserProfile]:
    return [row.to_record() for row in db.query(UserStats).all()]


def load_sessions(db, complete: bool = False) -> List[SessionRecord]:
    query = db.query(ChargingSession)
    if complete:
        query = query.filter(ChargingSession.is_complete.is_(True))
    rows = query.order_by(ChargingSession.connect_time, ChargingSession.id).all()
    return [row.to_record() for row in rows]


def load_events(db) -> List[EventRecord]:
    rows = db.query(ChargingEvent).order_by(ChargingEvent.event_timestamp, ChargingEvent.original_row_id).all()
    return [row.to_record() for row in rows]


def resolve_cohort(db, cohort: Optional[str]) -> Optional[Set[tuple]]:
    """
    Subject keys for a named cohort, or None for everyone.

    - all: no restriction
    - clean: event_mismatch of 10 or less
    - curated: the hand-picked ids in Config.CURATED_COHORT_USER_IDS
    """
    if cohort in (None, "all"):
        return None
    if cohort == "clean":
        return clean_cohort_keys(load_profiles(db))
    if cohort == "curated":
        return curated_cohort_keys(Config.CURATED_COHORT_USER_IDS)
    raise ValueError(f"Unknown cohort {cohort!r}. Expected one of {COHORTS}")


def cohort_sessions(db, cohort: Optional[str] = None, complete: bool = False) -> List[SessionRecord]:
    keys = resolve_cohort(db, cohort)
    sessions = load_sessions(db, complete=complete)
    return sessions if keys is None else filter_sessions_by_keys(sessions, keys)


# ============================================================================
# Overview, users and sessions
# ============================================================================


def _group_clause(column, group_id: Optional[str]):
    return column.is_(None) if group_id is None else column == group_id


@aggregation("overall_stats")
def get_overall_stats(db) -> dict:
    return comparison.get_overall_stats(load_profiles(db), load_sessions(db))


@aggregation("users")
def get_users(db, sort_by: str = "user_id", order: str = "asc", limit: int = None) -> List[dict]:
    """Profiles sorted by a whitelisted field."""
    limit = limit or Config.API_DEFAULT_USER_LIMIT
    profiles = sort_profiles(load_profiles(db), sort_by=sort_by, descending=order == "desc", limit=limit)
    return [p.to_dict() for p in profiles]


@aggregation("user_detail")
def get_user_detail(db, user_id: str, group_id: Optional[str] = None) -> Optional[dict]:
    """Profile and sessions for one user, or None if the user has no profile."""
    stats = (
        db.query(UserStats)
        .filter(UserStats.user_id == user_id, _group_clause(UserStats.group_id, group_id))
        .first()
    )
    if stats is None:
        return None

    sessions = (
        db.query(ChargingSession)
        .filter(ChargingSession.user_id == user_id, _group_clause(ChargingSession.group_id, group_id))
        .order_by(desc(ChargingSession.connect_time))
        .all()
    )
    return {"profile": stats.to_dict(), "sessions": [s.to_dict() for s in sessions]}


@aggregation("sessions")
def get_sessions(db, user_id: Optional[str] = None, complete_only: bool = False, limit: int = None) -> List[dict]:
    """Most recent sessions first."""
    limit = limit or Config.API_DEFAULT_SESSION_LIMIT
    query = db.query(ChargingSession)
    if user_id is not None:
        query = query.filter(ChargingSession.user_id == user_id)
    if complete_only:
        query = query.filter(ChargingSession.is_complete.is_(True))
    rows = query.order_by(desc(ChargingSession.connect_time), desc(ChargingSession.id)).limit(limit).all()
    return [row.to_dict() for row in rows]


# ============================================================================
# Distributions and patterns
# ============================================================================


@aggregation("time_patterns")
def get_time_patterns(db, cohort: Optional[str] = None) -> dict:
    return patterns.get_time_patterns(cohort_sessions(db, cohort, complete=True))


@aggregation("distributions")
def get_distributions(db, cohort: Optional[str] = None) -> dict:
    """Duration, charge-gained and connect/disconnect level histograms."""
    sessions = cohort_sessions(db, cohort)
    return {
        "duration": distributions.get_distribution(sessions, "duration_minutes", DURATION_BUCKETS),
        "charge_gained": distributions.get_distribution(sessions, "charge_gained", CHARGE_GAINED_BUCKETS),
        "connect_level": distributions.get_distribution(sessions, "start_percentage", LEVEL_BUCKETS),
        "disconnect_level": distributions.get_distribution(sessions, "end_percentage", LEVEL_BUCKETS),
    }


@aggregation("cdfs")
def get_cdfs(db, cohort: Optional[str] = None) -> dict:
    return distributions.get_cdfs(cohort_sessions(db, cohort, complete=True))


@aggregation("daily_sessions")
def get_daily_session_counts(db, cohort: Optional[str] = None) -> List[dict]:
    return patterns.get_daily_session_counts(cohort_sessions(db, cohort))


@aggregation("daily_frequency")
def get_daily_charging_frequency(db, cohort: Optional[str] = None) -> dict:
    return patterns.get_daily_charging_frequency(cohort_sessions(db, cohort))


@aggregation("box_plots")
def get_battery_level_box_plots(db, cohort: Optional[str] = None) -> dict:
    """Connect level over every session, disconnect level over complete sessions."""
    sessions = cohort_sessions(db, cohort)
    return {
        "connect": distributions.get_box_plot_summary(sessions, "start_percentage"),
        "disconnect": distributions.get_box_plot_summary(sessions, "end_percentage"),
    }


@aggregation("grouped_box_plots")
def get_grouped_box_plots(db, metric: str = "duration_minutes", group_by: str = "user") -> List[dict]:
    """Per-user or per-group box plots; durations limited to (0, 24h)."""
    session_filter = grouped_duration_filter if metric == "duration_minutes" else None
    return distributions.get_grouped_box_plots(
        load_sessions(db, complete=True), metric=metric, group_by=group_by, session_filter=session_filter
    )


# ============================================================================
# Anomalies and comparison
# ============================================================================


@aggregation("anomalous_users")
def get_anomalous_users(db) -> List[dict]:
    return [p.to_dict() for p in comparison.get_anomalous_users(load_profiles(db))]


@aggregation("anomaly_impact")
def get_anomaly_impact(db) -> dict:
    return comparison.get_anomaly_impact(load_profiles(db))


@aggregation("comparison")
def get_comparison(db) -> dict:
    """All sessions against the clean (mismatch of 10 or less) cohort."""
    sessions = load_sessions(db)
    keys = clean_cohort_keys(load_profiles(db))
    return comparison.get_comparison(sessions, filter_sessions_by_keys(sessions, keys))


@aggregation("date_ranges")
def get_user_date_ranges(db) -> dict:
    return comparison.get_user_date_ranges(load_profiles(db))


@aggregation("deep_analysis")
def get_deep_analysis(db) -> dict:
    """
    Behavioural views over the clean cohort.

    Returns:
        Dict with plug_in_by_hour, plug_out_by_hour, charge_targets,
        overnight, usage_gaps, drain and drain_by_hour
    """
    keys = clean_cohort_keys(load_profiles(db))
    sessions = filter_sessions_by_keys(load_sessions(db), keys)
    events = [e for e in load_events(db) if e.subject_key in keys]

    return {
        "plug_in_by_hour": patterns.hourly_event_counts(events, EVENT_CONNECTED),
        "plug_out_by_hour": patterns.hourly_event_counts(events, EVENT_DISCONNECTED),
        "charge_targets": patterns.get_charge_target_analysis(sessions),
        "overnight": patterns.get_overnight_summary(sessions),
        "usage_gaps": patterns.get_usage_gap_analysis(sessions),
        "drain": patterns.get_drain_rate_summary(sessions),
        "drain_by_hour": patterns.get_drain_by_hour(sessions),
    }


@aggregation("curated_cohort")
def get_curated_cohort_analysis(db, user_ids: Optional[List[str]] = None) -> dict:
    """
    Summary, box plots, histograms and scatter samples for the curated cohort.

    The curated cohort is an explicit id list and is not assumed to match
    the mismatch-based clean cohort.
    """
    user_ids = list(user_ids if user_ids is not None else Config.CURATED_COHORT_USER_IDS)
    sessions = filter_sessions_by_keys(load_sessions(db), curated_cohort_keys(user_ids))
    durations = distributions.metric_values(sessions, "duration_minutes")
    start_vs_charge = distributions.scatter_points(
        sessions, "start_percentage", "charge_gained", complete_non_negative_charge
    )
    duration_vs_charge = distributions.scatter_points(
        sessions, "duration_minutes", "charge_gained", complete_non_negative_charge
    )

    summary = comparison.summarize_population(sessions)
    summary["requested_users"] = len(user_ids)
    summary["duration_confidence_interval"] = calculate_confidence_interval(durations)

    return {
        "summary": summary,
        "box_plots": {
            "start_percentage": distributions.get_box_plot_summary(sessions, "start_percentage"),
            "end_percentage": distributions.get_box_plot_summary(
                sessions, "end_percentage", complete_only
            ),
            "duration_minutes": distributions.get_box_plot_summary(
                sessions, "duration_minutes", complete_non_negative_duration
            ),
            "charge_gained": distributions.get_box_plot_summary(
                sessions, "charge_gained", complete_non_negative_charge
            ),
        },
        "histograms": {
            "duration": distributions.get_distribution(sessions, "duration_minutes", DURATION_BUCKETS),
            "charge_gained": distributions.get_distribution(
                sessions, "charge_gained", CHARGE_GAINED_BUCKETS, complete_non_negative_charge
            ),
            "connect_level": distributions.get_distribution(sessions, "start_percentage", LEVEL_BUCKETS),
        },
        "scatter": {
            "start_vs_charge": {
                "points": start_vs_charge,
                "correlation": calculate_correlation_simple(
                    [p["x"] for p in start_vs_charge], [p["y"] for p in start_vs_charge]
                ),
            },
            "duration_vs_charge": {
                "points": duration_vs_charge,
                "correlation": calculate_correlation_simple(
                    [p["x"] for p in duration_vs_charge], [p["y"] for p in duration_vs_charge]
                ),
            },
        },
    }
