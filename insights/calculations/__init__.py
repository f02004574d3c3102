"""
Charging Insights Calculation Module

Pure functions for session reconstruction, user profiles, distributions,
time patterns, population comparison and carbon estimation. Nothing in
this package touches the database; callers pass in immutable records.

Usage:
    from calculations import reconstruct_sessions, compute_user_profile
    from calculations.constants import CARBON_FACTOR
"""

# Records
from .records import EventRecord, SessionRecord, UserProfile

# Session reconstruction
from .sessions import (
    group_events_by_subject,
    normalize_event_type,
    reconstruct_sessions,
    sort_events,
)

# User profiles and cohorts
from .profiles import (
    clean_cohort_keys,
    compute_user_profile,
    curated_cohort_keys,
    filter_sessions_by_keys,
    is_anomalous,
    is_clean_cohort_member,
    sort_profiles,
)

# Statistical calculations
from .statistics import (
    box_plot_summary,
    calculate_confidence_interval,
    calculate_correlation_simple,
    calculate_mean,
    calculate_stddev,
    cumulative_distribution,
    percentile_cont,
)

# Distributions
from .distributions import (
    CHARGE_GAINED_BUCKETS,
    DATA_DAYS_BUCKETS,
    DURATION_BUCKETS,
    LEVEL_BUCKETS,
    USAGE_GAP_BUCKETS,
    BucketSpec,
    get_box_plot_summary,
    get_cdfs,
    get_distribution,
    get_grouped_box_plots,
)

# Time patterns, gaps and drain
from .patterns import (
    get_daily_charging_frequency,
    get_daily_session_counts,
    get_drain_by_hour,
    get_drain_rate_summary,
    get_overnight_summary,
    get_time_patterns,
    get_usage_gap_analysis,
    is_overnight,
)

# Comparison and anomaly impact
from .comparison import (
    get_anomaly_impact,
    get_comparison,
    get_overall_stats,
    get_user_date_ranges,
    summarize_population,
)

# Carbon
from .carbon import co2_grams, estimate_carbon, to_equivalents

__all__ = [
    # Records
    "EventRecord",
    "SessionRecord",
    "UserProfile",
    # Sessions
    "reconstruct_sessions",
    "sort_events",
    "group_events_by_subject",
    "normalize_event_type",
    # Profiles
    "compute_user_profile",
    "is_anomalous",
    "is_clean_cohort_member",
    "clean_cohort_keys",
    "curated_cohort_keys",
    "filter_sessions_by_keys",
    "sort_profiles",
    # Statistics
    "percentile_cont",
    "box_plot_summary",
    "calculate_mean",
    "calculate_stddev",
    "calculate_confidence_interval",
    "calculate_correlation_simple",
    "cumulative_distribution",
    # Distributions
    "BucketSpec",
    "DURATION_BUCKETS",
    "CHARGE_GAINED_BUCKETS",
    "LEVEL_BUCKETS",
    "USAGE_GAP_BUCKETS",
    "DATA_DAYS_BUCKETS",
    "get_distribution",
    "get_box_plot_summary",
    "get_grouped_box_plots",
    "get_cdfs",
    # Patterns
    "get_time_patterns",
    "is_overnight",
    "get_overnight_summary",
    "get_usage_gap_analysis",
    "get_drain_rate_summary",
    "get_drain_by_hour",
    "get_daily_session_counts",
    "get_daily_charging_frequency",
    # Comparison
    "summarize_population",
    "get_comparison",
    "get_anomaly_impact",
    "get_overall_stats",
    "get_user_date_ranges",
    # Carbon
    "co2_grams",
    "estimate_carbon",
    "to_equivalents",
]

__version__ = "1.0.0"
