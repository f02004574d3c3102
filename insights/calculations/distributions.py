"""
Distributions

Bucketed histograms, box-plot summaries and CDFs over session columns.
Every bucket carries a stable integer ``bucket_order`` so that charts sort
correctly regardless of label text.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import (
    CDF_DURATION_CAP_MINUTES,
    SCATTER_MAX_POINTS,
    GROUPED_BOX_PLOT_LIMIT,
    GROUPED_BOX_PLOT_MIN_COUNT,
    GROUPED_MAX_DURATION_MINUTES,
    MAX_PERCENTAGE,
    MIN_PERCENTAGE,
)
from .records import SessionRecord
from .statistics import box_plot_summary, calculate_mean, cumulative_distribution, round_or_none

SessionFilter = Callable[[SessionRecord], bool]


class BucketSpec:
    """
    Fixed bucket boundaries for one quantity.

    Args:
        name: Identifier used by the API (``duration``, ``charge`` ...)
        labels: Display label per bucket, indexed by bucket order
        order_fn: Maps a value to its bucket order
    """

    def __init__(self, name: str, labels: Sequence[str], order_fn: Callable[[float], int]):
        self.name = name
        self.labels = list(labels)
        self._order_fn = order_fn

    def classify(self, value: float) -> Tuple[str, int]:
        order = self._order_fn(value)
        return self.labels[order], order

    def __repr__(self):
        return f"BucketSpec({self.name!r}, {len(self.labels)} buckets)"


def _first_below(value: float, limits: Sequence[float]) -> int:
    for order, limit in enumerate(limits):
        if value < limit:
            return order
    return len(limits)


def _first_at_or_below(value: float, limits: Sequence[float], start: int = 0) -> int:
    for order, limit in enumerate(limits, start=start):
        if value <= limit:
            return order
    return start + len(limits)


def _charge_order(gained: float) -> int:
    if gained < 0:
        return 0
    if gained == 0:
        return 1
    return _first_at_or_below(gained, (10, 20, 30, 50, 70, 90), start=2)


def _level_order(level: float) -> int:
    return min(int(level // 10), MAX_PERCENTAGE // 10)


DURATION_BUCKETS = BucketSpec(
    "duration",
    ["0-5 min", "5-15 min", "15-30 min", "30-60 min", "1-2 hrs", "2-4 hrs", "4-8 hrs", "8+ hrs"],
    lambda minutes: _first_below(minutes, (5, 15, 30, 60, 120, 240, 480)),
)

CHARGE_GAINED_BUCKETS = BucketSpec(
    "charge",
    ["Negative", "0%", "1-10%", "11-20%", "21-30%", "31-50%", "51-70%", "71-90%", "91-100%"],
    _charge_order,
)

LEVEL_BUCKETS = BucketSpec(
    "level",
    [f"{low}-{low + 9}%" for low in range(0, 100, 10)] + ["100%"],
    _level_order,
)

USAGE_GAP_BUCKETS = BucketSpec(
    "usage_gap",
    ["< 1 hr", "1-2 hrs", "2-4 hrs", "4-6 hrs", "6-8 hrs", "8-12 hrs", "12+ hrs"],
    lambda hours: _first_below(hours, (1, 2, 4, 6, 8, 12)),
)

DATA_DAYS_BUCKETS = BucketSpec(
    "data_days",
    ["1-3 days", "4-7 days", "8-14 days", "15-21 days", "22+ days"],
    lambda days: _first_at_or_below(days, (3, 7, 14, 21)),
)


def all_sessions(session: SessionRecord) -> bool:
    return True


def complete_only(session: SessionRecord) -> bool:
    return session.is_complete


def complete_non_negative_duration(session: SessionRecord) -> bool:
    return session.is_complete and session.duration_minutes is not None and session.duration_minutes >= 0


def complete_non_negative_charge(session: SessionRecord) -> bool:
    return session.is_complete and session.charge_gained is not None and session.charge_gained >= 0


def grouped_duration_filter(session: SessionRecord) -> bool:
    """Complete sessions with a duration strictly inside (0, 24h)."""
    return (
        session.is_complete
        and session.duration_minutes is not None
        and 0 < session.duration_minutes < GROUPED_MAX_DURATION_MINUTES
    )


@dataclass(frozen=True)
class Metric:
    """A numeric session column with its default population and natural domain."""

    name: str
    accessor: Callable[[SessionRecord], Optional[float]]
    population: SessionFilter
    domain: Tuple[Optional[float], Optional[float]]


METRICS: Dict[str, Metric] = {
    "start_percentage": Metric(
        "start_percentage", lambda s: s.start_percentage, all_sessions, (MIN_PERCENTAGE, MAX_PERCENTAGE)
    ),
    "end_percentage": Metric(
        "end_percentage", lambda s: s.end_percentage, complete_only, (MIN_PERCENTAGE, MAX_PERCENTAGE)
    ),
    "duration_minutes": Metric(
        "duration_minutes", lambda s: s.duration_minutes, complete_non_negative_duration, (0, None)
    ),
    "charge_gained": Metric(
        "charge_gained", lambda s: s.charge_gained, complete_only, (-MAX_PERCENTAGE, MAX_PERCENTAGE)
    ),
}


def get_metric(metric: str) -> Metric:
    """Look up a metric by name, raising ValueError for unknown names."""
    try:
        return METRICS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric!r}. Expected one of {sorted(METRICS)}") from None


def metric_values(
    sessions: Iterable[SessionRecord],
    metric: str,
    session_filter: Optional[SessionFilter] = None,
) -> List[float]:
    """Values of ``metric`` over the sessions passing the filter (metric default if None)."""
    spec = get_metric(metric)
    keep = session_filter or spec.population
    values = []
    for session in sessions:
        if not keep(session):
            continue
        value = spec.accessor(session)
        if value is not None:
            values.append(value)
    return values


def get_distribution(
    sessions: Iterable[SessionRecord],
    metric: str,
    bucket_spec: BucketSpec,
    session_filter: Optional[SessionFilter] = None,
) -> List[dict]:
    """
    Histogram of a session metric over fixed buckets.

    Only buckets with at least one session are returned; an empty
    population returns an empty list.

    Args:
        sessions: Session records
        metric: Key of METRICS
        bucket_spec: Bucket boundaries to apply
        session_filter: Population override (defaults to the metric's population)

    Returns:
        List of dicts with bucket, bucket_order, count, avg_charge_gained,
        sorted by bucket_order
    """
    spec = get_metric(metric)
    keep = session_filter or spec.population

    counts: Dict[int, int] = defaultdict(int)
    gains: Dict[int, List[float]] = defaultdict(list)
    for session in sessions:
        if not keep(session):
            continue
        value = spec.accessor(session)
        if value is None:
            continue
        _, order = bucket_spec.classify(value)
        counts[order] += 1
        if session.charge_gained is not None:
            gains[order].append(session.charge_gained)

    return [
        {
            "bucket": bucket_spec.labels[order],
            "bucket_order": order,
            "count": counts[order],
            "avg_charge_gained": round_or_none(calculate_mean(gains[order]), 1),
        }
        for order in sorted(counts)
    ]


def get_value_distribution(values: Iterable[float], bucket_spec: BucketSpec) -> List[dict]:
    """Histogram of plain values (gaps, data spans) with a count and mean per bucket."""
    grouped: Dict[int, List[float]] = defaultdict(list)
    for value in values:
        grouped[bucket_spec.classify(value)[1]].append(value)

    return [
        {
            "bucket": bucket_spec.labels[order],
            "bucket_order": order,
            "count": len(grouped[order]),
            "avg_value": round(calculate_mean(grouped[order]), 2),
        }
        for order in sorted(grouped)
    ]


def get_box_plot_summary(
    sessions: Iterable[SessionRecord],
    metric: str,
    session_filter: Optional[SessionFilter] = None,
) -> dict:
    """
    Box-plot summary of a session metric, fences clamped to the metric domain.

    Args:
        sessions: Session records
        metric: Key of METRICS
        session_filter: Population override (defaults to the metric's population)

    Returns:
        BoxPlotSummary dict (see statistics.box_plot_summary) with the metric name
    """
    spec = get_metric(metric)
    summary = box_plot_summary(
        metric_values(sessions, metric, session_filter),
        domain=spec.domain,
    )
    summary["metric"] = metric
    return summary


def get_grouped_box_plots(
    sessions: Iterable[SessionRecord],
    metric: str = "duration_minutes",
    group_by: str = "user",
    session_filter: Optional[SessionFilter] = None,
    min_count: int = GROUPED_BOX_PLOT_MIN_COUNT,
    limit: int = GROUPED_BOX_PLOT_LIMIT,
) -> List[dict]:
    """
    One box plot per user or per group, largest median first.

    Groups with fewer than ``min_count`` values are left out.
    """
    if group_by not in ("user", "group"):
        raise ValueError(f"group_by must be 'user' or 'group', got {group_by!r}")

    spec = get_metric(metric)
    keep = session_filter or spec.population
    grouped: Dict[object, List[SessionRecord]] = defaultdict(list)
    for session in sessions:
        if keep(session):
            key = session.subject_key if group_by == "user" else session.group_id
            grouped[key].append(session)

    plots = []
    for key, members in grouped.items():
        summary = box_plot_summary(metric_values(members, metric, keep), domain=spec.domain)
        if summary["count"] < min_count:
            continue
        if group_by == "user":
            summary["group_id"], summary["user_id"] = key
        else:
            summary["group_id"] = key
        plots.append(summary)

    plots.sort(key=lambda p: p["median"], reverse=True)
    return plots[:limit]


def get_cdfs(sessions: Iterable[SessionRecord]) -> dict:
    """CDFs of connect level and of duration (capped) over complete sessions."""
    sessions = list(sessions)
    return {
        "level": cumulative_distribution(metric_values(sessions, "start_percentage", complete_only)),
        "duration": cumulative_distribution(
            metric_values(sessions, "duration_minutes"),
            cap=CDF_DURATION_CAP_MINUTES,
        ),
    }


def even_sample(items: Sequence, max_points: int) -> list:
    """Evenly spaced, deterministic sample of at most ``max_points`` items."""
    if len(items) <= max_points:
        return list(items)
    step = len(items) / max_points
    return [items[int(i * step)] for i in range(max_points)]


def scatter_points(
    sessions: Iterable[SessionRecord],
    x_metric: str,
    y_metric: str,
    session_filter: Optional[SessionFilter] = None,
    max_points: int = SCATTER_MAX_POINTS,
) -> List[dict]:
    """
    ``{x, y}`` pairs for a scatter chart, ordered by connect time then sampled.

    Sessions where either metric is missing are skipped.
    """
    x_spec = get_metric(x_metric)
    y_spec = get_metric(y_metric)
    keep = session_filter or complete_only

    points = []
    for session in sorted((s for s in sessions if keep(s)), key=lambda s: (s.connect_time, s.user_id)):
        x = x_spec.accessor(session)
        y = y_spec.accessor(session)
        if x is not None and y is not None:
            points.append({"x": x, "y": y})
    return even_sample(points, max_points)
