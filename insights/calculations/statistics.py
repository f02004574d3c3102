"""
Statistical Calculations

Handles statistical summaries for the aggregation views:
- Continuous (interpolated) percentiles
- Box-plot summaries with Tukey fences
- Means, sample standard deviations and confidence intervals
- Cumulative distributions
- Correlation for scatter views
"""

import math
import statistics as stats_module
from typing import Dict, List, Optional, Sequence, Tuple

from .constants import (
    CDF_MAX_POINTS,
    DEFAULT_CONFIDENCE_LEVEL,
    SMALL_SAMPLE_THRESHOLD,
    T_CRITICAL_SMALL_SAMPLE,
    TUKEY_FENCE_MULTIPLIER,
    Z_CRITICAL_95_PERCENT,
)


def round_or_none(value: Optional[float], digits: int = 2) -> Optional[float]:
    """Round a value, passing None through and mapping NaN/inf to None."""
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return round(value, digits)


def percentile_cont(values: Sequence[float], fraction: float) -> Optional[float]:
    """
    Continuous percentile with linear interpolation between closest ranks.

    Matches SQL ``PERCENTILE_CONT``: the rank is ``fraction * (n - 1)``
    over the sorted values.

    Args:
        values: Numeric values (any order)
        fraction: Percentile as a fraction in [0, 1]

    Returns:
        Interpolated percentile, or None for empty input

    Examples:
        >>> percentile_cont([1, 2, 3, 4], 0.5)
        2.5
        >>> percentile_cont([10, 20, 30, 40, 50], 0.25)
        20.0
    """
    if not values:
        return None
    if not 0 <= fraction <= 1:
        raise ValueError(f"fraction must be within [0, 1], got {fraction}")

    ordered = sorted(values)
    rank = fraction * (len(ordered) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(ordered[lower])
    weight = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def calculate_mean(values: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None for empty input."""
    if not values:
        return None
    return stats_module.mean(values)


def calculate_stddev(values: Sequence[float]) -> Optional[float]:
    """Sample standard deviation (SQL ``STDDEV``), None below two values."""
    if len(values) < 2:
        return None
    return stats_module.stdev(values)


def calculate_confidence_interval(
    values: List[float],
    confidence: float = DEFAULT_CONFIDENCE_LEVEL
) -> Optional[dict]:
    """
    Calculate confidence interval for a list of values.

    Uses t-distribution for small samples (n < 30) and z-distribution for large.

    Args:
        values: List of numeric values
        confidence: Confidence level (default 0.95 for 95% CI)

    Returns:
        Dict with mean, ci_lower, ci_upper, margin, sample_size, std_dev
        Returns None if insufficient data

    Examples:
        >>> ci = calculate_confidence_interval([40, 45, 50, 55, 60])
        >>> ci['mean']
        50
    """
    if not values or len(values) < 2:
        return None

    mean = stats_module.mean(values)
    stdev = stats_module.stdev(values)
    n = len(values)

    if n < SMALL_SAMPLE_THRESHOLD:
        t_critical = T_CRITICAL_SMALL_SAMPLE
    else:
        t_critical = Z_CRITICAL_95_PERCENT

    margin = t_critical * (stdev / (n ** 0.5))

    return {
        "mean": round(mean, 2),
        "ci_lower": round(mean - margin, 2),
        "ci_upper": round(mean + margin, 2),
        "margin": round(margin, 2),
        "sample_size": n,
        "std_dev": round(stdev, 2)
    }


def calculate_outlier_bounds(
    values: Sequence[float],
    iqr_multiplier: float = TUKEY_FENCE_MULTIPLIER,
    domain: Optional[Tuple[Optional[float], Optional[float]]] = None,
) -> dict:
    """
    Calculate Tukey fences from interpolated quartiles.

    Args:
        values: List of numeric values
        iqr_multiplier: Multiplier for IQR (1.5 = standard, 3.0 = extreme)
        domain: Optional (low, high) natural range to clamp the fences into;
            either side may be None for an open bound

    Returns:
        Dict with q1, q3, iqr, lower_bound, upper_bound (all None when empty)

    Examples:
        >>> bounds = calculate_outlier_bounds([10, 20, 30, 40, 95], domain=(0, 100))
        >>> bounds['upper_bound']
        70.0
    """
    if not values:
        return {"q1": None, "q3": None, "iqr": None, "lower_bound": None, "upper_bound": None}

    q1 = percentile_cont(values, 0.25)
    q3 = percentile_cont(values, 0.75)
    iqr = q3 - q1

    lower_bound = q1 - (iqr_multiplier * iqr)
    upper_bound = q3 + (iqr_multiplier * iqr)

    if domain is not None:
        low, high = domain
        if low is not None:
            lower_bound = max(lower_bound, low)
        if high is not None:
            upper_bound = min(upper_bound, high)

    return {
        "q1": q1,
        "q3": q3,
        "iqr": iqr,
        "lower_bound": lower_bound,
        "upper_bound": upper_bound,
    }


def box_plot_summary(
    values: Sequence[float],
    domain: Optional[Tuple[Optional[float], Optional[float]]] = None,
) -> Dict[str, Optional[float]]:
    """
    Five-number summary plus Tukey fences, whiskers and outlier counts.

    Fences are ``Q1 - 1.5*IQR`` and ``Q3 + 1.5*IQR`` clamped into ``domain``.
    Whiskers are the most extreme observed values still inside the fences,
    falling back to min/max when nothing qualifies.

    Args:
        values: Observations
        domain: Natural (low, high) range of the quantity, e.g. (0, 100)

    Returns:
        Dict with min, q1, median, q3, max, mean, count, lower_fence,
        upper_fence, whisker_low, whisker_high, outliers_below, outliers_above.
        Empty input gives count 0, None statistics and zero outlier counts.
    """
    values = [v for v in values if v is not None]
    if not values:
        return {
            "min": None, "q1": None, "median": None, "q3": None, "max": None,
            "mean": None, "count": 0,
            "lower_fence": None, "upper_fence": None,
            "whisker_low": None, "whisker_high": None,
            "outliers_below": 0, "outliers_above": 0,
        }

    bounds = calculate_outlier_bounds(values, domain=domain)
    lower_fence = bounds["lower_bound"]
    upper_fence = bounds["upper_bound"]
    low_value = min(values)
    high_value = max(values)

    inside_low = [v for v in values if v >= lower_fence]
    inside_high = [v for v in values if v <= upper_fence]

    return {
        "min": round(low_value, 2),
        "q1": round(bounds["q1"], 2),
        "median": round(percentile_cont(values, 0.5), 2),
        "q3": round(bounds["q3"], 2),
        "max": round(high_value, 2),
        "mean": round(stats_module.mean(values), 2),
        "count": len(values),
        "lower_fence": round(lower_fence, 2),
        "upper_fence": round(upper_fence, 2),
        "whisker_low": round(min(inside_low) if inside_low else low_value, 2),
        "whisker_high": round(max(inside_high) if inside_high else high_value, 2),
        "outliers_below": sum(1 for v in values if v < lower_fence),
        "outliers_above": sum(1 for v in values if v > upper_fence),
    }


def cumulative_distribution(
    values: Sequence[float],
    cap: Optional[float] = None,
    max_points: int = CDF_MAX_POINTS,
) -> List[Dict[str, float]]:
    """
    Empirical CDF points, downsampled for charting.

    Every ``ceil(n / max_points)``-th point is kept, and the last point
    (cdf == 1.0) is always included.

    Args:
        values: Observations
        cap: Optional upper cap applied to each value before ranking
        max_points: Approximate number of points to return

    Returns:
        List of ``{"x": value, "cdf": fraction}`` sorted by x
    """
    ordered = sorted(min(v, cap) if cap is not None else v for v in values if v is not None)
    total = len(ordered)
    if total == 0:
        return []

    step = max(1, math.ceil(total / max_points))
    points = []
    for i, value in enumerate(ordered):
        if i % step == 0 or i == total - 1:
            points.append({"x": value, "cdf": round((i + 1) / total, 4)})
    return points


def calculate_correlation_simple(
    x_values: List[float],
    y_values: List[float]
) -> Optional[float]:
    """
    Calculate Pearson correlation coefficient between two variables.

    Returns value between -1 and 1:
    - 1 = perfect positive correlation
    - 0 = no correlation
    - -1 = perfect negative correlation

    Args:
        x_values: First variable values
        y_values: Second variable values (must be same length as x_values)

    Returns:
        Correlation coefficient, or None if insufficient data

    Examples:
        >>> calculate_correlation_simple([1, 2, 3, 4], [2, 4, 6, 8])
        1.0
        >>> calculate_correlation_simple([1, 2, 3, 4], [4, 3, 2, 1])
        -1.0
    """
    if len(x_values) != len(y_values) or len(x_values) < 2:
        return None

    n = len(x_values)
    mean_x = sum(x_values) / n
    mean_y = sum(y_values) / n

    covariance = sum((x - mean_x) * (y - mean_y) for x, y in zip(x_values, y_values)) / n
    std_x = (sum((x - mean_x) ** 2 for x in x_values) / n) ** 0.5
    std_y = (sum((y - mean_y) ** 2 for y in y_values) / n) ** 0.5

    if std_x == 0 or std_y == 0:
        return None

    correlation = covariance / (std_x * std_y)
    return round(correlation, 3)
