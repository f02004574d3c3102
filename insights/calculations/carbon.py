"""
Carbon Footprint Estimation

Maps charge gained (%) to grams of CO2 through a fixed battery, efficiency
and grid-intensity factor. Only complete sessions that gained charge
contribute; zero or negative gains are neither credited nor debited.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from utils.timezone import local_date, local_hour

from .constants import (
    CARBON_FACTOR,
    DAYS_PER_YEAR,
    DRIVING_KM_PER_KG_CO2,
    FULL_CHARGE_LEVEL,
    FULL_CHARGE_SAVINGS_FRACTION,
    FULL_CHARGE_TIP_PERCENT,
    HEALTHY_START_LEVEL,
    LED_BULB_HOURS_PER_KG_CO2,
    LOW_START_LEVEL,
    NIGHT_CHARGING_TIP_PERCENT,
    STREAMING_HOURS_PER_KG_CO2,
    TOP_UP_INFO_PERCENT,
    TOP_UP_MAX_GAIN,
    TREE_KG_CO2_PER_YEAR,
)
from .records import SessionRecord
from .statistics import calculate_mean, round_or_none

TIME_OF_DAY_PERIODS = [
    ("Night (12am-6am)", range(0, 6)),
    ("Morning (6am-12pm)", range(6, 12)),
    ("Afternoon (12pm-6pm)", range(12, 18)),
    ("Evening (6pm-12am)", range(18, 24)),
]


def co2_grams(charge_gained_percent: float) -> float:
    """
    Estimated grams of CO2 for a charge gain.

    Examples:
        >>> round(co2_grams(60), 2)
        6.93
    """
    return charge_gained_percent * CARBON_FACTOR


def contributing_sessions(sessions: Iterable[SessionRecord]) -> List[SessionRecord]:
    """Complete sessions with a strictly positive charge gain."""
    return [
        s for s in sessions
        if s.is_complete and s.charge_gained is not None and s.charge_gained > 0
    ]


def _device_days(sessions: List[SessionRecord]) -> int:
    """Sum over subjects of the inclusive local-date span of their sessions."""
    dates: Dict[tuple, list] = defaultdict(list)
    for session in sessions:
        dates[session.subject_key].append(local_date(session.connect_time))
    return sum((max(days) - min(days)).days + 1 for days in dates.values())


def estimate_carbon(sessions: Iterable[SessionRecord]) -> dict:
    """
    Total carbon footprint of a session population.

    ``projected_annual_kg`` is a linear extrapolation,
    ``total_co2_kg / device_days * 365 * devices``, assuming the observed
    per-device-day average holds for a year. It carries no uncertainty
    bounds and is None when there are no device-days.

    Returns:
        CarbonSummary dict with total_co2_kg, total_co2_grams,
        total_sessions, total_charge_gained, avg_co2_per_session_g,
        projected_annual_kg, data_days and devices_count
    """
    contributing = contributing_sessions(sessions)
    total_charge = sum(s.charge_gained for s in contributing)
    total_grams = co2_grams(total_charge)
    total_kg = total_grams / 1000
    device_days = _device_days(contributing)
    devices = len({s.subject_key for s in contributing})

    projected = None
    if device_days > 0:
        projected = round(total_kg / device_days * DAYS_PER_YEAR * devices, 2)

    return {
        "total_co2_kg": round(total_kg, 3),
        "total_co2_grams": round(total_grams, 1),
        "total_sessions": len(contributing),
        "total_charge_gained": total_charge,
        "avg_co2_per_session_g": round(total_grams / len(contributing), 2) if contributing else None,
        "projected_annual_kg": projected,
        "data_days": device_days,
        "devices_count": devices,
    }


def to_equivalents(co2_kg: float) -> dict:
    """
    Express a CO2 mass in everyday equivalents.

    Examples:
        >>> to_equivalents(1.0)['driving_km']
        4.8
    """
    return {
        "total_co2_kg": round(co2_kg, 3),
        "driving_km": round(co2_kg * DRIVING_KM_PER_KG_CO2, 2),
        "trees_to_offset": round(co2_kg / TREE_KG_CO2_PER_YEAR, 4),
        "led_bulb_hours": round(co2_kg * LED_BULB_HOURS_PER_KG_CO2, 1),
        "streaming_hours": round(co2_kg * STREAMING_HOURS_PER_KG_CO2, 1),
    }


def carbon_by_subject(sessions: Iterable[SessionRecord], limit: Optional[int] = 50) -> List[dict]:
    """Footprint per user/device, largest total charge first."""
    grouped: Dict[tuple, List[SessionRecord]] = defaultdict(list)
    for session in contributing_sessions(sessions):
        grouped[session.subject_key].append(session)

    rows = []
    for (group_id, user_id), members in grouped.items():
        charge = sum(s.charge_gained for s in members)
        rows.append({
            "user_id": user_id,
            "group_id": group_id,
            "sessions": len(members),
            "total_charge_gained": charge,
            "co2_grams": round(co2_grams(charge), 2),
            "avg_start_level": round_or_none(calculate_mean([s.start_percentage for s in members]), 1),
        })

    rows.sort(key=lambda r: r["total_charge_gained"], reverse=True)
    return rows[:limit] if limit is not None else rows


def carbon_by_group(sessions: Iterable[SessionRecord]) -> List[dict]:
    """Footprint per group for the multi-tenant dataset, largest first."""
    grouped: Dict[Optional[str], List[SessionRecord]] = defaultdict(list)
    for session in contributing_sessions(sessions):
        grouped[session.group_id].append(session)

    rows = []
    for group_id, members in grouped.items():
        grams = co2_grams(sum(s.charge_gained for s in members))
        devices = len({s.subject_key for s in members})
        rows.append({
            "group_id": group_id,
            "co2_kg": round(grams / 1000, 3),
            "sessions": len(members),
            "devices": devices,
            "avg_co2_per_device_g": round(grams / devices, 2),
        })

    rows.sort(key=lambda r: r["co2_kg"], reverse=True)
    return rows


def carbon_trends(sessions: Iterable[SessionRecord]) -> List[dict]:
    """Daily footprint by local date of the connect."""
    by_date: Dict[object, List[SessionRecord]] = defaultdict(list)
    for session in contributing_sessions(sessions):
        by_date[local_date(session.connect_time)].append(session)

    rows = []
    for day, members in sorted(by_date.items()):
        charge = sum(s.charge_gained for s in members)
        rows.append({
            "date": day.isoformat(),
            "co2_grams": round(co2_grams(charge), 2),
            "sessions": len(members),
            "total_charge_gained": charge,
        })
    return rows


def carbon_by_time_of_day(sessions: Iterable[SessionRecord]) -> List[dict]:
    """Footprint per six-hour period of the local connect time, all four periods present."""
    by_period: Dict[str, List[SessionRecord]] = defaultdict(list)
    for session in contributing_sessions(sessions):
        hour = local_hour(session.connect_time)
        for label, hours in TIME_OF_DAY_PERIODS:
            if hour in hours:
                by_period[label].append(session)
                break

    rows = []
    for order, (label, _) in enumerate(TIME_OF_DAY_PERIODS):
        members = by_period[label]
        rows.append({
            "time_period": label,
            "period_order": order,
            "co2_kg": round(co2_grams(sum(s.charge_gained for s in members)) / 1000, 4),
            "sessions": len(members),
            "avg_start_level": round_or_none(calculate_mean([s.start_percentage for s in members]), 1),
            "avg_charge_gained": round_or_none(calculate_mean([s.charge_gained for s in members]), 1),
        })
    return rows


def _pct(count: int, total: int) -> float:
    return count * 100 / total if total else 0.0


def carbon_insights(sessions: Iterable[SessionRecord]) -> List[dict]:
    """
    Rule-based tips about charging behaviour and its footprint.

    The daily per-device footprint divides total grams by device-days (the
    sum of each subject's observed date span), so it is already per device
    and is not divided by the device count again.

    Returns:
        List of insight dicts with type (info, tip, warning, achievement),
        title, description and optionally metric / potential_savings_g
    """
    contributing = contributing_sessions(sessions)
    insights = []
    if not contributing:
        return insights

    summary = estimate_carbon(contributing)
    night_hours = TIME_OF_DAY_PERIODS[0][1]

    total = len(contributing)
    avg_start = calculate_mean([s.start_percentage for s in contributing])
    full_pct = _pct(sum(1 for s in contributing if s.end_percentage >= FULL_CHARGE_LEVEL), total)
    night_pct = _pct(sum(1 for s in contributing if local_hour(s.connect_time) in night_hours), total)
    top_up_pct = _pct(sum(1 for s in contributing if s.charge_gained < TOP_UP_MAX_GAIN), total)

    daily_per_device = co2_grams(summary["total_charge_gained"]) / summary["data_days"]
    insights.append({
        "type": "info",
        "title": "Daily Carbon Footprint",
        "description": f"On average, each device produces {daily_per_device:.1f}g of CO2 per day from charging.",
        "metric": f"{daily_per_device:.1f}g/day",
    })

    if night_pct > NIGHT_CHARGING_TIP_PERCENT:
        insights.append({
            "type": "tip",
            "title": "Night Charging Detected",
            "description": (
                f"{night_pct:.0f}% of charging happens at night. "
                "Off-peak charging can be more grid-efficient in some regions."
            ),
            "metric": f"{night_pct:.0f}%",
        })

    if full_pct > FULL_CHARGE_TIP_PERCENT:
        insights.append({
            "type": "tip",
            "title": "Optimize Charge Levels",
            "description": (
                f"{full_pct:.0f}% of sessions charge to {FULL_CHARGE_LEVEL}% or more. "
                "Charging to 80% can save ~15% energy and extend battery life."
            ),
            "potential_savings_g": round(summary["total_co2_grams"] * FULL_CHARGE_SAVINGS_FRACTION),
        })

    if avg_start < LOW_START_LEVEL:
        insights.append({
            "type": "warning",
            "title": "Low Battery Charging",
            "description": (
                f"Average charge starts at {avg_start:.0f}% battery. "
                "Frequent deep discharges can reduce battery lifespan."
            ),
            "metric": f"{avg_start:.0f}%",
        })
    elif avg_start > HEALTHY_START_LEVEL:
        insights.append({
            "type": "achievement",
            "title": "Good Charging Habits",
            "description": f"Average charge starts at {avg_start:.0f}% battery. This helps preserve battery health!",
            "metric": f"{avg_start:.0f}%",
        })

    if top_up_pct > TOP_UP_INFO_PERCENT:
        insights.append({
            "type": "info",
            "title": "Frequent Top-ups",
            "description": (
                f"{top_up_pct:.0f}% of charges are small top-ups (<{TOP_UP_MAX_GAIN}%). "
                "This is generally good for battery longevity."
            ),
            "metric": f"{top_up_pct:.0f}%",
        })

    equivalents = to_equivalents(summary["total_co2_kg"])
    insights.append({
        "type": "info",
        "title": "Environmental Context",
        "description": (
            f"Total charging CO2 equals {equivalents['driving_km']:.1f}km of driving "
            f"or {equivalents['streaming_hours']:.0f} hours of video streaming."
        ),
        "metric": f"{summary['total_co2_kg']:.2f}kg CO2",
    })

    return insights
