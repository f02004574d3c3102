"""
Carbon footprint service for Charging Insights.

Thin database-backed wrapper over calculations.carbon.
"""

import logging
from typing import List

from calculations import carbon
from services.charging_analytics_service import aggregation, load_sessions

logger = logging.getLogger(__name__)


@aggregation("carbon_summary")
def get_summary(db) -> dict:
    """Total footprint with its everyday equivalents."""
    summary = carbon.estimate_carbon(load_sessions(db, complete=True))
    summary["equivalents"] = carbon.to_equivalents(summary["total_co2_kg"])
    return summary


@aggregation("carbon_by_device")
def get_by_device(db, limit: int = 50) -> List[dict]:
    return carbon.carbon_by_subject(load_sessions(db, complete=True), limit=limit)


@aggregation("carbon_trends")
def get_trends(db) -> List[dict]:
    return carbon.carbon_trends(load_sessions(db, complete=True))


@aggregation("carbon_comparisons")
def get_comparisons(db) -> dict:
    """Everyday equivalents for the total and for the projected annual footprint."""
    summary = carbon.estimate_carbon(load_sessions(db, complete=True))
    projected = summary["projected_annual_kg"]
    return {
        "total": carbon.to_equivalents(summary["total_co2_kg"]),
        "projected_annual": carbon.to_equivalents(projected) if projected is not None else None,
    }


@aggregation("carbon_by_time_of_day")
def get_by_time_of_day(db) -> List[dict]:
    return carbon.carbon_by_time_of_day(load_sessions(db, complete=True))


@aggregation("carbon_by_group")
def get_by_group(db) -> List[dict]:
    return carbon.carbon_by_group(load_sessions(db, complete=True))


@aggregation("carbon_insights")
def get_insights(db) -> List[dict]:
    insights = carbon.carbon_insights(load_sessions(db, complete=True))
    logger.debug(f"Generated {len(insights)} carbon insights")
    return insights
