"""
Carbon footprint routes for Charging Insights.
"""

import logging

from database import get_db
from extensions import RateLimits, cache, limiter
from flask import Blueprint, jsonify, request
from services import carbon_service
from utils.error_codes import ErrorCode, StructuredError

logger = logging.getLogger(__name__)

carbon_bp = Blueprint("carbon", __name__)


@carbon_bp.route("/summary", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_summary():
    return jsonify({"data": carbon_service.get_summary(get_db())})


@carbon_bp.route("/devices", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_by_device():
    """Per-device footprint, largest first. ``?limit=`` defaults to 50."""
    try:
        limit = max(1, int(request.args.get("limit", 50)))
    except (ValueError, TypeError):
        error = StructuredError(
            ErrorCode.E004_INVALID_QUERY_PARAMETER,
            "limit must be an integer",
            limit=request.args.get("limit"),
        )
        return jsonify(error.to_response()), 400
    rows = carbon_service.get_by_device(get_db(), limit=limit)
    return jsonify({"data": rows, "count": len(rows)})


@carbon_bp.route("/trends", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_trends():
    rows = carbon_service.get_trends(get_db())
    return jsonify({"data": rows, "count": len(rows)})


@carbon_bp.route("/comparisons", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_comparisons():
    return jsonify({"data": carbon_service.get_comparisons(get_db())})


@carbon_bp.route("/time-of-day", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_by_time_of_day():
    return jsonify({"data": carbon_service.get_by_time_of_day(get_db())})


@carbon_bp.route("/groups", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_by_group():
    rows = carbon_service.get_by_group(get_db())
    return jsonify({"data": rows, "count": len(rows)})


@carbon_bp.route("/insights", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_insights():
    insights = carbon_service.get_insights(get_db())
    return jsonify({"data": insights, "count": len(insights)})
