"""
Charging analytics routes for Charging Insights.

Read-only views over reconstructed sessions and user profiles.
"""

import logging

from config import Config
from database import get_db
from extensions import RateLimits, cache, limiter
from flask import Blueprint, jsonify, request
from services import charging_analytics_service as analytics
from utils.error_codes import ErrorCode, StructuredError

logger = logging.getLogger(__name__)

charging_bp = Blueprint("charging", __name__)


def bad_request(message, **context):
    """400 response for an invalid query parameter."""
    error = StructuredError(ErrorCode.E004_INVALID_QUERY_PARAMETER, message, **context)
    return jsonify(error.to_response()), 400


def parse_limit(default):
    """Parse ``?limit=``; returns (limit, error_response)."""
    try:
        limit = int(request.args.get("limit", default))
    except (ValueError, TypeError):
        return None, bad_request("limit must be an integer", limit=request.args.get("limit"))
    if limit < 1:
        return None, bad_request("limit must be positive", limit=limit)
    return min(limit, Config.API_MAX_LIMIT), None


def cohort_arg():
    cohort = request.args.get("cohort", "all")
    if cohort not in analytics.COHORTS:
        return None, bad_request(f"cohort must be one of {', '.join(analytics.COHORTS)}", cohort=cohort)
    return cohort, None


@charging_bp.route("/overview", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_overview():
    """Overall counts and averages."""
    return jsonify({"data": analytics.get_overall_stats(get_db())})


@charging_bp.route("/users", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_users():
    """
    User profiles.

    Query params:
        sort: user_id, total_events, total_sessions, avg_duration, avg_charge, mismatch
        order: asc or desc
        limit: Maximum rows (default API_DEFAULT_USER_LIMIT)
    """
    sort_by = request.args.get("sort", "user_id")
    order = request.args.get("order", "asc")
    if order not in ("asc", "desc"):
        return bad_request("order must be asc or desc", order=order)
    limit, error = parse_limit(Config.API_DEFAULT_USER_LIMIT)
    if error:
        return error

    try:
        users = analytics.get_users(get_db(), sort_by=sort_by, order=order, limit=limit)
    except ValueError as e:
        return bad_request(str(e), sort=sort_by)
    return jsonify({"data": users, "count": len(users)})


@charging_bp.route("/users/<user_id>", methods=["GET"])
def get_user(user_id):
    """Profile and sessions of one user."""
    group_id = request.args.get("group_id")
    detail = analytics.get_user_detail(get_db(), user_id, group_id=group_id)
    if detail is None:
        error = StructuredError(
            ErrorCode.E400_USER_NOT_FOUND,
            f"User {user_id} not found",
            user_id=user_id,
            group_id=group_id,
        )
        return jsonify(error.to_response()), 404
    return jsonify({"data": detail})


@charging_bp.route("/sessions", methods=["GET"])
def get_sessions():
    """
    Sessions, most recent first.

    Query params:
        user_id: Restrict to one user
        complete_only: 'true' to drop incomplete sessions
        limit: Maximum rows (default API_DEFAULT_SESSION_LIMIT)
    """
    limit, error = parse_limit(Config.API_DEFAULT_SESSION_LIMIT)
    if error:
        return error
    sessions = analytics.get_sessions(
        get_db(),
        user_id=request.args.get("user_id"),
        complete_only=request.args.get("complete_only", "").lower() == "true",
        limit=limit,
    )
    return jsonify({"data": sessions, "count": len(sessions)})


@charging_bp.route("/patterns", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_time_patterns():
    """Dense hourly, daily and hour-by-day grids."""
    cohort, error = cohort_arg()
    if error:
        return error
    return jsonify({"data": analytics.get_time_patterns(get_db(), cohort)})


@charging_bp.route("/distributions", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_distributions():
    cohort, error = cohort_arg()
    if error:
        return error
    return jsonify({"data": analytics.get_distributions(get_db(), cohort)})


@charging_bp.route("/cdfs", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_cdfs():
    cohort, error = cohort_arg()
    if error:
        return error
    return jsonify({"data": analytics.get_cdfs(get_db(), cohort)})


@charging_bp.route("/daily", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_daily_sessions():
    cohort, error = cohort_arg()
    if error:
        return error
    rows = analytics.get_daily_session_counts(get_db(), cohort)
    return jsonify({"data": rows, "count": len(rows)})


@charging_bp.route("/frequency", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_daily_frequency():
    cohort, error = cohort_arg()
    if error:
        return error
    return jsonify({"data": analytics.get_daily_charging_frequency(get_db(), cohort)})


@charging_bp.route("/box-plots", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_box_plots():
    """Connect and disconnect battery-level box plots."""
    cohort, error = cohort_arg()
    if error:
        return error
    return jsonify({"data": analytics.get_battery_level_box_plots(get_db(), cohort)})


@charging_bp.route("/box-plots/grouped", methods=["GET"])
@limiter.limit(RateLimits.EXPENSIVE)
@cache.cached(query_string=True)
def get_grouped_box_plots():
    """
    One box plot per user or group.

    Query params:
        metric: start_percentage, end_percentage, duration_minutes, charge_gained
        group_by: user or group
    """
    metric = request.args.get("metric", "duration_minutes")
    group_by = request.args.get("group_by", "user")
    try:
        plots = analytics.get_grouped_box_plots(get_db(), metric=metric, group_by=group_by)
    except ValueError as e:
        return bad_request(str(e), metric=metric, group_by=group_by)
    return jsonify({"data": plots, "count": len(plots)})


@charging_bp.route("/anomalies", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_anomalies():
    """Anomalous users and the effect they have on the totals."""
    db = get_db()
    users = analytics.get_anomalous_users(db)
    impact = analytics.get_anomaly_impact(db)
    return jsonify({"data": {"users": users, **impact}, "count": len(users)})


@charging_bp.route("/comparison", methods=["GET"])
@limiter.limit(RateLimits.EXPENSIVE)
@cache.cached(query_string=True)
def get_comparison():
    """All users against the clean cohort."""
    return jsonify({"data": analytics.get_comparison(get_db())})


@charging_bp.route("/date-ranges", methods=["GET"])
@limiter.limit(RateLimits.READ_HEAVY)
@cache.cached(query_string=True)
def get_date_ranges():
    return jsonify({"data": analytics.get_user_date_ranges(get_db())})


@charging_bp.route("/deep-analysis", methods=["GET"])
@limiter.limit(RateLimits.EXPENSIVE)
@cache.cached(query_string=True)
def get_deep_analysis():
    return jsonify({"data": analytics.get_deep_analysis(get_db())})


@charging_bp.route("/curated", methods=["GET"])
@limiter.limit(RateLimits.EXPENSIVE)
@cache.cached(query_string=True)
def get_curated_cohort():
    """Curated cohort analysis; ``?user_ids=1,2,3`` overrides the configured list."""
    raw_ids = request.args.get("user_ids")
    user_ids = [u.strip() for u in raw_ids.split(",") if u.strip()] if raw_ids else None
    return jsonify({"data": analytics.get_curated_cohort_analysis(get_db(), user_ids=user_ids)})
