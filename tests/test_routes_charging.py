"""
Tests for charging analytics routes.

Covers response shapes, parameter validation and database error handling.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from config import Config
from factories import BASE_TIME, SessionFactory, UserStatsFactory
from services.rebuild_service import rebuild_all


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def charging_data(db_session):
    """Two clean users and one heavily mismatched user with sessions."""
    for day in range(3):
        start = BASE_TIME + timedelta(days=day)
        SessionFactory.create(db_session, user_id="1", connect_time=start, disconnect_time=start + timedelta(minutes=90))
        SessionFactory.create(
            db_session, user_id="2", connect_time=start + timedelta(hours=12),
            disconnect_time=start + timedelta(hours=20), duration_minutes=480.0,
            start_percentage=30, end_percentage=100, charge_gained=70,
        )
    SessionFactory.create(db_session, user_id="3", is_complete=False, disconnect_time=None,
                          duration_minutes=None, end_percentage=None, charge_gained=None)

    UserStatsFactory.create(db_session, user_id="1", total_sessions=3, complete_sessions=3)
    UserStatsFactory.create(db_session, user_id="2", total_sessions=3, complete_sessions=3,
                            avg_duration_minutes=480.0, event_mismatch=1)
    UserStatsFactory.create(db_session, user_id="3", total_events=15, connect_count=13, disconnect_count=2,
                            event_mismatch=11, is_anomalous=True, total_sessions=1, complete_sessions=0,
                            avg_duration_minutes=None, avg_charge_gained=None)


def db_down(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("connection refused"))


class TestOverviewAndUsers:
    """Test overview, user list and user detail"""

    def test_overview(self, client, charging_data):
        response = client.get("/api/charging/overview")
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["total_users"] == 3
        assert data["total_sessions"] == 7
        assert data["complete_sessions"] == 6
        assert data["anomalous_users"] == 1

    def test_overview_empty_store(self, client):
        response = client.get("/api/charging/overview")
        assert response.status_code == 200
        assert response.get_json()["data"]["total_users"] == 0
        assert response.get_json()["data"]["avg_duration"] is None

    def test_users_sorted(self, client, charging_data):
        response = client.get("/api/charging/users?sort=mismatch&order=desc&limit=2")
        body = response.get_json()
        assert response.status_code == 200
        assert body["count"] == 2
        assert [u["user_id"] for u in body["data"]] == ["3", "2"]

    @pytest.mark.parametrize("query", ["sort=password", "order=sideways", "limit=abc", "limit=0"])
    def test_users_invalid_params(self, client, charging_data, query):
        response = client.get(f"/api/charging/users?{query}")
        assert response.status_code == 400
        assert response.get_json()["code"] == "E004"

    def test_user_detail(self, client, charging_data):
        response = client.get("/api/charging/users/1")
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["profile"]["user_id"] == "1"
        assert len(data["sessions"]) == 3
        # Most recent first
        assert data["sessions"][0]["connect_time"] > data["sessions"][-1]["connect_time"]

    def test_unknown_user(self, client, charging_data):
        response = client.get("/api/charging/users/404")
        assert response.status_code == 404
        assert response.get_json()["code"] == "E400"

    def test_sessions(self, client, charging_data):
        response = client.get("/api/charging/sessions?user_id=2&limit=2")
        body = response.get_json()
        assert body["count"] == 2
        assert all(s["user_id"] == "2" for s in body["data"])

    def test_sessions_complete_only(self, client, charging_data):
        body = client.get("/api/charging/sessions?complete_only=true").get_json()
        assert body["count"] == 6
        assert all(s["is_complete"] for s in body["data"])


class TestAggregationViews:
    """Test distribution, pattern and comparison endpoints"""

    def test_patterns(self, client, charging_data):
        data = client.get("/api/charging/patterns").get_json()["data"]
        assert len(data["hourly"]) == 24
        assert len(data["heatmap"]) == 168
        assert data["hourly"][10]["session_count"] == 3
        assert data["hourly"][22]["session_count"] == 3

    def test_distributions_clean_cohort(self, client, charging_data):
        data = client.get("/api/charging/distributions?cohort=clean").get_json()["data"]
        # The incomplete session belongs to the mismatched user
        assert sum(row["count"] for row in data["connect_level"]) == 6

    def test_invalid_cohort(self, client, charging_data):
        response = client.get("/api/charging/patterns?cohort=vip")
        assert response.status_code == 400

    def test_distributions(self, client, charging_data):
        data = client.get("/api/charging/distributions").get_json()["data"]
        assert set(data) == {"duration", "charge_gained", "connect_level", "disconnect_level"}
        duration = {row["bucket"]: row["count"] for row in data["duration"]}
        assert duration == {"1-2 hrs": 3, "8+ hrs": 3}
        assert sum(row["count"] for row in data["connect_level"]) == 7

    def test_box_plots(self, client, charging_data):
        data = client.get("/api/charging/box-plots").get_json()["data"]
        assert data["connect"]["count"] == 7
        assert data["disconnect"]["count"] == 6
        assert data["disconnect"]["upper_fence"] <= 100

    def test_grouped_box_plots(self, client, charging_data):
        response = client.get("/api/charging/box-plots/grouped?metric=charge_gained")
        assert response.status_code == 200
        # Fewer than five sessions per user
        assert response.get_json()["data"] == []

    def test_grouped_box_plots_bad_metric(self, client, charging_data):
        assert client.get("/api/charging/box-plots/grouped?metric=voltage").status_code == 400

    def test_cdfs_daily_and_frequency(self, client, charging_data):
        assert client.get("/api/charging/cdfs").get_json()["data"]["level"][-1]["cdf"] == 1.0
        daily = client.get("/api/charging/daily").get_json()
        assert daily["count"] == 3
        frequency = client.get("/api/charging/frequency").get_json()["data"]
        assert frequency["stats"]["total_user_days"] == 7

    def test_anomalies(self, client, charging_data):
        body = client.get("/api/charging/anomalies").get_json()
        assert body["count"] == 1
        assert body["data"]["users"][0]["user_id"] == "3"
        assert body["data"]["impact"]["pct_users"] == 33.3
        assert body["data"]["all"]["users"] == 3
        assert body["data"]["anomalous"]["users"] == 1
        assert body["data"]["normal"]["users"] == 2
        assert body["data"]["normal"]["total_sessions"] == 6

    def test_comparison_excludes_mismatched_users(self, client, charging_data):
        data = client.get("/api/charging/comparison").get_json()["data"]
        assert data["summary"]["all"]["total_sessions"] == 7
        assert data["summary"]["clean"]["total_sessions"] == 6
        assert len(data["hourly"]) == 24

    def test_date_ranges(self, client, charging_data):
        data = client.get("/api/charging/date-ranges").get_json()["data"]
        assert data["stats"]["total_users"] == 3

    def test_deep_analysis(self, client, db_session, data_dir):
        from services.ingest_service import ingest_directory

        ingest_directory(db_session, str(data_dir))
        rebuild_all(db_session)

        data = client.get("/api/charging/deep-analysis").get_json()["data"]
        assert data["plug_in_by_hour"][10]["count"] == 1
        assert data["plug_in_by_hour"][22]["count"] == 1
        assert data["plug_out_by_hour"][13]["count"] == 1
        assert data["overnight"]["total_complete"] == 1
        assert data["charge_targets"]["stats"]["total"] == 1
        assert data["drain"]["data_points"] == 0

    def test_curated_cohort(self, client, charging_data, monkeypatch):
        monkeypatch.setattr(Config, "CURATED_COHORT_USER_IDS", ["2", "3"])
        data = client.get("/api/charging/curated").get_json()["data"]

        assert data["summary"]["total_sessions"] == 4
        assert data["summary"]["requested_users"] == 2
        assert data["box_plots"]["duration_minutes"]["count"] == 3
        assert data["scatter"]["start_vs_charge"]["points"][0] == {"x": 30, "y": 70}
        # Constant x values have no correlation
        assert data["scatter"]["start_vs_charge"]["correlation"] is None

    def test_curated_cohort_query_override(self, client, charging_data):
        data = client.get("/api/charging/curated?user_ids=1").get_json()["data"]
        assert data["summary"]["total_sessions"] == 3

    def test_curated_box_plot_fences_stay_within_percent_range(self, client, db_session, monkeypatch):
        levels = [(0, 60), (2, 62), (4, 64), (40, 96), (60, 98), (80, 100)]
        for day, (start, end) in enumerate(levels):
            connect = BASE_TIME + timedelta(days=day)
            SessionFactory.create(db_session, user_id="7", connect_time=connect,
                                  disconnect_time=connect + timedelta(minutes=90),
                                  start_percentage=start, end_percentage=end, charge_gained=end - start)
        monkeypatch.setattr(Config, "CURATED_COHORT_USER_IDS", ["7"])

        box_plots = client.get("/api/charging/curated").get_json()["data"]["box_plots"]

        for metric in ("start_percentage", "end_percentage"):
            assert 0 <= box_plots[metric]["lower_fence"]
            assert box_plots[metric]["upper_fence"] <= 100
        assert box_plots["start_percentage"]["lower_fence"] == 0
        assert box_plots["end_percentage"]["upper_fence"] == 100


class TestErrorHandling:
    """Test database failures surface as 503"""

    def test_aggregation_failure(self, client, charging_data):
        with patch("services.charging_analytics_service.load_profiles", side_effect=db_down):
            response = client.get("/api/charging/overview")

        assert response.status_code == 503
        body = response.get_json()
        assert body["code"] == "E403"
        assert body["context"]["operation"] == "overall_stats"

    def test_empty_cohort_is_not_an_error(self, client, monkeypatch):
        monkeypatch.setattr(Config, "CURATED_COHORT_USER_IDS", [])
        response = client.get("/api/charging/curated")
        assert response.status_code == 200
        assert response.get_json()["data"]["summary"]["total_sessions"] == 0


class TestStatus:
    """Test the health endpoint"""

    def test_status(self, client, charging_data):
        body = client.get("/api/status").get_json()
        assert body["status"] == "online"
        assert body["sessions"] == 7
        assert body["users"] == 3

    def test_status_reports_unreachable_store(self, client):
        unreachable = MagicMock()
        unreachable.query.side_effect = db_down
        with patch("app.get_db", return_value=unreachable):
            response = client.get("/api/status")

        assert response.status_code == 503
        body = response.get_json()
        assert body["code"] == "E200"
        assert body["database"] == "unreachable"
        assert body["context"]["operation"] == "status"
        unreachable.rollback.assert_called_once()
