"""
Tests for user profile aggregation and cohort predicates
"""

from datetime import datetime, timedelta, timezone

import pytest

from calculations.profiles import (
    clean_cohort_keys,
    compute_user_profile,
    curated_cohort_keys,
    filter_sessions_by_keys,
    is_anomalous,
    is_clean_cohort_member,
    sort_profiles,
    user_sort_key,
)
from calculations.sessions import reconstruct_sessions
from factories import connect, disconnect, make_profile, make_session

T0 = datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)


def profile_for(events):
    return compute_user_profile(events, reconstruct_sessions(events))


class TestThresholds:
    """Test the two data-quality predicates stay distinct"""

    @pytest.mark.parametrize("mismatch,expected", [(0, False), (1, False), (2, True), (10, True), (50, True)])
    def test_is_anomalous(self, mismatch, expected):
        assert is_anomalous(mismatch) is expected

    @pytest.mark.parametrize("mismatch,expected", [(0, True), (1, True), (10, True), (11, False)])
    def test_is_clean_cohort_member(self, mismatch, expected):
        assert is_clean_cohort_member(mismatch) is expected

    def test_mismatch_ten_is_anomalous_but_clean(self):
        assert is_anomalous(10)
        assert is_clean_cohort_member(10)


class TestComputeUserProfile:
    """Test per-subject rollups"""

    def test_orphan_disconnect_profile(self):
        profile = profile_for([disconnect(50, T0)])

        assert profile.disconnect_count == 1
        assert profile.connect_count == 0
        assert profile.event_mismatch == 1
        assert profile.is_anomalous is False
        assert profile.total_sessions == 0
        assert profile.avg_duration_minutes is None

    def test_ten_connects_eight_disconnects(self):
        events = []
        for i in range(10):
            events.append(connect(20, T0 + timedelta(hours=i * 3)))
            if i < 8:
                events.append(disconnect(80, T0 + timedelta(hours=i * 3, minutes=60)))

        profile = profile_for(events)
        assert profile.connect_count == 10
        assert profile.disconnect_count == 8
        assert profile.event_mismatch == 2
        assert profile.is_anomalous is True
        assert profile.total_sessions == 10
        assert profile.complete_sessions == 8

    def test_averages_over_complete_sessions(self):
        events = [
            connect(20, T0), disconnect(80, T0 + timedelta(minutes=60)),
            connect(40, T0 + timedelta(hours=2)), disconnect(60, T0 + timedelta(hours=2, minutes=30)),
            connect(5, T0 + timedelta(hours=5)),
        ]
        profile = profile_for(events)

        assert profile.avg_duration_minutes == 45.0
        assert profile.avg_charge_gained == 40.0
        assert profile.avg_connect_percentage == 30.0
        assert profile.avg_disconnect_percentage == 70.0

    def test_first_and_last_event(self):
        events = [connect(20, T0 + timedelta(hours=1)), disconnect(80, T0 + timedelta(hours=3)), disconnect(70, T0)]
        profile = profile_for(events)
        assert profile.first_event == T0
        assert profile.last_event == T0 + timedelta(hours=3)
        assert profile.total_events == 3

    def test_no_events(self):
        assert compute_user_profile([], []) is None

    def test_averages_none_without_complete_sessions(self):
        profile = profile_for([connect(20, T0), connect(30, T0 + timedelta(hours=1))])
        assert profile.total_sessions == 2
        assert profile.complete_sessions == 0
        assert profile.avg_charge_gained is None
        assert profile.avg_disconnect_percentage is None


class TestCohorts:
    """Test cohort key sets"""

    def test_clean_cohort_keys(self):
        profiles = [make_profile("1", 0), make_profile("2", 10), make_profile("3", 11)]
        assert clean_cohort_keys(profiles) == {(None, "1"), (None, "2")}

    def test_curated_cohort_keys(self):
        assert curated_cohort_keys(["4", 5]) == {(None, "4"), (None, "5")}
        assert curated_cohort_keys(["4"], group_id="g") == {("g", "4")}

    def test_filter_sessions_by_keys(self):
        sessions = [make_session(user_id="1"), make_session(user_id="2"), make_session(user_id="1", group_id="g")]
        kept = filter_sessions_by_keys(sessions, {(None, "1")})
        assert len(kept) == 1
        assert kept[0].group_id is None


class TestSortProfiles:
    """Test the whitelisted profile ordering"""

    def test_numeric_user_ids_sort_numerically(self):
        profiles = [make_profile("10"), make_profile("9"), make_profile("abc"), make_profile("100")]
        assert [p.user_id for p in sort_profiles(profiles)] == ["9", "10", "100", "abc"]

    def test_sort_by_mismatch_descending(self):
        profiles = [make_profile("1", 3), make_profile("2", 7), make_profile("3", 0)]
        ordered = sort_profiles(profiles, sort_by="mismatch", descending=True)
        assert [p.user_id for p in ordered] == ["2", "1", "3"]

    def test_missing_values_sort_last(self):
        profiles = [
            make_profile("1", avg_duration_minutes=None),
            make_profile("2", avg_duration_minutes=30.0),
            make_profile("3", avg_duration_minutes=60.0),
        ]
        for descending in (False, True):
            ordered = sort_profiles(profiles, sort_by="avg_duration", descending=descending)
            assert ordered[-1].user_id == "1"

    def test_limit(self):
        profiles = [make_profile(str(i)) for i in range(10)]
        assert len(sort_profiles(profiles, limit=3)) == 3

    def test_unknown_sort_field(self):
        with pytest.raises(ValueError):
            sort_profiles([], sort_by="password")

    def test_user_sort_key(self):
        assert user_sort_key("2") < user_sort_key("10") < user_sort_key("a")
