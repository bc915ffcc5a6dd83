"""Tests for src.core.analytics — rates, streak and trend series.

Reference dates: 2024-01-10 is a Wednesday, 2024-01-07 a Sunday.
"""

from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from src.core.analytics import (
    MAX_STREAK_DAYS,
    WINDOW_DAYS,
    DayStats,
    average_rate,
    compute_analytics,
    compute_streak,
    daily_series,
    percent,
    tally_by_date,
    weekly_series,
)
from src.core.errors import NotAuthenticated, ProfileNotFound
from src.data.models import TaskStatus

AS_OF = date(2024, 1, 10)
C, S, P = TaskStatus.COMPLETED, TaskStatus.SKIPPED, TaskStatus.PENDING


def _rows(day, completed=0, skipped=0, pending=0):
    return [(day, C)] * completed + [(day, S)] * skipped + [(day, P)] * pending


def _store(rows, profile):
    store = MagicMock()
    store.get_profile.return_value = profile
    store.list_instances_in_range.return_value = rows
    return store


class TestPercent:
    def test_half_rounds_up(self):
        assert percent(1, 8) == 13  # 12.5
        assert percent(5, 8) == 63  # 62.5

    def test_zero_whole(self):
        assert percent(0, 0) == 0


class TestDayStats:
    def test_skipped_excluded_from_rate(self):
        day = tally_by_date(_rows(AS_OF, completed=3, skipped=2))[AS_OF]
        assert (day.total, day.completed, day.skipped) == (5, 3, 2)
        assert day.rate == 100

    def test_all_skipped_rate_is_zero(self):
        day = tally_by_date(_rows(AS_OF, skipped=2))[AS_OF]
        assert day.rate == 0

    def test_pending_counts_against_rate(self):
        day = tally_by_date(_rows(AS_OF, completed=1, pending=2))[AS_OF]
        assert day.rate == 33


class TestStreak:
    def test_today_is_not_counted(self):
        days = tally_by_date(_rows(AS_OF, completed=1))
        assert compute_streak(days, AS_OF, rest_day_index=0) == 0

    def test_counts_back_from_yesterday(self):
        rows = _rows(date(2024, 1, 9), completed=1) + _rows(date(2024, 1, 8), completed=1)
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 2

    def test_rest_day_is_passed_over(self):
        rows = (
            _rows(date(2024, 1, 9), completed=1)
            + _rows(date(2024, 1, 8), completed=1)
            # Sunday 2024-01-07 has no tasks
            + _rows(date(2024, 1, 6), completed=1)
        )
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 3

    def test_rest_day_with_tasks_does_not_count(self):
        rows = _rows(date(2024, 1, 8), completed=1) + _rows(date(2024, 1, 7), completed=5)
        rows += _rows(date(2024, 1, 9), completed=1)
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 2

    def test_gap_breaks_streak(self):
        rows = _rows(date(2024, 1, 9), completed=1) + _rows(date(2024, 1, 5), completed=1)
        # Monday 2024-01-08 has no tasks
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 1

    def test_below_threshold_breaks_streak(self):
        rows = (
            _rows(date(2024, 1, 9), completed=4, pending=1)   # 80%
            + _rows(date(2024, 1, 8), completed=3, pending=1)  # 75%
            + _rows(date(2024, 1, 6), completed=1)
        )
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 1

    def test_skips_do_not_hurt_ratio(self):
        rows = _rows(date(2024, 1, 9), completed=1, skipped=4)
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 1

    def test_all_skipped_day_breaks_streak(self):
        rows = _rows(date(2024, 1, 9), skipped=2)
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=0) == 0

    def test_streak_is_bounded(self):
        rows = []
        for offset in range(1, 500):
            rows += _rows(AS_OF - timedelta(days=offset), completed=1)
        # rest day 7 never matches, so every iteration is a counted day
        assert compute_streak(tally_by_date(rows), AS_OF, rest_day_index=7) == MAX_STREAK_DAYS


class TestSeries:
    def test_daily_series_fills_gaps(self):
        series = daily_series(tally_by_date(_rows(AS_OF, completed=1)), AS_OF)
        assert len(series) == WINDOW_DAYS
        assert series[0].date == AS_OF - timedelta(days=WINDOW_DAYS - 1)
        assert series[-1].date == AS_OF
        assert series[-1].rate == 100
        assert series[-2] == DayStats(date=AS_OF - timedelta(days=1))

    def test_average_excludes_empty_days(self):
        days = tally_by_date(
            _rows(AS_OF, completed=1) + _rows(date(2024, 1, 9), completed=1, pending=1)
        )
        assert average_rate(daily_series(days, AS_OF)) == 75

    def test_average_with_no_data(self):
        assert average_rate(daily_series({}, AS_OF)) == 0

    def test_weekly_labels_and_bounds(self):
        weeks = weekly_series({}, AS_OF)
        assert [w.label for w in weeks] == ["W1", "W2", "W3", "W4"]
        assert weeks[-1].end == AS_OF
        assert weeks[-1].start == AS_OF - timedelta(days=6)
        assert weeks[0].start == AS_OF - timedelta(days=27)
        assert all(w.rate == 0 for w in weeks)

    def test_weekly_rate_pools_counts(self):
        rows = _rows(AS_OF, completed=1) + _rows(date(2024, 1, 9), completed=1, pending=2)
        last = weekly_series(tally_by_date(rows), AS_OF)[-1]
        # pooled 2/4, not the mean of 100% and 33%
        assert (last.completed, last.active) == (2, 4)
        assert last.rate == 50


class TestComputeAnalytics:
    def test_full_result(self, make_profile):
        rows = (
            _rows(date(2024, 1, 8), completed=3, skipped=2)
            + _rows(date(2024, 1, 9), completed=1, pending=1)
            + _rows(AS_OF, pending=2)
        )
        result = compute_analytics(_store(rows, make_profile()), 12345, AS_OF)
        assert result.total_completed == 4
        assert result.average_rate == 50  # (100 + 50 + 0) / 3
        assert result.streak == 0  # yesterday was 50%
        assert len(result.daily_series) == WINDOW_DAYS
        assert len(result.weekly_series) == 4

    def test_reads_history_for_streak(self, make_profile):
        store = _store([], make_profile())
        compute_analytics(store, 12345, AS_OF)
        store.list_instances_in_range.assert_called_once_with(
            12345, AS_OF - timedelta(days=MAX_STREAK_DAYS + 1), AS_OF,
        )

    def test_streak_older_than_window_is_counted(self, make_profile):
        rows = []
        for offset in range(1, 41):
            rows += _rows(AS_OF - timedelta(days=offset), completed=1)
        result = compute_analytics(_store(rows, make_profile(rest_day_index=0)), 12345, AS_OF)
        sundays = sum(
            1 for offset in range(1, 41)
            if (AS_OF - timedelta(days=offset)).weekday() == 6
        )
        assert result.streak == 40 - sundays
        assert result.total_completed == WINDOW_DAYS - 1

    def test_missing_profile_raises(self):
        with pytest.raises(ProfileNotFound):
            compute_analytics(_store([], None), 12345, AS_OF)

    def test_missing_user_raises(self):
        with pytest.raises(NotAuthenticated):
            compute_analytics(MagicMock(), None, AS_OF)

    def test_with_real_store(self, tracker_db, profile):
        from src.core.task_service import create_adhoc_task, set_status

        yesterday = AS_OF - timedelta(days=1)
        task = create_adhoc_task(tracker_db, 12345, "Read", "anytime", yesterday)
        set_status(tracker_db, 12345, task.id, TaskStatus.COMPLETED, datetime(2024, 1, 9, 21, 0))

        result = compute_analytics(tracker_db, 12345, AS_OF)
        assert result.streak == 1
        assert result.total_completed == 1
        assert result.daily_series[-2].rate == 100
