"""Tests for src.core.task_service — status changes and day queries."""

from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from src.core.errors import NotAuthenticated, TaskNotFound, ValidationError
from src.core.task_service import (
    MAX_TITLE_LENGTH,
    DayTaskStats,
    create_adhoc_task,
    get_overdue_tasks,
    get_task_stats,
    get_tasks_for_date,
    parse_time_slot,
    set_status,
    validate_title,
)
from src.data.models import TaskStatus, TimeSlot
from src.ports.store_port import StoreError

DAY = date(2024, 1, 1)
NOW = datetime(2024, 1, 1, 19, 30)


@pytest.fixture
def task(tracker_db):
    return create_adhoc_task(tracker_db, 12345, "Call mom", TimeSlot.POST_WORK, DAY)


class TestSetStatus:
    def test_complete_stamps_completed_at(self, tracker_db, task):
        updated = set_status(tracker_db, 12345, task.id, TaskStatus.COMPLETED, NOW)
        assert updated.status is TaskStatus.COMPLETED
        assert updated.completed_at == NOW

    def test_leaving_completed_clears_timestamp(self, tracker_db, task):
        set_status(tracker_db, 12345, task.id, TaskStatus.COMPLETED, NOW)
        updated = set_status(tracker_db, 12345, task.id, TaskStatus.PENDING, NOW)
        assert updated.status is TaskStatus.PENDING
        assert updated.completed_at is None

    def test_skip_then_complete(self, tracker_db, task):
        skipped = set_status(tracker_db, 12345, task.id, "skipped", NOW)
        assert skipped.status is TaskStatus.SKIPPED
        assert skipped.completed_at is None
        done = set_status(tracker_db, 12345, task.id, "completed", NOW)
        assert done.completed_at == NOW

    def test_same_status_is_allowed(self, tracker_db, task):
        updated = set_status(tracker_db, 12345, task.id, TaskStatus.PENDING, NOW)
        assert updated.status is TaskStatus.PENDING

    def test_unknown_task_raises(self, tracker_db):
        with pytest.raises(TaskNotFound):
            set_status(tracker_db, 12345, 999, TaskStatus.COMPLETED, NOW)

    def test_other_users_task_raises_and_is_unchanged(self, tracker_db, task):
        with pytest.raises(TaskNotFound):
            set_status(tracker_db, 67890, task.id, TaskStatus.COMPLETED, NOW)
        assert tracker_db.get_instance(12345, task.id).status is TaskStatus.PENDING

    def test_invalid_status_raises_before_store(self):
        store = MagicMock()
        with pytest.raises(ValidationError):
            set_status(store, 12345, 1, "done", NOW)
        store.update_instance_status.assert_not_called()

    def test_missing_user_raises(self):
        with pytest.raises(NotAuthenticated):
            set_status(MagicMock(), None, 1, TaskStatus.COMPLETED, NOW)

    def test_store_error_propagates(self):
        store = MagicMock()
        store.update_instance_status.side_effect = StoreError("locked")
        with pytest.raises(StoreError):
            set_status(store, 12345, 1, TaskStatus.COMPLETED, NOW)


class TestAdhocTasks:
    def test_create_adhoc(self, task):
        assert task.id is not None
        assert task.is_adhoc is True
        assert task.template_id is None
        assert task.time_slot is TimeSlot.POST_WORK

    def test_title_is_trimmed(self, tracker_db):
        created = create_adhoc_task(tracker_db, 12345, "  Buy milk ", "anytime", DAY)
        assert created.title == "Buy milk"

    def test_empty_title_rejected(self, tracker_db):
        with pytest.raises(ValidationError):
            create_adhoc_task(tracker_db, 12345, "   ", "anytime", DAY)
        assert tracker_db.list_instances(12345, DAY) == []

    def test_unknown_slot_rejected(self, tracker_db):
        with pytest.raises(ValidationError):
            create_adhoc_task(tracker_db, 12345, "Read", "lunch", DAY)


class TestQueries:
    def test_tasks_for_date(self, tracker_db, task):
        create_adhoc_task(tracker_db, 12345, "Elsewhere", "anytime", date(2024, 1, 2))
        assert [t.title for t in get_tasks_for_date(tracker_db, 12345, DAY)] == ["Call mom"]

    def test_overdue_excludes_today_and_done(self, tracker_db, task):
        done = create_adhoc_task(tracker_db, 12345, "Done", "anytime", DAY)
        set_status(tracker_db, 12345, done.id, TaskStatus.COMPLETED, NOW)
        create_adhoc_task(tracker_db, 12345, "Today", "anytime", date(2024, 1, 3))

        overdue = get_overdue_tasks(tracker_db, 12345, date(2024, 1, 3))
        assert [t.title for t in overdue] == ["Call mom"]

    def test_overdue_limit(self, tracker_db):
        for i in range(5):
            create_adhoc_task(tracker_db, 12345, f"T{i}", "anytime", DAY)
        assert len(get_overdue_tasks(tracker_db, 12345, date(2024, 1, 2), limit=3)) == 3

    def test_task_stats(self, tracker_db):
        ids = [create_adhoc_task(tracker_db, 12345, f"T{i}", "anytime", DAY).id for i in range(4)]
        set_status(tracker_db, 12345, ids[0], TaskStatus.COMPLETED, NOW)
        set_status(tracker_db, 12345, ids[1], TaskStatus.SKIPPED, NOW)

        stats = get_task_stats(tracker_db, 12345, DAY)
        assert stats == DayTaskStats(total=4, completed=1, pending=2, skipped=1)
        assert stats.progress == 33


class TestDayTaskStats:
    def test_progress_ignores_skipped(self):
        assert DayTaskStats(total=5, completed=3, pending=0, skipped=2).progress == 100

    def test_progress_rounds_half_up(self):
        assert DayTaskStats(total=8, completed=1, pending=7, skipped=0).progress == 13

    def test_progress_all_skipped_is_zero(self):
        assert DayTaskStats(total=2, completed=0, pending=0, skipped=2).progress == 0


class TestValidators:
    def test_title_too_long(self):
        with pytest.raises(ValidationError):
            validate_title("x" * (MAX_TITLE_LENGTH + 1))

    def test_title_at_limit(self):
        assert validate_title("x" * MAX_TITLE_LENGTH) == "x" * MAX_TITLE_LENGTH

    def test_parse_time_slot(self):
        assert parse_time_slot("pre_work") is TimeSlot.PRE_WORK
        assert parse_time_slot(TimeSlot.ANYTIME) is TimeSlot.ANYTIME
