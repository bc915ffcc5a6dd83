"""Task service — status changes and day-level task queries.

Any status may move to any other: users correct mistakes freely.
``completed_at`` is stamped on entering ``completed`` and cleared on leaving it.
Recomputing progress or streaks after a change is up to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from src.core.analytics import percent
from src.core.errors import TaskNotFound, ValidationError, require_user
from src.data.models import TaskInstance, TaskStatus, TimeSlot

if TYPE_CHECKING:
    from src.ports.store_port import TrackerStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


@dataclass
class DayTaskStats:
    total: int
    completed: int
    pending: int
    skipped: int

    @property
    def progress(self) -> int:
        """Completed share of non-skipped tasks, as a whole percentage."""
        return percent(self.completed, self.total - self.skipped)


def set_status(
    store: TrackerStore,
    user_id: int | None,
    task_id: int,
    new_status: TaskStatus | str,
    now: datetime,
) -> TaskInstance:
    """Move a task to ``new_status``.

    Raises TaskNotFound if the task does not exist or belongs to someone
    else; in that case nothing was changed.
    """
    user_id = require_user(user_id)
    try:
        status = TaskStatus(new_status)
    except ValueError as exc:
        raise ValidationError(f"Unknown task status: {new_status!r}") from exc

    completed_at = now if status is TaskStatus.COMPLETED else None
    task = store.update_instance_status(user_id, task_id, status, completed_at)
    if task is None:
        raise TaskNotFound(task_id)

    logger.info("Task #%d set to %s by user %d", task_id, status.value, user_id)
    return task


def create_adhoc_task(
    store: TrackerStore,
    user_id: int | None,
    title: str,
    time_slot: TimeSlot | str,
    target_date: date,
) -> TaskInstance:
    """Add a one-off task for ``target_date``."""
    user_id = require_user(user_id)
    title = validate_title(title)
    slot = parse_time_slot(time_slot)

    [task] = store.insert_instances([
        TaskInstance(
            user_id=user_id,
            title=title,
            scheduled_date=target_date,
            time_slot=slot,
            status=TaskStatus.PENDING,
            is_adhoc=True,
        )
    ])
    logger.info("Ad-hoc task #%d '%s' added for user %d", task.id, title, user_id)
    return task


def get_tasks_for_date(
    store: TrackerStore, user_id: int | None, target_date: date,
) -> list[TaskInstance]:
    user_id = require_user(user_id)
    return store.list_instances(user_id, target_date)


def get_overdue_tasks(
    store: TrackerStore, user_id: int | None, today: date, limit: int = 10,
) -> list[TaskInstance]:
    """Pending tasks from days before ``today``, most recent first."""
    user_id = require_user(user_id)
    return store.list_overdue_instances(user_id, today, limit=limit)


def get_task_stats(
    store: TrackerStore, user_id: int | None, target_date: date,
) -> DayTaskStats:
    tasks = get_tasks_for_date(store, user_id, target_date)
    completed = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
    skipped = sum(1 for t in tasks if t.status is TaskStatus.SKIPPED)
    return DayTaskStats(
        total=len(tasks),
        completed=completed,
        pending=len(tasks) - completed - skipped,
        skipped=skipped,
    )


def validate_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title is longer than {MAX_TITLE_LENGTH} characters")
    return title


def parse_time_slot(value: TimeSlot | str) -> TimeSlot:
    try:
        return TimeSlot(value)
    except ValueError as exc:
        choices = ", ".join(s.value for s in TimeSlot)
        raise ValidationError(f"Unknown time slot {value!r} (choose: {choices})") from exc
