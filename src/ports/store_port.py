"""Store port — abstract interface for the persistent task store.

Core modules depend on this protocol, never on a specific database.
Every method is scoped to the owning user id.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from src.data.models import Profile, TaskInstance, TaskStatus, TaskTemplate


class StoreError(Exception):
    """Raised when any store read or write fails."""


class TrackerStore(Protocol):
    """Abstract store interface used by core modules."""

    def get_profile(self, user_id: int) -> Profile | None: ...

    def list_profiles(self, onboarded_only: bool = True) -> list[Profile]: ...

    def list_active_templates(self, user_id: int) -> list[TaskTemplate]: ...

    def list_instances(
        self, user_id: int, scheduled_date: date, is_adhoc: bool | None = None,
    ) -> list[TaskInstance]: ...

    def insert_instances(self, batch: list[TaskInstance]) -> list[TaskInstance]: ...

    def update_instance_status(
        self,
        user_id: int,
        task_id: int,
        status: TaskStatus,
        completed_at: datetime | None,
    ) -> TaskInstance | None: ...

    def list_instances_in_range(
        self, user_id: int, start_date: date, end_date: date,
    ) -> list[tuple[date, TaskStatus]]: ...

    def list_overdue_instances(
        self, user_id: int, before: date, limit: int = 10,
    ) -> list[TaskInstance]: ...
