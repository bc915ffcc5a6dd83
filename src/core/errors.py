"""Domain errors raised by the core operations.

Store failures are reported with ``StoreError`` from the store port; every
other failure a caller may need to tell apart lives here.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all Routine Tracker domain errors."""


class NotAuthenticated(TrackerError):
    """No user identity was supplied to a core operation."""

    def __init__(self) -> None:
        super().__init__("Not authenticated")


class ProfileNotFound(TrackerError):
    """The user has no profile (onboarding was never completed)."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Profile not found for user {user_id}")
        self.user_id = user_id


class ValidationError(TrackerError):
    """Input rejected before it reached the store."""


class TaskNotFound(TrackerError):
    """No task instance with this id belongs to the user."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TemplateNotFound(TrackerError):
    """No template with this id belongs to the user."""

    def __init__(self, template_id: int) -> None:
        super().__init__(f"Routine {template_id} not found")
        self.template_id = template_id


def require_user(user_id: int | None) -> int:
    """Return ``user_id`` or raise NotAuthenticated when it is missing."""
    if user_id is None:
        raise NotAuthenticated()
    return user_id
