"""Analytics — completion rates, streak and trends over recent history.

Read-only: nothing here writes to the store.

Skipped tasks count toward neither side of a completion rate, so a day's
rate is completed / (total - skipped). Weekly rates pool the raw counts of
their seven days instead of averaging daily rates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING

from src.core.errors import ProfileNotFound, require_user
from src.core.recurrence import weekday_index
from src.data.models import TaskStatus

if TYPE_CHECKING:
    from src.data.models import Profile
    from src.ports.store_port import TrackerStore

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
WEEKS = 4
STREAK_THRESHOLD = 0.80
MAX_STREAK_DAYS = 365


def percent(part: int, whole: int) -> int:
    """Whole percentage of part/whole, halves rounded up; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return math.floor(part * 100 / whole + 0.5)


@dataclass
class DayStats:
    date: date
    total: int = 0
    completed: int = 0
    skipped: int = 0

    @property
    def active(self) -> int:
        return self.total - self.skipped

    @property
    def ratio(self) -> float:
        return self.completed / self.active if self.active > 0 else 0.0

    @property
    def rate(self) -> int:
        """Completion rate as a whole percentage."""
        return percent(self.completed, self.active)


@dataclass
class WeekStats:
    label: str            # "W1" (oldest) .. "W4" (ends on as_of)
    start: date
    end: date
    completed: int
    active: int

    @property
    def rate(self) -> int:
        return percent(self.completed, self.active)


@dataclass
class Analytics:
    streak: int
    total_completed: int
    average_rate: int
    daily_series: list[DayStats] = field(default_factory=list)
    weekly_series: list[WeekStats] = field(default_factory=list)


def tally_by_date(rows: list[tuple[date, TaskStatus]]) -> dict[date, DayStats]:
    """Group (date, status) rows into per-day counts."""
    days: dict[date, DayStats] = {}
    for scheduled, status in rows:
        day = days.get(scheduled)
        if day is None:
            day = days[scheduled] = DayStats(date=scheduled)
        day.total += 1
        if status is TaskStatus.COMPLETED:
            day.completed += 1
        elif status is TaskStatus.SKIPPED:
            day.skipped += 1
    return days


def daily_series(days: dict[date, DayStats], as_of: date) -> list[DayStats]:
    """The WINDOW_DAYS days ending at ``as_of``, oldest first, gaps as zeros."""
    series = []
    for offset in range(WINDOW_DAYS - 1, -1, -1):
        d = as_of - timedelta(days=offset)
        series.append(days.get(d) or DayStats(date=d))
    return series


def compute_streak(days: dict[date, DayStats], as_of: date, rest_day_index: int) -> int:
    """Count consecutive good days before ``as_of``.

    Walks back from yesterday (today is still in progress). Rest days are
    passed over without counting. A day with no tasks at all ends the
    streak, as does a day below the completion threshold.
    """
    streak = 0
    check = as_of - timedelta(days=1)
    for _ in range(MAX_STREAK_DAYS):
        if weekday_index(check) == rest_day_index:
            check -= timedelta(days=1)
            continue

        day = days.get(check)
        if day is None or day.total == 0:
            break
        if day.ratio < STREAK_THRESHOLD:
            break

        streak += 1
        check -= timedelta(days=1)
    return streak


def average_rate(series: list[DayStats]) -> int:
    """Mean daily rate over days that had tasks; empty days are left out."""
    rates = [day.rate for day in series if day.total > 0]
    return math.floor(sum(rates) / len(rates) + 0.5) if rates else 0


def weekly_series(days: dict[date, DayStats], as_of: date) -> list[WeekStats]:
    """Four 7-day buckets, oldest first; the last one ends at ``as_of``."""
    weeks = []
    for w in range(WEEKS - 1, -1, -1):
        end = as_of - timedelta(days=w * 7)
        start = end - timedelta(days=6)
        completed = active = 0
        for i in range(7):
            day = days.get(start + timedelta(days=i))
            if day is not None:
                completed += day.completed
                active += day.active
        weeks.append(
            WeekStats(
                label=f"W{WEEKS - w}",
                start=start,
                end=end,
                completed=completed,
                active=active,
            )
        )
    return weeks


def compute_analytics(store: TrackerStore, user_id: int | None, as_of: date) -> Analytics:
    """Build the analytics for the window ending at ``as_of``.

    Raises ProfileNotFound if the user has no profile (the rest day is
    needed for the streak).
    """
    user_id = require_user(user_id)
    profile: Profile | None = store.get_profile(user_id)
    if profile is None:
        raise ProfileNotFound(user_id)

    # The streak may reach further back than the 30-day window.
    history_start = as_of - timedelta(days=MAX_STREAK_DAYS + 1)
    rows = store.list_instances_in_range(user_id, history_start, as_of)
    days = tally_by_date(rows)

    series = daily_series(days, as_of)
    result = Analytics(
        streak=compute_streak(days, as_of, profile.rest_day_index),
        total_completed=sum(day.completed for day in series),
        average_rate=average_rate(series),
        daily_series=series,
        weekly_series=weekly_series(days, as_of),
    )
    logger.debug(
        "Analytics for user %d as of %s: streak=%d avg=%d%%",
        user_id, as_of.isoformat(), result.streak, result.average_rate,
    )
    return result
