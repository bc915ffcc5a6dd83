"""Recurrence evaluator — pure business logic.

Decides whether a routine template fires on a given calendar day for a
given profile. No I/O and no clock: the caller supplies the date.

Weekday indices are 0-6 with 0 = Sunday everywhere in the project
(rest day, weekly rules and streak walking all use ``weekday_index``).
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta

from src.data.models import (
    DailyFrequency,
    IntervalFrequency,
    MonthlyFrequency,
    Profile,
    TaskTemplate,
    WeeklyFrequency,
)

logger = logging.getLogger(__name__)


def weekday_index(d: date) -> int:
    """Return the weekday of ``d`` as 0-6 with 0 = Sunday."""
    return (d.weekday() + 1) % 7


def last_day_of_month(d: date) -> int:
    return calendar.monthrange(d.year, d.month)[1]


def is_rest_day(d: date, profile: Profile) -> bool:
    return weekday_index(d) == profile.rest_day_index


def should_generate(template: TaskTemplate, target_date: date, profile: Profile) -> bool:
    """Return True if ``template`` should produce a task on ``target_date``.

    In strict mode nothing is generated on the profile's rest day,
    whatever the frequency rule says.
    """
    if profile.strict_mode and is_rest_day(target_date, profile):
        return False

    freq = template.frequency

    if isinstance(freq, DailyFrequency):
        return True

    if isinstance(freq, WeeklyFrequency):
        return weekday_index(target_date) in freq.days

    if isinstance(freq, IntervalFrequency):
        if freq.anchor_date is None:
            return True
        diff_days = (target_date - freq.anchor_date).days
        return diff_days >= 0 and diff_days % freq.every_n_days == 0

    if isinstance(freq, MonthlyFrequency):
        effective = min(freq.day_of_month, last_day_of_month(target_date))
        return target_date.day == effective

    logger.warning(
        "Routine #%s has unknown frequency %r; not generating",
        template.id, template.frequency_type,
    )
    return False


def matching_dates(
    template: TaskTemplate, profile: Profile, start: date, end: date,
) -> list[date]:
    """List the dates in [start, end] on which ``template`` fires."""
    dates: list[date] = []
    d = start
    while d <= end:
        if should_generate(template, d, profile):
            dates.append(d)
        d += timedelta(days=1)
    return dates
