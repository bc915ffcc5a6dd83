"""
Routine Tracker — Daily generation job.

Shortly after midnight, materializes each onboarded user's tasks for their
local "today". The job only writes tasks; it sends no messages.

This is the only place besides the bot that reads the wall clock. Core
operations always receive their date from here or from the bot.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.config import settings
from src.core.errors import TrackerError
from src.core.generation import generate_for_date
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.ports.store_port import TrackerStore

logger = logging.getLogger(__name__)


def local_now(tz_name: str | None = None) -> datetime:
    """Current time in ``tz_name`` (falls back to the configured TIMEZONE)."""
    try:
        tz = ZoneInfo(tz_name or settings.TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", tz_name, settings.TIMEZONE)
        tz = ZoneInfo(settings.TIMEZONE)
    return datetime.now(tz)


def local_today(tz_name: str | None = None) -> date:
    return local_now(tz_name).date()


def run_daily_generation(store: TrackerStore) -> dict[int, int]:
    """Generate today's tasks for every onboarded user.

    Each user's "today" is taken in their profile's timezone. A failure for
    one user is logged and the rest still run.

    Returns {user_id: tasks created} for the users that succeeded.
    """
    results: dict[int, int] = {}
    try:
        profiles = store.list_profiles(onboarded_only=True)
    except StoreError as exc:
        logger.error("Daily generation: could not list profiles: %s", exc)
        return results

    for profile in profiles:
        today = local_today(profile.timezone)
        try:
            results[profile.user_id] = generate_for_date(store, profile.user_id, today)
        except (TrackerError, StoreError) as exc:
            logger.error(
                "Daily generation failed for user %d on %s: %s",
                profile.user_id, today.isoformat(), exc,
            )

    logger.info(
        "Daily generation done: %d task(s) for %d/%d user(s)",
        sum(results.values()), len(results), len(profiles),
    )
    return results
