"""Routine service — onboarding, settings, routines and categories.

Validates user input and writes it to the store. Nothing invalid reaches
the store: every check runs before the first write.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.errors import ProfileNotFound, TemplateNotFound, ValidationError, require_user
from src.core.task_service import parse_time_slot, validate_title
from src.data.models import Category, Profile, TaskTemplate, TimeSlot, parse_frequency
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.data.db import TrackerDB

logger = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

# Default for update arguments that should be left as they are
_UNCHANGED: Any = object()


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def validate_clock(value: str) -> str:
    """Accept "H:MM" or "HH:MM" and return the zero-padded "HH:MM"."""
    value = (value or "").strip()
    if len(value) == 4 and value[1] == ":":
        value = "0" + value
    if not _HHMM_RE.match(value):
        raise ValidationError(f"Expected a time like 09:00, got {value!r}")
    return value


def validate_rest_day(value: int | str) -> int:
    try:
        day = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Rest day must be a number 0-6, got {value!r}") from exc
    if not 0 <= day <= 6:
        raise ValidationError(f"Rest day must be 0-6 (0 = Sunday), got {day}")
    return day


def validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone {value!r}") from exc
    return value


_TRUE_WORDS = {"on", "true", "yes", "1"}
_FALSE_WORDS = {"off", "false", "no", "0"}


def validate_flag(value: bool | str) -> bool:
    """Accept a bool or on/off, true/false, yes/no, 1/0."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValidationError(f"Expected on or off, got {value!r}")


def validate_color(value: str) -> str:
    if not _COLOR_RE.match(value or ""):
        raise ValidationError(f"Colour must look like #22c55e, got {value!r}")
    return value.lower()


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


def complete_onboarding(
    db: TrackerDB,
    user_id: int | None,
    display_name: str,
    work_start: str,
    work_end: str,
    rest_day_index: int,
    strict_mode: bool | str,
    timezone: str,
) -> Profile:
    """Create (or overwrite) the user's profile and seed default categories.

    Failing to seed the categories is logged but does not fail onboarding.
    """
    user_id = require_user(user_id)
    profile = Profile(
        user_id=user_id,
        display_name=(display_name or "").strip() or "User",
        work_start=validate_clock(work_start),
        work_end=validate_clock(work_end),
        rest_day_index=validate_rest_day(rest_day_index),
        strict_mode=validate_flag(strict_mode),
        timezone=validate_timezone(timezone),
        onboarding_completed=True,
    )
    saved = db.upsert_profile(profile)

    try:
        db.seed_default_categories(user_id)
    except StoreError as exc:
        logger.error("Error creating default categories for user %d: %s", user_id, exc)

    return saved


def update_settings(db: TrackerDB, user_id: int | None, **changes: Any) -> Profile:
    """Change profile settings (work hours, rest day, strict mode, timezone)."""
    user_id = require_user(user_id)
    validators = {
        "work_start": validate_clock,
        "work_end": validate_clock,
        "rest_day_index": validate_rest_day,
        "strict_mode": validate_flag,
        "timezone": validate_timezone,
        "display_name": lambda v: (v or "").strip() or "User",
    }
    unknown = set(changes) - set(validators)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    clean = {key: validators[key](value) for key, value in changes.items()}
    profile = db.update_profile(user_id, **clean)
    if profile is None:
        raise ProfileNotFound(user_id)
    return profile


# ---------------------------------------------------------------------------
# Routine templates
# ---------------------------------------------------------------------------


def _check_category(db: TrackerDB, user_id: int, category_id: int | None) -> None:
    if category_id is not None and db.get_category(user_id, category_id) is None:
        raise ValidationError(f"Category {category_id} not found")


def create_template(
    db: TrackerDB,
    user_id: int | None,
    title: str,
    frequency_type: str,
    frequency_config: dict[str, Any] | None = None,
    time_slot: TimeSlot | str = TimeSlot.ANYTIME,
    category_id: int | None = None,
    description: str | None = None,
) -> TaskTemplate:
    """Validate and store a new routine."""
    user_id = require_user(user_id)
    title = validate_title(title)
    frequency = parse_frequency(frequency_type, frequency_config)
    slot = parse_time_slot(time_slot)
    _check_category(db, user_id, category_id)

    return db.add_template(
        user_id,
        title,
        frequency,
        time_slot=slot,
        category_id=category_id,
        description=(description or "").strip() or None,
    )


def update_template(
    db: TrackerDB,
    user_id: int | None,
    template_id: int,
    *,
    title: str | None = None,
    frequency_type: str | None = None,
    frequency_config: dict[str, Any] | None = None,
    time_slot: TimeSlot | str | None = None,
    category_id: int | None = _UNCHANGED,
    description: str | None = None,
) -> TaskTemplate:
    """Edit a routine. Tasks it already generated keep their old title and slot.

    Changing the frequency requires ``frequency_type``; the config is then
    validated against that type as a whole. ``category_id=None`` moves the
    routine back to uncategorized; leaving it out keeps the category.
    """
    user_id = require_user(user_id)
    existing = db.get_template(user_id, template_id)
    if existing is None:
        raise TemplateNotFound(template_id)

    fields: dict[str, Any] = {}
    if title is not None:
        fields["title"] = validate_title(title)
    if frequency_type is not None:
        fields["frequency"] = parse_frequency(frequency_type, frequency_config)
    elif frequency_config is not None:
        if existing.frequency_type is None:
            raise ValidationError("frequency_type is required to repair this routine")
        fields["frequency"] = parse_frequency(existing.frequency_type, frequency_config)
    if time_slot is not None:
        fields["time_slot"] = parse_time_slot(time_slot)
    if category_id is not _UNCHANGED:
        _check_category(db, user_id, category_id)
        fields["category_id"] = category_id
    if description is not None:
        fields["description"] = description.strip() or None

    updated = db.update_template(user_id, template_id, **fields)
    if updated is None:
        raise TemplateNotFound(template_id)
    return updated


def toggle_template(
    db: TrackerDB, user_id: int | None, template_id: int, is_active: bool,
) -> TaskTemplate:
    """Pause or resume a routine. Pausing keeps the tasks already generated."""
    user_id = require_user(user_id)
    updated = db.update_template(user_id, template_id, is_active=is_active)
    if updated is None:
        raise TemplateNotFound(template_id)
    return updated


def delete_template(db: TrackerDB, user_id: int | None, template_id: int) -> None:
    user_id = require_user(user_id)
    if not db.delete_template(user_id, template_id):
        raise TemplateNotFound(template_id)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def create_category(
    db: TrackerDB,
    user_id: int | None,
    name: str,
    color: str = "#6366f1",
    icon: str | None = None,
) -> Category:
    user_id = require_user(user_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name must not be empty")
    color = validate_color(color)
    sort_order = len(db.list_categories(user_id))
    return db.add_category(user_id, name, color=color, icon=icon, sort_order=sort_order)


def delete_category(db: TrackerDB, user_id: int | None, category_id: int) -> bool:
    """Delete a category; routines that used it become uncategorized."""
    user_id = require_user(user_id)
    return db.delete_category(user_id, category_id)


def update_category(
    db: TrackerDB,
    user_id: int | None,
    category_id: int,
    *,
    name: str | None = None,
    color: str | None = None,
) -> Category:
    """Rename or recolour a category."""
    user_id = require_user(user_id)
    fields: dict[str, Any] = {}
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Category name must not be empty")
        fields["name"] = name
    if color is not None:
        fields["color"] = validate_color(color)
    if not fields:
        raise ValidationError("Nothing to change")

    if not db.update_category(user_id, category_id, **fields):
        raise ValidationError(f"Category {category_id} not found")
    return db.get_category(user_id, category_id)
