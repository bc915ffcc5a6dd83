"""
Routine Tracker — Data Models.

Profiles, categories, routine templates and the dated task instances
generated from them. Everything is scoped to a single Telegram user id.

Frequency rules are a tagged variant keyed by ``frequency_type``: each
variant carries only its own fields and is validated when it is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import ValidationError

WEEKDAYS = (1, 2, 3, 4, 5)  # Monday..Friday, with 0 = Sunday


class TimeSlot(str, Enum):
    PRE_WORK = "pre_work"
    DURING_WORK = "during_work"
    POST_WORK = "post_work"
    ANYTIME = "anytime"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# Display order of slots within a day
SLOT_ORDER = {slot: i for i, slot in enumerate(TimeSlot)}


# ---------------------------------------------------------------------------
# Frequency rules
# ---------------------------------------------------------------------------


class DailyFrequency(BaseModel):
    """Fires every day."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    frequency_type: Literal["daily"] = "daily"


class WeeklyFrequency(BaseModel):
    """Fires on the listed weekdays (0 = Sunday ... 6 = Saturday)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    frequency_type: Literal["weekly"] = "weekly"
    days: tuple[int, ...] = WEEKDAYS

    @field_validator("days")
    @classmethod
    def check_days(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if not v:
            raise ValueError("at least one weekday is required")
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"weekday {day} is outside 0-6")
        return tuple(sorted(set(v)))


class IntervalFrequency(BaseModel):
    """Fires every ``every_n_days`` days counted from ``anchor_date``.

    Without an anchor the rule fires every day.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    frequency_type: Literal["interval"] = "interval"
    every_n_days: int = Field(default=1, ge=1)
    anchor_date: date | None = None


class MonthlyFrequency(BaseModel):
    """Fires once a month; days past the month's end clamp to its last day."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    frequency_type: Literal["monthly"] = "monthly"
    day_of_month: int = Field(default=1, ge=1, le=31)


Frequency = Annotated[
    Union[DailyFrequency, WeeklyFrequency, IntervalFrequency, MonthlyFrequency],
    Field(discriminator="frequency_type"),
]

FREQUENCY_TYPES = ("daily", "weekly", "interval", "monthly")

_frequency_adapter: TypeAdapter[Frequency] = TypeAdapter(Frequency)


def parse_frequency(frequency_type: str, config: dict[str, Any] | None = None) -> Frequency:
    """Build the frequency variant for ``frequency_type`` from a loose config dict.

    Absent fields take their defaults. Unknown types, unknown fields and
    out-of-range values raise ValidationError.
    """
    payload = dict(config or {})
    payload["frequency_type"] = frequency_type
    try:
        return _frequency_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(
            f"Invalid frequency_config for {frequency_type!r}: {problems}"
        ) from exc


def frequency_config(frequency: Frequency) -> dict[str, Any]:
    """Return the JSON-ready config dict of a frequency (without its tag)."""
    return frequency.model_dump(mode="json", exclude={"frequency_type"}, exclude_none=True)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Profile:
    """Per-user settings created at onboarding."""

    user_id: int
    display_name: str
    work_start: str                # "HH:MM"
    work_end: str                  # "HH:MM"
    rest_day_index: int            # 0 = Sunday
    strict_mode: bool
    timezone: str
    onboarding_completed: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Category:
    """A user-defined label for grouping routines."""

    id: int
    user_id: int
    name: str
    color: str                     # "#RRGGBB"
    icon: str | None = None
    sort_order: int = 0
    is_default: bool = False
    created_at: str = ""


@dataclass
class TaskTemplate:
    """A recurring routine that generates dated task instances.

    ``frequency`` is None only when a stored rule could not be parsed;
    such templates never generate.
    """

    id: int
    user_id: int
    title: str
    frequency: Frequency | None
    time_slot: TimeSlot
    category_id: int | None = None
    description: str | None = None
    is_active: bool = True
    created_at: str = ""
    updated_at: str = ""

    @property
    def frequency_type(self) -> str | None:
        return self.frequency.frequency_type if self.frequency is not None else None


@dataclass
class TaskInstance:
    """One concrete task on one day, generated from a template or ad-hoc."""

    user_id: int
    title: str
    scheduled_date: date
    time_slot: TimeSlot
    status: TaskStatus = TaskStatus.PENDING
    is_adhoc: bool = False
    template_id: int | None = None
    completed_at: datetime | None = None
    id: int | None = None
    created_at: str = field(default="")
