"""
Routine Tracker — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/routines.db"

    # Security
    ALLOWED_USER_IDS: list[int] = []

    # Day boundaries are computed in this timezone unless a profile overrides it
    TIMEZONE: str = "Asia/Bangkok"

    # Daily task generation job
    DAILY_GENERATION_HOUR: int = 0
    DAILY_GENERATION_MINUTE: int = 5

    # Onboarding defaults
    DEFAULT_WORK_START: str = "09:00"
    DEFAULT_WORK_END: str = "18:00"
    DEFAULT_REST_DAY: int = 0

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator(
        "DAILY_GENERATION_HOUR", "DAILY_GENERATION_MINUTE", "DEFAULT_REST_DAY",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("DEFAULT_REST_DAY")
    @classmethod
    def check_rest_day(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError("DEFAULT_REST_DAY must be between 0 and 6")
        return v

    @field_validator("DEFAULT_WORK_START", "DEFAULT_WORK_END")
    @classmethod
    def check_clock(cls, v: str) -> str:
        if not _HHMM_RE.match(v):
            raise ValueError(f"Expected HH:MM, got {v!r}")
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/routines.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Bangkok"),
        DAILY_GENERATION_HOUR=os.getenv("DAILY_GENERATION_HOUR", "0"),
        DAILY_GENERATION_MINUTE=os.getenv("DAILY_GENERATION_MINUTE", "5"),
        DEFAULT_WORK_START=os.getenv("DEFAULT_WORK_START", "09:00"),
        DEFAULT_WORK_END=os.getenv("DEFAULT_WORK_END", "18:00"),
        DEFAULT_REST_DAY=os.getenv("DEFAULT_REST_DAY", "0"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
