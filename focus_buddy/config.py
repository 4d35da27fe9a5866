"""
Focus Buddy — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import calendar
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

# Load .env from project root (one level up from focus_buddy/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_WEEKDAY_NAMES = {
    "monday": calendar.MONDAY,
    "tuesday": calendar.TUESDAY,
    "wednesday": calendar.WEDNESDAY,
    "thursday": calendar.THURSDAY,
    "friday": calendar.FRIDAY,
    "saturday": calendar.SATURDAY,
    "sunday": calendar.SUNDAY,
}


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Store provider: "sqlite" | "postgrest"
    STORE_PROVIDER: str = "sqlite"

    # SQLite (only needed when STORE_PROVIDER=sqlite)
    DATABASE_PATH: str = "data/focus_buddy.db"

    # Hosted backend (only needed when STORE_PROVIDER=postgrest)
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_ACCESS_TOKEN: str = ""

    # Signed-in user; records are created under this owner id
    OWNER_ID: str = ""

    # Calendar
    TIMEZONE: str = "Asia/Seoul"
    WEEK_STARTS_ON: int = calendar.SUNDAY
    MAX_RECURRENCE_STEPS: int = 365

    # Calendar grid
    SNAP_MINUTES: int = 15
    MIN_EVENT_MINUTES: int = 20
    LATEST_END_TIME: str = "23:30"

    # Network
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    # Hosted backend: seconds between checks for other clients' changes, 0 disables
    POLL_INTERVAL_SECONDS: float = 15.0

    LOG_LEVEL: str = "INFO"

    @field_validator("STORE_PROVIDER", mode="before")
    @classmethod
    def parse_provider(cls, v: str) -> str:
        provider = (v or "sqlite").strip().lower()
        if provider not in ("sqlite", "postgrest"):
            raise ValueError(f"Unknown STORE_PROVIDER: {provider!r}")
        return provider

    @field_validator("WEEK_STARTS_ON", mode="before")
    @classmethod
    def parse_week_start(cls, v: str | int) -> int:
        if isinstance(v, str) and v.strip().lower() in _WEEKDAY_NAMES:
            return _WEEKDAY_NAMES[v.strip().lower()]
        day = int(v)
        if not 0 <= day <= 6:
            raise ValueError(f"WEEK_STARTS_ON out of range: {day}")
        return day

    @field_validator("SNAP_MINUTES", "MIN_EVENT_MINUTES", "MAX_RECURRENCE_STEPS", mode="before")
    @classmethod
    def parse_positive(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be positive, got {value}")
        return value

    @field_validator("POLL_INTERVAL_SECONDS", mode="before")
    @classmethod
    def parse_poll_interval(cls, v: str | float) -> float:
        value = float(v)
        if value < 0:
            raise ValueError(f"POLL_INTERVAL_SECONDS must not be negative, got {value}")
        return value

    @field_validator("LATEST_END_TIME")
    @classmethod
    def parse_latest_end(cls, v: str) -> str:
        hour, _, minute = v.partition(":")
        if not (hour.isdigit() and minute.isdigit()
                and 0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
            raise ValueError(f"LATEST_END_TIME must be HH:MM, got {v!r}")
        return f"{int(hour):02d}:{int(minute):02d}"


def _load_settings() -> Settings:
    """Load settings from environment, exiting on invalid values."""
    try:
        return Settings(
            STORE_PROVIDER=os.getenv("STORE_PROVIDER", "sqlite"),
            DATABASE_PATH=os.getenv("DATABASE_PATH", "data/focus_buddy.db"),
            SUPABASE_URL=os.getenv("SUPABASE_URL", ""),
            SUPABASE_KEY=os.getenv("SUPABASE_KEY", ""),
            SUPABASE_ACCESS_TOKEN=os.getenv("SUPABASE_ACCESS_TOKEN", ""),
            OWNER_ID=os.getenv("OWNER_ID", ""),
            TIMEZONE=os.getenv("TIMEZONE", "Asia/Seoul"),
            WEEK_STARTS_ON=os.getenv("WEEK_STARTS_ON", str(calendar.SUNDAY)),
            MAX_RECURRENCE_STEPS=os.getenv("MAX_RECURRENCE_STEPS", "365"),
            SNAP_MINUTES=os.getenv("SNAP_MINUTES", "15"),
            MIN_EVENT_MINUTES=os.getenv("MIN_EVENT_MINUTES", "20"),
            LATEST_END_TIME=os.getenv("LATEST_END_TIME", "23:30"),
            REQUEST_TIMEOUT_SECONDS=os.getenv("REQUEST_TIMEOUT_SECONDS", "10"),
            POLL_INTERVAL_SECONDS=os.getenv("POLL_INTERVAL_SECONDS", "15"),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )
    except ValidationError as exc:
        print(f"ERROR: invalid configuration in .env:\n{exc}", file=sys.stderr)
        sys.exit(1)


# Singleton — imported by all other modules as:
#   from focus_buddy.config import settings
settings = _load_settings()
