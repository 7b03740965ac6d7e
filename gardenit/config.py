"""
Gardenit Notifications — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from gardenit/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram: push transport and the job queue that drives ticks
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/gardenit.db"

    # Fallback when neither the preference nor the user carries a timezone
    DEFAULT_TIMEZONE: str = "UTC"

    # Scheduling. Schedules match to the minute, so ticks must not be sparser.
    TICK_INTERVAL_SECONDS: int = 60
    DELIVERY_LEASE_SECONDS: int = 300
    DEFAULT_THROTTLE_SECS: int = 21600
    NOTIFICATION_RETENTION_DAYS: int = 30

    # Weather
    OPEN_METEO_BASE_URL: str = "https://api.open-meteo.com/v1/forecast"

    # Email (optional; the email channel is skipped when SMTP_HOST is empty)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "Gardenit <no-reply@gardenit.app>"

    @field_validator(
        "TICK_INTERVAL_SECONDS",
        "DELIVERY_LEASE_SECONDS",
        "DEFAULT_THROTTLE_SECS",
        "NOTIFICATION_RETENTION_DAYS",
        "SMTP_PORT",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("TICK_INTERVAL_SECONDS")
    @classmethod
    def check_tick_interval(cls, v: int) -> int:
        if not 1 <= v <= 60:
            raise ValueError("TICK_INTERVAL_SECONDS must be between 1 and 60")
        return v

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v!r}") from exc
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/gardenit.db"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "UTC"),
        TICK_INTERVAL_SECONDS=os.getenv("TICK_INTERVAL_SECONDS", "60"),
        DELIVERY_LEASE_SECONDS=os.getenv("DELIVERY_LEASE_SECONDS", "300"),
        DEFAULT_THROTTLE_SECS=os.getenv("DEFAULT_THROTTLE_SECS", "21600"),
        NOTIFICATION_RETENTION_DAYS=os.getenv("NOTIFICATION_RETENTION_DAYS", "30"),
        OPEN_METEO_BASE_URL=os.getenv(
            "OPEN_METEO_BASE_URL", "https://api.open-meteo.com/v1/forecast",
        ),
        SMTP_HOST=os.getenv("SMTP_HOST", ""),
        SMTP_PORT=os.getenv("SMTP_PORT", "587"),
        SMTP_USERNAME=os.getenv("SMTP_USERNAME", ""),
        SMTP_PASSWORD=os.getenv("SMTP_PASSWORD", ""),
        EMAIL_FROM=os.getenv("EMAIL_FROM", "Gardenit <no-reply@gardenit.app>"),
    )


# Singleton, imported by all other modules as:
#   from gardenit.config import settings
settings = _load_settings()
