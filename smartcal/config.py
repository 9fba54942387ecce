"""
Smart Calendar — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from smartcal/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (chat channel: inbound messages + digest delivery)
    TELEGRAM_BOT_TOKEN: str

    # Calendar convention
    TIMEZONE: str = "Asia/Kolkata"
    DAY_ROLLOVER_HOUR: int = 5   # local times before this hour belong to "yesterday"

    # SQLite
    DATABASE_PATH: str = "data/smartcal.db"

    # Daily digest
    DIGEST_HOUR: int = 19
    DIGEST_WINDOW_MINUTES: int = 5
    DIGEST_HORIZON_DAYS: int = 7
    WORKER_INTERVAL_SECONDS: int = 60

    # Per-event chat reminders (timed events only)
    REMINDER_LEAD_MINUTES: int = 30
    REMINDER_INTERVAL_SECONDS: int = 60
    REMINDER_BATCH_SIZE: int = 20

    # Email channel via Resend (digest email is disabled when the key is empty)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Smart Calendar <noreply@smartcal.local>"

    # Inbound rate limiting (per sender address, fixed window)
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    @field_validator("DAY_ROLLOVER_HOUR", "DIGEST_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {hour}")
        return hour

    @field_validator(
        "DIGEST_WINDOW_MINUTES",
        "DIGEST_HORIZON_DAYS",
        "WORKER_INTERVAL_SECONDS",
        "REMINDER_LEAD_MINUTES",
        "REMINDER_INTERVAL_SECONDS",
        "REMINDER_BATCH_SIZE",
        "RATE_LIMIT_MAX_REQUESTS",
        "RATE_LIMIT_WINDOW_SECONDS",
        mode="before",
    )
    @classmethod
    def parse_non_negative(cls, v: str | int) -> int:
        value = int(v)
        if value < 0:
            raise ValueError(f"value must be non-negative, got {value}")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        TIMEZONE=os.getenv("TIMEZONE", "Asia/Kolkata"),
        DAY_ROLLOVER_HOUR=os.getenv("DAY_ROLLOVER_HOUR", "5"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/smartcal.db"),
        DIGEST_HOUR=os.getenv("DIGEST_HOUR", "19"),
        DIGEST_WINDOW_MINUTES=os.getenv("DIGEST_WINDOW_MINUTES", "5"),
        DIGEST_HORIZON_DAYS=os.getenv("DIGEST_HORIZON_DAYS", "7"),
        WORKER_INTERVAL_SECONDS=os.getenv("WORKER_INTERVAL_SECONDS", "60"),
        REMINDER_LEAD_MINUTES=os.getenv("REMINDER_LEAD_MINUTES", "30"),
        REMINDER_INTERVAL_SECONDS=os.getenv("REMINDER_INTERVAL_SECONDS", "60"),
        REMINDER_BATCH_SIZE=os.getenv("REMINDER_BATCH_SIZE", "20"),
        RESEND_API_KEY=os.getenv("RESEND_API_KEY", ""),
        EMAIL_FROM=os.getenv("EMAIL_FROM", "Smart Calendar <noreply@smartcal.local>"),
        RATE_LIMIT_MAX_REQUESTS=os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"),
        RATE_LIMIT_WINDOW_SECONDS=os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"),
    )


# Singleton — imported by all other modules as:
#   from smartcal.config import settings
settings = _load_settings()
