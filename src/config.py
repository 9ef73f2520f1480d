"""
Discipline Coach — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator, model_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

MIN_UTC_OFFSET_MINUTES = -720   # UTC-12:00
MAX_UTC_OFFSET_MINUTES = 840    # UTC+14:00


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    WEBHOOK_PATH: str = "/webhook"
    WEBHOOK_URL: str = ""        # public base URL; empty → webhook registered elsewhere

    # LLM — provider-agnostic (openai, gemini, anthropic, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Trigger surface
    CRON_SECRET: str
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # SQLite
    DATABASE_PATH: str = "data/coach.db"

    # Daily budgets
    AI_DAILY_LIMIT: int = 20
    STUCK_DAILY_LIMIT: int = 5
    SUCCESS_THRESHOLD: float = 0.7

    # Sweep windows (minutes). Reminder window is ahead of the task,
    # feedback window is after it.
    SWEEP_INTERVAL_MINUTES: int = 5
    REMINDER_LEAD_MIN: int = 8
    REMINDER_LEAD_MAX: int = 22
    FEEDBACK_DELAY_MIN: int = 3
    FEEDBACK_DELAY_MAX: int = 25

    # Once-daily triggers, in the user's local time
    MORNING_HOUR: int = 7
    PLANNING_HOUR: int = 21
    SUMMARY_HOUR: int = 23
    DAILY_SLOT_MINUTES: int = 180

    DEFAULT_UTC_OFFSET_MINUTES: int = 0

    @field_validator(
        "PORT", "AI_DAILY_LIMIT", "STUCK_DAILY_LIMIT", "SWEEP_INTERVAL_MINUTES",
        "REMINDER_LEAD_MIN", "REMINDER_LEAD_MAX", "FEEDBACK_DELAY_MIN",
        "FEEDBACK_DELAY_MAX", "MORNING_HOUR", "PLANNING_HOUR", "SUMMARY_HOUR",
        "DAILY_SLOT_MINUTES", "DEFAULT_UTC_OFFSET_MINUTES",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("SUCCESS_THRESHOLD", mode="before")
    @classmethod
    def parse_threshold(cls, v: str | float) -> float:
        value = float(v)
        if not 0 < value <= 1:
            raise ValueError(f"SUCCESS_THRESHOLD must be in (0, 1], got {value}")
        return value

    @field_validator("MORNING_HOUR", "PLANNING_HOUR", "SUMMARY_HOUR")
    @classmethod
    def check_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"Hour out of range: {v}")
        return v

    @field_validator("DEFAULT_UTC_OFFSET_MINUTES")
    @classmethod
    def check_offset(cls, v: int) -> int:
        if not MIN_UTC_OFFSET_MINUTES <= v <= MAX_UTC_OFFSET_MINUTES:
            raise ValueError(f"UTC offset out of range: {v}")
        return v

    @model_validator(mode="after")
    def check_windows(self) -> Settings:
        """Each window must be wider than the sweep cadence, and the feedback
        window must open only after the reminder window has closed."""
        if self.REMINDER_LEAD_MIN < 0 or self.FEEDBACK_DELAY_MIN < 0:
            raise ValueError("Window bounds must be non-negative")
        cadence = self.SWEEP_INTERVAL_MINUTES
        if self.REMINDER_LEAD_MAX - self.REMINDER_LEAD_MIN <= cadence:
            raise ValueError("Reminder window must be wider than the sweep interval")
        if self.FEEDBACK_DELAY_MAX - self.FEEDBACK_DELAY_MIN <= cadence:
            raise ValueError("Feedback window must be wider than the sweep interval")
        if -self.REMINDER_LEAD_MIN >= self.FEEDBACK_DELAY_MIN:
            raise ValueError("Feedback window must start after the reminder window ends")
        return self


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")
    cron_secret = os.getenv("CRON_SECRET", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not cron_secret or cron_secret.startswith("your-"):
        print("ERROR: CRON_SECRET is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        WEBHOOK_PATH=os.getenv("WEBHOOK_PATH", "/webhook"),
        WEBHOOK_URL=os.getenv("WEBHOOK_URL", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        CRON_SECRET=cron_secret,
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8000"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/coach.db"),
        AI_DAILY_LIMIT=os.getenv("AI_DAILY_LIMIT", "20"),
        STUCK_DAILY_LIMIT=os.getenv("STUCK_DAILY_LIMIT", "5"),
        SUCCESS_THRESHOLD=os.getenv("SUCCESS_THRESHOLD", "0.7"),
        SWEEP_INTERVAL_MINUTES=os.getenv("SWEEP_INTERVAL_MINUTES", "5"),
        REMINDER_LEAD_MIN=os.getenv("REMINDER_LEAD_MIN", "8"),
        REMINDER_LEAD_MAX=os.getenv("REMINDER_LEAD_MAX", "22"),
        FEEDBACK_DELAY_MIN=os.getenv("FEEDBACK_DELAY_MIN", "3"),
        FEEDBACK_DELAY_MAX=os.getenv("FEEDBACK_DELAY_MAX", "25"),
        MORNING_HOUR=os.getenv("MORNING_HOUR", "7"),
        PLANNING_HOUR=os.getenv("PLANNING_HOUR", "21"),
        SUMMARY_HOUR=os.getenv("SUMMARY_HOUR", "23"),
        DAILY_SLOT_MINUTES=os.getenv("DAILY_SLOT_MINUTES", "180"),
        DEFAULT_UTC_OFFSET_MINUTES=os.getenv("DEFAULT_UTC_OFFSET_MINUTES", "0"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
