"""
LifeSync Reminders — Centralized configuration.

Loads all settings from .env and validates them.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
from datetime import time
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (chat-bot channel; only the headless process needs it)
    TELEGRAM_BOT_TOKEN: str = ""

    # Operators allowed to query /status (heartbeat, recent errors)
    OPERATOR_CHAT_IDS: list[int] = []

    # SQLite household store
    DATABASE_PATH: str = "data/lifesync.db"

    # Households without a timezone fall back to this one
    DEFAULT_TIMEZONE: str = "Europe/Paris"

    # Tick cadence (seconds)
    HEADLESS_TICK_SECONDS: int = 60
    FOREGROUND_TICK_SECONDS: int = 10

    # Catch-up radius (minutes) per obligation class
    LOOKBACK_MINUTES_DEFAULT: int = 120
    LOOKBACK_MINUTES_MEDICATION: int = 60

    # Household alerts for incomplete medications / chores (local time)
    ESCALATION_TIMES: list[time] = [time(18, 0), time(21, 0)]
    ESCALATION_NOTIFY_ASSIGNEE: bool = True

    # Date-only chores and charges are due at this local time
    DEFAULT_DUE_TIME: time = time(9, 0)

    # Per-send bound so a hung channel never blocks the next tick
    SEND_TIMEOUT_SECONDS: float = 10.0

    # Foreground watcher dedup state (one file per member session)
    SESSION_STATE_DIR: str = "data/sessions"

    SCHEDULER_VERSION: str = "0.9.0"

    @field_validator("OPERATOR_CHAT_IDS", mode="before")
    @classmethod
    def parse_chat_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("ESCALATION_TIMES", mode="before")
    @classmethod
    def parse_escalation_times(cls, v: str | list) -> list:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [_parse_hhmm(part) for part in v.split(",") if part.strip()]
        return []

    @field_validator("DEFAULT_DUE_TIME", mode="before")
    @classmethod
    def parse_due_time(cls, v: str | time) -> time:
        if isinstance(v, str):
            return _parse_hhmm(v)
        return v

    @field_validator(
        "HEADLESS_TICK_SECONDS",
        "FOREGROUND_TICK_SECONDS",
        "LOOKBACK_MINUTES_DEFAULT",
        "LOOKBACK_MINUTES_MEDICATION",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"must be positive, got {value}")
        return value

    @field_validator("ESCALATION_NOTIFY_ASSIGNEE", mode="before")
    @classmethod
    def parse_bool(cls, v: str | bool) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("1", "true", "yes", "on")
        return bool(v)


def _parse_hhmm(raw: str) -> time:
    hour, minute = raw.strip().split(":")
    return time(int(hour), int(minute))


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM_BOT_TOKEN=os.getenv("TELEGRAM_BOT_TOKEN", ""),
        OPERATOR_CHAT_IDS=os.getenv("OPERATOR_CHAT_IDS", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/lifesync.db"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "Europe/Paris"),
        HEADLESS_TICK_SECONDS=os.getenv("HEADLESS_TICK_SECONDS", "60"),
        FOREGROUND_TICK_SECONDS=os.getenv("FOREGROUND_TICK_SECONDS", "10"),
        LOOKBACK_MINUTES_DEFAULT=os.getenv("LOOKBACK_MINUTES_DEFAULT", "120"),
        LOOKBACK_MINUTES_MEDICATION=os.getenv("LOOKBACK_MINUTES_MEDICATION", "60"),
        ESCALATION_TIMES=os.getenv("ESCALATION_TIMES", "18:00,21:00"),
        ESCALATION_NOTIFY_ASSIGNEE=os.getenv("ESCALATION_NOTIFY_ASSIGNEE", "true"),
        DEFAULT_DUE_TIME=os.getenv("DEFAULT_DUE_TIME", "09:00"),
        SEND_TIMEOUT_SECONDS=float(os.getenv("SEND_TIMEOUT_SECONDS", "10")),
        SESSION_STATE_DIR=os.getenv("SESSION_STATE_DIR", "data/sessions"),
        SCHEDULER_VERSION=os.getenv("SCHEDULER_VERSION", "0.9.0"),
    )


# Singleton — imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
