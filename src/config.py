"""
Lembra Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram (chat channel + job queue host)
    TELEGRAM_BOT_TOKEN: str
    ALLOWED_USER_IDS: list[int] = []

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "anthropic"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Outbound messaging: "telegram" | "zapi"
    MESSAGING_PROVIDER: str = "telegram"
    ZAPI_INSTANCE_ID: str = ""
    ZAPI_TOKEN: str = ""
    ZAPI_CLIENT_TOKEN: str = ""
    ZAPI_WEBHOOK_PORT: int = 8080     # read-receipt webhook, zapi only
    ZAPI_WEBHOOK_TOKEN: str = ""      # empty → webhook accepts any caller

    # SQLite
    DATABASE_PATH: str = "data/lembra.db"

    # Google Maps Distance Matrix (optional, travel-aware reminders)
    GOOGLE_MAPS_API_KEY: str = ""

    # Periodic jobs
    REMINDER_INTERVAL_MINUTES: int = 5
    MORNING_AGENDA_HOUR: int = 7
    WEEKLY_SUMMARY_WEEKDAY: int = 0   # 0 = Sunday
    WEEKLY_SUMMARY_HOUR: int = 19
    FOLLOWUP_BATCH_SIZE: int = 50

    # Anti-spam gate
    CRITICAL_REMINDER_KINDS: list[str] = ["1h", "0min", "30min_checklist"]
    ANTISPAM_BLOCK_MINUTES: int = 120
    ANTISPAM_FAILOPEN_MINUTES: int = 360

    # External calls / replies
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 15.0
    REPLY_MAX_CHARS: int = 200
    REPLY_MAX_CHARS_WITH_IMAGE: int = 350

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("CRITICAL_REMINDER_KINDS", mode="before")
    @classmethod
    def parse_kinds(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, list):
            return v
        return [k.strip() for k in v.split(",") if k.strip()]

    @field_validator(
        "REMINDER_INTERVAL_MINUTES",
        "MORNING_AGENDA_HOUR",
        "WEEKLY_SUMMARY_WEEKDAY",
        "WEEKLY_SUMMARY_HOUR",
        "ZAPI_WEBHOOK_PORT",
        "FOLLOWUP_BATCH_SIZE",
        "ANTISPAM_BLOCK_MINUTES",
        "ANTISPAM_FAILOPEN_MINUTES",
        "REPLY_MAX_CHARS",
        "REPLY_MAX_CHARS_WITH_IMAGE",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "anthropic"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        MESSAGING_PROVIDER=os.getenv("MESSAGING_PROVIDER", "telegram"),
        ZAPI_INSTANCE_ID=os.getenv("ZAPI_INSTANCE_ID", ""),
        ZAPI_TOKEN=os.getenv("ZAPI_TOKEN", ""),
        ZAPI_CLIENT_TOKEN=os.getenv("ZAPI_CLIENT_TOKEN", ""),
        ZAPI_WEBHOOK_PORT=os.getenv("ZAPI_WEBHOOK_PORT", "8080"),
        ZAPI_WEBHOOK_TOKEN=os.getenv("ZAPI_WEBHOOK_TOKEN", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/lembra.db"),
        GOOGLE_MAPS_API_KEY=os.getenv("GOOGLE_MAPS_API_KEY", ""),
        REMINDER_INTERVAL_MINUTES=os.getenv("REMINDER_INTERVAL_MINUTES", "5"),
        MORNING_AGENDA_HOUR=os.getenv("MORNING_AGENDA_HOUR", "7"),
        WEEKLY_SUMMARY_WEEKDAY=os.getenv("WEEKLY_SUMMARY_WEEKDAY", "0"),
        WEEKLY_SUMMARY_HOUR=os.getenv("WEEKLY_SUMMARY_HOUR", "19"),
        FOLLOWUP_BATCH_SIZE=os.getenv("FOLLOWUP_BATCH_SIZE", "50"),
        CRITICAL_REMINDER_KINDS=os.getenv("CRITICAL_REMINDER_KINDS", "1h,0min,30min_checklist"),
        ANTISPAM_BLOCK_MINUTES=os.getenv("ANTISPAM_BLOCK_MINUTES", "120"),
        ANTISPAM_FAILOPEN_MINUTES=os.getenv("ANTISPAM_FAILOPEN_MINUTES", "360"),
        EXTERNAL_CALL_TIMEOUT_SECONDS=float(os.getenv("EXTERNAL_CALL_TIMEOUT_SECONDS", "15")),
        REPLY_MAX_CHARS=os.getenv("REPLY_MAX_CHARS", "200"),
        REPLY_MAX_CHARS_WITH_IMAGE=os.getenv("REPLY_MAX_CHARS_WITH_IMAGE", "350"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
