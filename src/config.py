"""
Roam — Centralized configuration.

Loads all settings from .env and validates them.
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

    # SQLite
    DATABASE_PATH: str = "data/roam.db"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Task → calendar sync
    OPERATIONS_SOURCE_NAME: str = "Operations"
    TASK_EVENT_START_HOUR: int = 9
    TASK_EVENT_DURATION_MINUTES: int = 60

    # Task filter
    MAX_SEARCH_QUERY_LENGTH: int = 500

    @field_validator(
        "TASK_EVENT_START_HOUR",
        "TASK_EVENT_DURATION_MINUTES",
        "MAX_SEARCH_QUERY_LENGTH",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


def _load_settings() -> Settings:
    """Load settings from environment, validating ranges."""
    start_hour = os.getenv("TASK_EVENT_START_HOUR", "9")
    if not start_hour.isdigit() or not 0 <= int(start_hour) <= 23:
        print("ERROR: TASK_EVENT_START_HOUR must be an hour between 0 and 23", file=sys.stderr)
        sys.exit(1)

    duration = os.getenv("TASK_EVENT_DURATION_MINUTES", "60")
    if not duration.isdigit() or int(duration) < 1:
        print("ERROR: TASK_EVENT_DURATION_MINUTES must be a positive number of minutes",
              file=sys.stderr)
        sys.exit(1)

    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/roam.db"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        OPERATIONS_SOURCE_NAME=os.getenv("OPERATIONS_SOURCE_NAME", "Operations"),
        TASK_EVENT_START_HOUR=start_hour,
        TASK_EVENT_DURATION_MINUTES=duration,
        MAX_SEARCH_QUERY_LENGTH=os.getenv("MAX_SEARCH_QUERY_LENGTH", "500"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
