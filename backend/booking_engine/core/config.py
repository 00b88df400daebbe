# backend/booking_engine/core/config.py
"""
Runtime configuration for the booking engine.

Values come from environment variables (case-insensitive) and an optional
backend/.env file. CI runs never read the .env file.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_BACKEND_ROOT = Path(__file__).resolve().parents[2]

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = "development"

    # Database
    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'booking_engine.db'}",
        description="SQLAlchemy URL for the booking database",
    )
    database_echo: bool = False

    # Cache (None keeps everything in the in-process fallback)
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the slot cache; omit to use in-memory caching",
    )
    venue_slots_ttl_seconds: int = 600
    service_slots_ttl_seconds: int = 300

    # Slot computation
    slot_grid_minutes: int = Field(default=30, description="Stride of the venue slot grid")
    default_event_duration_minutes: int = 240
    max_slot_query_days: int = Field(
        default=92,
        description="Longest date range a single slot query may span",
    )
    reschedule_search_days_before: int = 3
    reschedule_search_days_after: int = 7

    # Capacity
    default_slot_capacity: int = 1
    capacity_cleanup_days: int = 30
    nearly_full_threshold: float = 80.0

    # Validation defaults used when a service leaves them unset
    default_min_advance_booking_hours: int = 24
    default_max_advance_booking_days: int = 365

    # Monitoring
    slow_operation_threshold_seconds: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("slot_grid_minutes", "max_slot_query_days", "default_slot_capacity")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


settings = Settings()
