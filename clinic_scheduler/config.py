"""
Scheduler configuration.

Every tunable policy of the engine lives here so that call sites never carry
their own copy of a threshold. Values come from the environment (prefix
CLINIC_) or an optional .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class SchedulerSettings(BaseSettings):
    """
    Attributes:
        timezone: IANA zone the clinic runs on, independent of the server
        default_consulting_minutes: Slot length when a doctor has none set
        walk_in_reserve_ratio: Share of each session's future slots held for walk-ins
        advance_cutoff_minutes: Advance slots must start strictly later than now + this
        max_transaction_attempts: Optimistic commit attempts before SlotConflict
        retry_backoff_seconds: Linear backoff step between attempts
        rebook_cancelled_slots: If True, Cancelled slots may be booked again
        exclude_break_placeholders: Drop break placeholders from the pace count
    """

    timezone: str = "Asia/Kolkata"
    default_consulting_minutes: int = Field(default=15, ge=1)

    walk_in_reserve_ratio: float = Field(default=0.15, ge=0.0, le=1.0)
    advance_capacity_ratio: float = Field(default=0.85, ge=0.0, le=1.0)
    advance_cutoff_minutes: int = Field(default=60, ge=0)
    walk_in_open_before_minutes: int = Field(default=30, ge=0)
    walk_in_close_before_minutes: int = Field(default=15, ge=0)

    max_transaction_attempts: int = Field(default=5, ge=1, le=20)
    retry_backoff_seconds: float = Field(default=0.1, ge=0.0)

    rebook_cancelled_slots: bool = False
    exclude_break_placeholders: bool = True

    max_breaks_per_session: int = Field(default=3, ge=1)
    delay_publish_threshold_minutes: int = Field(default=5, ge=0)

    redis_url: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="CLINIC_",
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v):
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v


@lru_cache
def get_settings() -> SchedulerSettings:
    """Process-wide settings (cached)."""
    return SchedulerSettings()
