"""
Configuration Management for Kakeibo

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which knobs exist and ensures every value
is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Local persistence configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KAKEIBO_STORAGE_",
        extra="ignore"
    )

    backend: Literal["file", "memory"] = Field(
        default="file",
        description="Key-value backend behind the local record store"
    )
    directory: str = Field(
        default=".kakeibo",
        description="Directory for the file backend"
    )
    namespace: str = Field(
        default="kakeibo",
        min_length=1,
        description="Prefix for every stored key"
    )
    quota_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1024,
        description="Maximum total size of stored values"
    )

    @field_validator('namespace')
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        """Keys become file names, so keep them simple."""
        if not v.replace("_", "").replace("-", "").isalnum():
            raise ValueError(f"Namespace must be alphanumeric (with - or _): {v}")
        return v


class SyncSettings(BaseSettings):
    """Remote reconciliation configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KAKEIBO_SYNC_",
        extra="ignore"
    )

    remote_max_attempts: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Attempts per remote call for transient errors"
    )
    retry_wait_min: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum backoff between attempts (seconds)"
    )
    retry_wait_max: float = Field(
        default=10.0,
        ge=0.0,
        description="Maximum backoff between attempts (seconds)"
    )
    replay_on_start: bool = Field(
        default=True,
        description="Replay queued operations when the engine starts online"
    )

    @model_validator(mode='after')
    def validate_waits(self) -> 'SyncSettings':
        if self.retry_wait_max < self.retry_wait_min:
            raise ValueError("retry_wait_max cannot be below retry_wait_min")
        return self


class ScheduleSettings(BaseSettings):
    """Recurrence scheduling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KAKEIBO_SCHEDULE_",
        extra="ignore"
    )

    clamp_month_end: bool = Field(
        default=False,
        description="Clamp monthly steps to month end instead of rolling over"
    )
    upcoming_bill_window_days: int = Field(
        default=7,
        ge=0,
        le=60,
        description="Unpaid bills due within this many days count as urgent"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Validation thresholds
    max_expense_amount: Decimal = Field(
        default=Decimal("1000000"),
        gt=0,
        description="Maximum reasonable expense amount in INR"
    )
    min_description_length: int = Field(default=2, ge=1)
    max_description_length: int = Field(default=200, le=200)
    max_expense_age_years: int = Field(
        default=10,
        ge=1,
        description="Expenses older than this are rejected"
    )
    future_date_tolerance_days: int = Field(
        default=0,
        ge=0,
        description="How many days in the future an expense date can be"
    )

    # Audit trail
    audit_log_max_events: int = Field(
        default=500,
        ge=0,
        description="Events kept in the local audit log (0 disables persistence)"
    )

    # Bills
    record_expense_on_bill_payment: bool = Field(
        default=True,
        description="Create an expense when a bill is marked paid"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so each section reads its own env prefix

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def schedule(self) -> ScheduleSettings:
        return ScheduleSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "sync", "schedule", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
