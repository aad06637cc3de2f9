# backend/app/core/config.py
import logging
import os
from pathlib import Path
from typing import Optional, Set

from dotenv import load_dotenv
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_BACKEND_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = f"sqlite:///{_BACKEND_ROOT / 'booking_engine.db'}"

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


PROD_SITE_MODES: Set[str] = {"prod", "production", "live"}


def _classify_environment(raw_site_mode: str | None) -> str:
    normalized = (raw_site_mode or "").strip().lower()
    return "production" if normalized in PROD_SITE_MODES else "development"


class Settings(BaseSettings):
    environment: str = Field(
        default_factory=lambda: _classify_environment(os.getenv("SITE_MODE", "local")),
        description="Deployment environment derived from SITE_MODE",
    )
    is_testing: bool = False

    # Storage
    database_url: str = Field(
        default=DEFAULT_SQLITE_URL,
        alias="DATABASE_URL",
        description="SQLAlchemy URL for the transactional store",
    )
    database_pool_size: int = Field(default=10, ge=1)
    database_max_overflow: int = Field(default=5, ge=0)
    database_echo: bool = False

    # Locking
    redis_url: Optional[str] = Field(
        default=None,
        alias="REDIS_URL",
        description="Optional Redis URL for cross-process booking/ledger mutexes",
    )
    lock_namespace: str = Field(default="booking-engine", description="Redis key namespace")
    lock_wait_timeout_seconds: float = Field(
        default=10.0,
        description="Maximum time to wait for a package/session lock before failing retryably",
    )
    lock_ttl_seconds: int = Field(
        default=30,
        description="Expiry for distributed locks so a crashed worker cannot hold them forever",
    )
    lock_poll_interval_seconds: float = Field(default=0.05)

    # Waitlist
    waitlist_claim_window_hours: int = Field(
        default=24,
        description="How long a notified waitlist entry holds its claim on a freed seat",
    )

    # Cancellation policy defaults (used when no active policy row exists)
    allow_cancellation: bool = True
    cancellation_deadline_hours: int = Field(default=24)
    allow_rescheduling: bool = True
    rescheduling_deadline_hours: int = Field(default=24)
    max_reschedules_per_booking: int = Field(default=2)
    refund_credits_on_cancel: bool = True

    # Observability
    slow_operation_threshold_seconds: float = Field(default=1.0)
    prometheus_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "cancellation_deadline_hours",
        "rescheduling_deadline_hours",
        "max_reschedules_per_booking",
        "waitlist_claim_window_hours",
    )
    @classmethod
    def _non_negative_int(cls, value: int, info: ValidationInfo) -> int:
        if value < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return value

    @field_validator("lock_wait_timeout_seconds", "lock_poll_interval_seconds")
    @classmethod
    def _positive_float(cls, value: float, info: ValidationInfo) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return value

    @field_validator("lock_ttl_seconds")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("lock_ttl_seconds must be positive")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")

    def get_database_url(self) -> str:
        """Get the database URL for the current context."""
        override = os.getenv("TEST_DATABASE_URL") if self.is_testing else None
        return override or self.database_url


settings = Settings()
