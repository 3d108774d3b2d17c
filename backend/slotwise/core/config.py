# backend/slotwise/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = "development"

    # Database
    database_url: str = Field(
        default="sqlite:///./slotwise.db",
        description="SQLAlchemy URL for the primary relational store",
    )
    database_echo: bool = False

    # Cache settings
    cache_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Slot cache store; 'memory' keeps entries in-process (tests, single node)",
    )
    redis_url: str = "redis://localhost:6379"
    slot_cache_ttl_seconds: int = Field(
        default=300,
        description="TTL for cached public slot sequences",  # 5 minutes
        ge=1,
        le=3600,
    )
    cache_circuit_failure_threshold: int = 5
    cache_circuit_recovery_seconds: int = 60

    # Scheduling
    default_timezone: str = Field(
        default="Australia/Sydney",
        description="IANA zone assigned to providers that do not choose one",
    )
    pending_bookings_block_slots: bool = Field(
        default=True,
        description="Whether unpaid (pending) bookings occupy their slot exclusively",
    )
    no_show_grace_period_hours: int = Field(default=2, ge=0, le=72)

    # Payments
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None,
        description="Stripe API key; without it deposits are recorded but never captured",
    )
    stripe_currency: str = "aud"

    # Background work
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"
    outbox_dispatch_batch_size: int = 200
    no_show_sweep_interval_minutes: int = 15

    # Monitoring
    slow_operation_threshold_seconds: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("stripe_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().lower()

    def occupying_booking_statuses(self) -> tuple[str, ...]:
        """Booking statuses that hold a provider's time exclusively."""
        statuses = ("confirmed", "completed", "no_show")
        if self.pending_bookings_block_slots:
            return ("pending",) + statuses
        return statuses


settings = Settings()
