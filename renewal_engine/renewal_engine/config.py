"""Renewal engine configuration loaded from environment variables."""

from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables with RENEWALS_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="RENEWALS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///.renewals/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # PayPal suspended-subscription repair
    repair_batch_size: int = 30
    repair_overdue_days: int = 3
    repair_reschedule_delay_seconds: int = 300
    paypal_payment_method: str = "paypal"
    paypal_agreement_prefix: str = "B-"

    # Scheduled renewals
    renewal_batch_size: int = 100

    # Delayed-action worker
    worker_poll_interval: float = 60.0
    worker_claim_limit: int = 25
    worker_stale_after_seconds: int = 900

    # Logging
    structured_logging: bool = False
    log_level: str = "INFO"

    @field_validator("repair_batch_size", "renewal_batch_size", "worker_claim_limit")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch sizes must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]
    logger.debug(
        "Loaded settings repair_batch_size=%d renewal_batch_size=%d structured_logging=%s",
        settings.repair_batch_size,
        settings.renewal_batch_size,
        settings.structured_logging,
    )
    return settings
