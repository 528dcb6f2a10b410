"""Core engine configuration loaded from environment variables."""

from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class CoreSettings(BaseSettings):
    """Engine settings loaded from environment variables with PULSE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="PULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False

    # Provider API
    provider_base_url: str = "https://api.whop.com/api/v2"
    provider_timeout: float = 15.0
    provider_page_size: int = Field(default=100, ge=1, le=500)
    provider_max_pages: int = Field(default=50, ge=1)

    # Days (counting back from today) for which the provider's live active
    # member total is trusted.  Older days derive the count from history.
    live_active_days: int = Field(default=1, ge=0)

    # Ingestion / backfill
    per_tenant_timeout_seconds: float = 60.0
    backfill_delay_seconds: float = 0.1
    install_backfill_days: int = Field(default=7, ge=1, le=365)
    install_backfill_timeout_seconds: float = 300.0

    # Identity resolution
    recent_update_window_seconds: float = 5.0

    # Integrity checks
    integrity_gap_days: int = Field(default=14, ge=1)

    @field_validator("provider_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def load_core_settings(**overrides: object) -> CoreSettings:
    """Load settings from environment, with optional overrides for testing."""
    settings = CoreSettings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded core settings (provider=%s)", settings.provider_base_url)

    return settings
