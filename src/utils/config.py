"""
Configuration management using pydantic-settings.

Loads settings from environment variables and .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (two levels above src/utils)
BASE_DIR = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    db_path: Path = Field(
        default=BASE_DIR / "data" / "lifecycle.db",
        description="SQLite database file",
    )
    documents_dir: Path = Field(
        default=BASE_DIR / "data" / "documents",
        description="Directory where rendered documents are written",
    )

    # Pricing & quoting
    currency: str = Field(default="XOF", description="Currency printed on documents and messages")
    quote_validity_days: int = Field(default=7, description="How long a quote stays convertible")

    # Policies
    policy_term_years: int = Field(default=1, description="Length of a policy window")
    payment_success_rate: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Success probability of the payment simulator",
    )

    # Daily sweep
    sweep_hour: int = Field(default=2, ge=0, le=23, description="Local hour of the daily sweep")
    sweep_minute: int = Field(default=0, ge=0, le=59, description="Local minute of the daily sweep")
    sweep_timezone: str = Field(default="Africa/Tunis", description="Timezone of the daily trigger")
    expiring_notice_days: int = Field(
        default=30,
        description="Policies ending in [n-1, n] days get an expiring-soon notice",
    )
    freshly_expired_hours: int = Field(default=24, description="Window for freshly expired policies")
    stale_claim_days: int = Field(default=30, description="Open claims untouched this long are stale")

    # Runtime
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level for the operator scripts")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()
