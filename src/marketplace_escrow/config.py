"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from marketplace_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the marketplace escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/marketplace_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (domain event fan-out) ---
    redis_url: str = "redis://localhost:6379/0"
    redis_event_channel: str = "marketplace.events"

    # --- Payment Gateway (Xendit) ---
    gateway_simulate: bool = True
    xendit_base_url: str = "https://api.xendit.co"
    xendit_secret_key: str = ""
    xendit_webhook_token: str = ""
    xendit_timeout_seconds: float = 15.0

    # --- Escrow ---
    escrow_auto_approval_days: int = 7

    # --- Disputes ---
    dispute_filing_deadline_days: int = 5
    dispute_negotiation_deadline_hours: int = 48
    dispute_strike_threshold: int = 3

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
