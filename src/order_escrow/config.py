"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from order_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the order escrow engine."""

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
        "postgresql+asyncpg://escrow:escrow_dev"
        "@localhost:5432/order_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (notification streams) ---
    redis_url: str = "redis://localhost:6379/0"
    notification_stream_prefix: str = "notifications"
    notification_stream_maxlen: int = 10_000

    # --- Ledger ---
    escrow_account_id: str = "platform-escrow"
    ledger_max_attempts: int = Field(default=3, ge=1)
    ledger_retry_wait_min: float = 0.5
    ledger_retry_wait_max: float = 8.0

    # --- Shipping carrier ---
    carrier_max_attempts: int = Field(default=3, ge=1)
    carrier_retry_wait_min: float = 0.5
    carrier_retry_wait_max: float = 8.0

    # --- Settlement policy ---
    # None keeps single-sided confirmations open indefinitely.
    confirmation_timeout_days: int | None = Field(default=None, ge=1)

    # --- Administration ---
    admin_user_ids: str = ""
    admin_api_token: str = ""

    # --- Collaborators ---
    # In simulation mode the ledger, carrier and listing reader are in-process fakes.
    simulate_collaborators: bool = True

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def admin_user_id_list(self) -> list[str]:
        """Parse comma-separated admin user ids into a list."""
        if not self.admin_user_ids:
            return []
        return [a.strip() for a in self.admin_user_ids.split(",") if a.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
