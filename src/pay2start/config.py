"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from pay2start.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SIGNING_TOKEN_SECRET = "change-me-in-production-very-secure-secret-key"


class Settings(BaseSettings):
    """Central configuration for Pay2Start."""

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
    app_base_url: str = "http://localhost:3000"

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://pay2start:pay2start_dev"
        "@localhost:5432/pay2start"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Stripe ---
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    # --- Signing links ---
    signing_token_secret: str = DEFAULT_SIGNING_TOKEN_SECRET
    signing_token_expiry_days: int = 7
    signing_rate_limit_window_minutes: int = 15
    signing_rate_limit_max_attempts: int = 5
    signing_max_body_bytes: int = 5 * 1024 * 1024
    signing_max_image_bytes: int = 2 * 1024 * 1024
    # Honour X-Forwarded-For / X-Real-IP only behind a proxy that overwrites them.
    trust_proxy_headers: bool = False

    # --- Email (SMTP) ---
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "contracts@pay2start.app"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def signing_secret_is_weak(self) -> bool:
        """True when the signing secret is the shipped default or too short."""
        return (
            self.signing_token_secret == DEFAULT_SIGNING_TOKEN_SECRET
            or len(self.signing_token_secret) < 32
        )

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_username and self.smtp_password)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
