"""
Process settings for the relay (pydantic-settings, `.env` aware).

Every field has a default that runs locally without a `.env` file.

Note that these are *process* settings. The bot credential and
destination normally arrive later, at runtime, through the remote
configuration chain (see ``relay.app.remote_config``).

Usage:
    from relay.app.core.config import settings
    print(settings.TIMEOUT_SECONDS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Read from the environment first, then `.env`, then these defaults."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Relay"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Remote configuration ──
    CONFIG_URL: str = "http://localhost:8080/relay-config.json"
    BOT_TOKEN: Optional[str] = None  # inline credential, skips remote fetch
    BOT_CHAT_ID: Optional[str] = None

    # ── Transports ──
    BOT_API_BASE_URL: str = "https://api.telegram.org"
    BOT_PARSE_MODE: Optional[str] = "HTML"

    # ── Enrichment ──
    COLLECT_ENRICHMENT: bool = True

    # ── Budgets ──
    # Every wait point (init, enrichment, each chain attempt) uses this.
    TIMEOUT_SECONDS: float = 5.0

    # ── Message framing ──
    MESSAGE_PREFIX: str = "🔔 New Submission 🔔\n"
    MESSAGE_SUFFIX: str = "\n========================="

    @field_validator("TIMEOUT_SECONDS")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("TIMEOUT_SECONDS must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def has_inline_credentials(self) -> bool:
        return bool(self.BOT_TOKEN and self.BOT_CHAT_ID)


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
