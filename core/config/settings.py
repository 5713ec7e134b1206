"""
Pydantic Settings: single source of truth for all configuration.

Reads from environment variables (and .env file in dev).
Entry points call `get_settings()` once and hand the resulting object to
the components they construct.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings loaded from env vars."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────
    database_url: str = Field(
        ...,
        description="Async DSN (postgresql+asyncpg://... or sqlite+aiosqlite://...)",
    )
    database_url_sync: str = Field(
        default="",
        description="Sync Postgres DSN for Alembic migrations",
    )

    # ── LLM (OpenAI-compatible API) ───────────────────
    llm_provider: str = Field(
        default="anthropic",
        description="LLM provider name, used for logging only",
    )
    llm_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="API key for the LLM provider",
    )
    llm_base_url: str = Field(
        default="https://api.anthropic.com/v1/",
        description="Base URL for the OpenAI-compatible API endpoint",
    )
    llm_model: str = Field(
        default="claude-3-5-sonnet-20241022",
        description="Model identifier recorded on every generated insight",
    )
    llm_max_tokens: int = 4000
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 120.0
    llm_rpm_limit: int = Field(
        default=50,
        description="Max LLM requests per minute across the process",
    )
    llm_call_spacing_seconds: float = Field(
        default=1.0,
        ge=1.0,
        description="Delay between successive model calls for one report",
    )

    # ── Model input bounds ───────────────────────────
    ai_chunk_size: int = 12000
    ai_max_chunks: int = 3

    # ── Queue ────────────────────────────────────────
    queue_default_batch_size: int = Field(default=3, ge=1)
    queue_max_retries: int = Field(default=3, ge=1)
    queue_backoff_base_seconds: int = 60
    queue_honor_schedule: bool = Field(
        default=False,
        description="Skip queue items whose scheduled_for lies in the future",
    )
    queue_status_limit: int = 50

    # ── Feed ─────────────────────────────────────────
    feed_default_limit: int = 20
    feed_max_limit: int = 100

    # ── Logging ──────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    # ── Runtime ──────────────────────────────────────
    environment: str = "development"
    port: int = 8080
    app_url: str = Field(
        default="http://localhost:8080",
        description="Public base URL of the API, used by the cron trigger",
    )

    # ── Cron trigger ─────────────────────────────────
    cron_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token required by the queue processing endpoint",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def model_input_chars(self) -> int:
        """Upper bound of document characters sent to the model."""
        return self.ai_chunk_size * self.ai_max_chunks


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached singleton settings instance."""
    return Settings()  # type: ignore[call-arg, unused-ignore]
