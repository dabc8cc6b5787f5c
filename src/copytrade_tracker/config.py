"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
copy-trade tracker, loading and validating environment variables at
startup. Components receive the values they need explicitly; nothing
below the CLI/webhook wiring reads the environment.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./copytrade.db",
        alias="DATABASE_URL",
        description="PostgreSQL (asyncpg) or SQLite (aiosqlite) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PriceSettings(BaseSettings):
    """Spot price lookup settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_", extra="ignore")

    api_url: str = Field(
        default="https://api.coingecko.com/api/v3/simple/price",
        alias="PRICE_API_URL",
        description="CoinGecko simple-price endpoint",
    )
    timeout_seconds: float = Field(
        default=5.0,
        alias="PRICE_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Timeout for one price lookup",
    )
    fallback_sol_usd: Decimal = Field(
        default=Decimal("190"),
        alias="PRICE_FALLBACK_SOL_USD",
        description="SOL/USD price used when the lookup fails",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("PRICE_API_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("fallback_sol_usd")
    @classmethod
    def validate_fallback(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("PRICE_FALLBACK_SOL_USD must be > 0")
        return v


class SlackSettings(BaseSettings):
    """Slack notification settings."""

    model_config = SettingsConfigDict(env_prefix="SLACK_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="SLACK_BOT_TOKEN",
        description="Slack bot token (xoxb-...)",
    )
    ops_channel: str | None = Field(
        default=None,
        alias="SLACK_OPS_CHANNEL",
        description="Channel ID for coordinated-buy alerts and third-buy mirrors",
    )
    api_url: str = Field(
        default="https://slack.com/api",
        alias="SLACK_API_URL",
        description="Slack Web API base URL",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="SLACK_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="Timeout for one Slack API call",
    )
    auto_create_channels: bool = Field(
        default=False,
        alias="SLACK_AUTO_CREATE_CHANNELS",
        description="Create a per-wallet channel when none exists",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("SLACK_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @property
    def enabled(self) -> bool:
        """Check if Slack notifications are enabled."""
        return self.bot_token is not None


class LedgerSettings(BaseSettings):
    """Position ledger thresholds."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_", extra="ignore")

    close_threshold: Decimal = Field(
        default=Decimal("0.1"),
        alias="LEDGER_CLOSE_THRESHOLD",
        description="Remaining quantity at or below which a sell closes the position",
    )
    third_buy_count: int = Field(
        default=3,
        alias="LEDGER_THIRD_BUY_COUNT",
        ge=2,
        le=100,
        description="Buy count that raises the accumulation alert (fires once)",
    )

    @field_validator("close_threshold")
    @classmethod
    def validate_close_threshold(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("LEDGER_CLOSE_THRESHOLD must be >= 0")
        return v


class CoordinatedBuySettings(BaseSettings):
    """Coordinated-buy detector settings."""

    model_config = SettingsConfigDict(env_prefix="COORDINATED_", extra="ignore")

    window_seconds: int = Field(
        default=3600,
        alias="COORDINATED_WINDOW_SECONDS",
        ge=60,
        le=7 * 24 * 3600,
        description="Trailing window for counting distinct buyers of a token",
    )
    record_ttl_seconds: int = Field(
        default=3600,
        alias="COORDINATED_RECORD_TTL_SECONDS",
        ge=60,
        le=7 * 24 * 3600,
        description="How long recent-buy records are retained by the store",
    )
    min_wallets: int = Field(
        default=2,
        alias="COORDINATED_MIN_WALLETS",
        ge=2,
        le=1000,
        description="Distinct wallets required to raise a coordinated-buy alert",
    )


class ProcessingSettings(BaseSettings):
    """Batch processing settings."""

    model_config = SettingsConfigDict(env_prefix="PROCESSING_", extra="ignore")

    max_conflict_retries: int = Field(
        default=3,
        alias="PROCESSING_MAX_CONFLICT_RETRIES",
        ge=0,
        le=20,
        description="Retries of a position read-modify-write after a concurrent update",
    )
    max_concurrency: int = Field(
        default=1,
        alias="PROCESSING_MAX_CONCURRENCY",
        ge=1,
        le=64,
        description="Identities processed concurrently within one batch (1 = sequential)",
    )


class ReportSettings(BaseSettings):
    """Per-wallet profit report settings."""

    model_config = SettingsConfigDict(env_prefix="REPORT_", extra="ignore")

    wallet_delay_seconds: float = Field(
        default=10.0,
        alias="REPORT_WALLET_DELAY_SECONDS",
        ge=0.0,
        le=600.0,
        description="Pause between wallets when posting profit reports",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from copytrade_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    price: PriceSettings = Field(
        default_factory=lambda: PriceSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    slack: SlackSettings = Field(
        default_factory=lambda: SlackSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ledger: LedgerSettings = Field(
        default_factory=lambda: LedgerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    coordinated: CoordinatedBuySettings = Field(
        default_factory=lambda: CoordinatedBuySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    processing: ProcessingSettings = Field(
        default_factory=lambda: ProcessingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    report: ReportSettings = Field(
        default_factory=lambda: ReportSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    display_timezone: str = Field(
        default="America/New_York",
        alias="DISPLAY_TIMEZONE",
        description="IANA zone used to render trade times in alerts",
    )
    http_host: str = Field(
        default="0.0.0.0",
        alias="HTTP_HOST",
        description="Bind address for the webhook server",
    )
    http_port: int = Field(
        default=8080,
        alias="HTTP_PORT",
        description="HTTP port for the webhook server",
        ge=1,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    @field_validator("display_timezone")
    @classmethod
    def validate_display_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"DISPLAY_TIMEZONE is not a known IANA zone: {v}") from e
        return v

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "price": {
                "api_url": self.price.api_url,
                "fallback_sol_usd": str(self.price.fallback_sol_usd),
            },
            "slack": {
                "bot_token": "(set)" if self.slack.bot_token else "(not set)",
                "ops_channel": self.slack.ops_channel or "(not set)",
                "auto_create_channels": str(self.slack.auto_create_channels),
            },
            "ledger": {
                "close_threshold": str(self.ledger.close_threshold),
                "third_buy_count": str(self.ledger.third_buy_count),
            },
            "coordinated": {
                "window_seconds": str(self.coordinated.window_seconds),
                "min_wallets": str(self.coordinated.min_wallets),
            },
            "processing": {
                "max_conflict_retries": str(self.processing.max_conflict_retries),
                "max_concurrency": str(self.processing.max_concurrency),
            },
            "log_level": self.log_level,
            "display_timezone": self.display_timezone,
            "http_port": str(self.http_port),
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(
        self, *, command: Literal["serve", "init-db", "process-file", "report-profits"]
    ) -> None:
        """Validate command-specific requirements.

        Commands that deliver alerts refuse to run without a Slack token
        unless DRY_RUN is set.
        """
        if command in ("serve", "process-file", "report-profits") and not self.dry_run:
            if not self.slack.enabled:
                raise ValueError("SLACK_BOT_TOKEN is required unless DRY_RUN is set")
        if command in ("serve", "process-file") and not self.dry_run:
            if not self.slack.ops_channel:
                raise ValueError("SLACK_OPS_CHANNEL is required for coordinated-buy alerts")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
