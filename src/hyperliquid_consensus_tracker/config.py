"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Hyperliquid Consensus Tracker, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hyperliquid_consensus_tracker.detector.models import DetectionConfig

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./hl_tracker.db"


def parse_percent_list(raw: str) -> tuple[Decimal, ...]:
    """Parse ``"2.0, 3.5, 5.0"`` into a tuple of Decimals."""
    values: list[Decimal] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = Decimal(part)
        except InvalidOperation as e:
            raise ValueError(f"Invalid percentage: {part!r}") from e
        if not value.is_finite() or value <= 0:
            raise ValueError(f"Take-profit targets must be positive: {part!r}")
        values.append(value)
    return tuple(values)


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default=DEFAULT_DATABASE_URL,
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or SQLite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings.

    Redis is optional; when set, detection and valuation passes and the
    registry maintenance commands take a cross-process lock there.
    """

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None or v == "":
            return None
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class HyperliquidSettings(BaseSettings):
    """Hyperliquid info API settings."""

    model_config = SettingsConfigDict(env_prefix="HYPERLIQUID_", extra="ignore")

    api_url: str = Field(
        default="https://api.hyperliquid.xyz",
        alias="HYPERLIQUID_API_URL",
        description="Base URL of the Hyperliquid API",
    )
    request_timeout_seconds: float = Field(
        default=15.0,
        alias="HYPERLIQUID_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Upper bound for a single gateway call, retries included",
    )
    requests_per_second: float = Field(
        default=10.0,
        alias="HYPERLIQUID_REQUESTS_PER_SECOND",
        gt=0.0,
        description="Client-side rate limit",
    )
    mids_cache_ttl_seconds: float = Field(
        default=2.0,
        alias="HYPERLIQUID_MIDS_CACHE_TTL_SECONDS",
        ge=0.0,
        description="How long an allMids response is reused across instruments",
    )

    @field_validator("api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("HYPERLIQUID_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SignalSettings(BaseSettings):
    """Consensus detection and risk-level settings."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore")

    min_wallet_count: int = Field(
        default=5,
        alias="SIGNAL_MIN_WALLET_COUNT",
        ge=0,
        description="Minimum distinct wallets in a cluster (0 disables detection)",
    )
    time_window_minutes: int = Field(
        default=10,
        alias="SIGNAL_TIME_WINDOW_MINUTES",
        ge=0,
        description="Consensus window width in minutes (0 disables detection)",
    )
    min_volume: Decimal = Field(
        default=Decimal("1000"),
        alias="SIGNAL_MIN_VOLUME",
        ge=Decimal("0"),
        description="Minimum total notional of a cluster",
    )
    default_stop_loss_percent: Decimal = Field(
        default=Decimal("-2.5"),
        alias="SIGNAL_DEFAULT_STOP_LOSS_PERCENT",
        description="Signed stop-loss distance from entry, usually negative",
    )
    take_profit_target_percents: str = Field(
        default="2.0, 3.5, 5.0",
        alias="SIGNAL_TAKE_PROFIT_TARGET_PERCENTS",
        description="Take-profit distances from entry (comma-separated)",
    )
    cooldown_minutes: int = Field(
        default=120,
        alias="SIGNAL_COOLDOWN_MINUTES",
        ge=0,
        description="Minutes a contributing wallet is excluded per instrument",
    )

    @field_validator("take_profit_target_percents")
    @classmethod
    def validate_targets(cls, v: str) -> str:
        """Validate the take-profit list parses."""
        parse_percent_list(v)
        return v

    @property
    def take_profit_targets(self) -> tuple[Decimal, ...]:
        return parse_percent_list(self.take_profit_target_percents)

    def to_detection_config(self) -> DetectionConfig:
        """Snapshot these settings as an immutable DetectionConfig."""
        return DetectionConfig(
            min_wallet_count=self.min_wallet_count,
            time_window_minutes=self.time_window_minutes,
            min_volume=self.min_volume,
            default_stop_loss_percent=self.default_stop_loss_percent,
            take_profit_target_percents=self.take_profit_targets,
            cooldown=timedelta(minutes=self.cooldown_minutes),
        )


class PollingSettings(BaseSettings):
    """Cadence of the periodic passes."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    wallet_poll_interval_seconds: float = Field(
        default=60.0,
        alias="WALLET_POLL_INTERVAL_SECONDS",
        gt=0.0,
        description="Seconds between detection passes",
    )
    price_poll_interval_seconds: float = Field(
        default=30.0,
        alias="PRICE_POLL_INTERVAL_SECONDS",
        gt=0.0,
        description="Seconds between valuation passes",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_ids: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_IDS",
        description="Telegram chat or channel IDs for alerts (comma-separated)",
    )

    @property
    def chat_id_list(self) -> list[str]:
        if not self.chat_ids:
            return []
        return [part.strip() for part in self.chat_ids.split(",") if part.strip()]

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and bool(self.chat_id_list)


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from hyperliquid_consensus_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.signal.to_detection_config())
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
    hyperliquid: HyperliquidSettings = Field(
        default_factory=lambda: HyperliquidSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    signal: SignalSettings = Field(
        default_factory=lambda: SignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polling: PollingSettings = Field(
        default_factory=lambda: PollingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
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
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )
    dashboard_url: str = Field(
        default="https://your-dashboard-url.com",
        alias="DASHBOARD_URL",
        description="Base URL linked from alerts",
    )

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
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "hyperliquid": {
                "api_url": self.hyperliquid.api_url,
                "request_timeout_seconds": str(self.hyperliquid.request_timeout_seconds),
                "requests_per_second": str(self.hyperliquid.requests_per_second),
            },
            "signal": {
                "min_wallet_count": str(self.signal.min_wallet_count),
                "time_window_minutes": str(self.signal.time_window_minutes),
                "min_volume": str(self.signal.min_volume),
                "default_stop_loss_percent": str(self.signal.default_stop_loss_percent),
                "take_profit_target_percents": self.signal.take_profit_target_percents,
                "cooldown_minutes": str(self.signal.cooldown_minutes),
            },
            "polling": {
                "wallet_poll_interval_seconds": str(self.polling.wallet_poll_interval_seconds),
                "price_poll_interval_seconds": str(self.polling.price_poll_interval_seconds),
            },
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
            "dashboard_url": self.dashboard_url,
        }

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

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (used by tests that change the environment)."""
    get_settings.cache_clear()
