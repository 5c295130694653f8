"""Settings for the wallet tracker, loaded with pydantic-settings.

Each concern (database, provider, sync, transfer detection) has its own
settings group and env prefix. Invalid values fail at startup rather than
mid-sync.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from decimal import Decimal
from functools import lru_cache
from typing import Literal, TypeVar

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Blockchair caps /dashboards/transactions at 10 hashes and address pages at 100 ids.
PROVIDER_MAX_BATCH_SIZE = 10
PROVIDER_MAX_PAGE_LIMIT = 100


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or sqlite+aiosqlite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError(
                "DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string"
            )
        return v


class ProviderSettings(BaseSettings):
    """Blockchair API settings."""

    model_config = SettingsConfigDict(env_prefix="BLOCKCHAIR_", extra="ignore")

    base_url: str = Field(
        default="https://api.blockchair.com/bitcoin",
        alias="BLOCKCHAIR_BASE_URL",
        description="Blockchair API root for the tracked chain",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="BLOCKCHAIR_API_KEY",
        description="Optional paid API key (raises the request quota)",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="BLOCKCHAIR_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=120,
        description="Per-request HTTP timeout",
    )
    page_limit: int = Field(
        default=PROVIDER_MAX_PAGE_LIMIT,
        alias="BLOCKCHAIR_PAGE_LIMIT",
        ge=1,
        le=PROVIDER_MAX_PAGE_LIMIT,
        description="Transaction ids returned per address snapshot page",
    )
    batch_size: int = Field(
        default=PROVIDER_MAX_BATCH_SIZE,
        alias="BLOCKCHAIR_BATCH_SIZE",
        ge=1,
        le=PROVIDER_MAX_BATCH_SIZE,
        description="Transaction hashes per detail request",
    )
    requests_per_second: float = Field(
        default=0.5,
        alias="BLOCKCHAIR_REQUESTS_PER_SECOND",
        gt=0,
        le=100,
        description="Global request pacing shared by all endpoints (free tier: 30/min)",
    )
    throttle_cooldown_seconds: float = Field(
        default=60.0,
        alias="BLOCKCHAIR_THROTTLE_COOLDOWN_SECONDS",
        ge=0,
        le=3600,
        description="Wait before the single retry of a throttled request",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("BLOCKCHAIR_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SyncSettings(BaseSettings):
    """Reconciliation behaviour settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    gap_policy: Literal["raise", "resync"] = Field(
        default="raise",
        alias="SYNC_GAP_POLICY",
        description="What to do when the stored cursor is missing from the snapshot page",
    )
    timeout_seconds: float | None = Field(
        default=None,
        alias="SYNC_TIMEOUT_SECONDS",
        gt=0,
        description="Optional deadline for one reconciliation pass",
    )


class TransferSettings(BaseSettings):
    """Transfer detection settings."""

    model_config = SettingsConfigDict(env_prefix="TRANSFER_", extra="ignore")

    window_seconds: int = Field(
        default=300,
        alias="TRANSFER_WINDOW_SECONDS",
        ge=0,
        le=24 * 3600,
        description="Maximum delay between an outbound and its matching inbound transaction",
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("0"),
        alias="TRANSFER_AMOUNT_TOLERANCE",
        description="Maximum absolute amount difference for a match (0 = exact)",
    )

    @field_validator("amount_tolerance")
    @classmethod
    def validate_amount_tolerance(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("TRANSFER_AMOUNT_TOLERANCE must be non-negative")
        return v


_SettingsT = TypeVar("_SettingsT", bound=BaseSettings)


def _from_env_file(settings_cls: type[_SettingsT]) -> Callable[[], _SettingsT]:
    # A nested BaseSettings only reads .env when given the file explicitly.
    return lambda: settings_cls(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)


class Settings(BaseSettings):
    """All wallet tracker settings, grouped by concern.

    Values come from the process environment first, then `.env`.

    Example:
        ```python
        from wallet_tracker.config import get_settings

        settings = get_settings()
        print(settings.provider.batch_size, settings.sync.gap_policy)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=_from_env_file(DatabaseSettings))
    provider: ProviderSettings = Field(default_factory=_from_env_file(ProviderSettings))
    sync: SyncSettings = Field(default_factory=_from_env_file(SyncSettings))
    transfers: TransferSettings = Field(default_factory=_from_env_file(TransferSettings))

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Root log level for the CLI",
    )

    def get_logging_level(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Settings as printable strings, with the DB password and API key masked."""
        provider = self.provider
        return {
            "database_url": make_url(self.database.url).render_as_string(hide_password=True),
            "provider": {
                "base_url": provider.base_url,
                "api_key": "(set)" if provider.api_key else "(not set)",
                "page_limit": str(provider.page_limit),
                "batch_size": str(provider.batch_size),
                "requests_per_second": str(provider.requests_per_second),
                "throttle_cooldown_seconds": str(provider.throttle_cooldown_seconds),
            },
            "sync": {
                "gap_policy": self.sync.gap_policy,
                "timeout_seconds": str(self.sync.timeout_seconds or "(not set)"),
            },
            "transfers": {
                "window_seconds": str(self.transfers.window_seconds),
                "amount_tolerance": str(self.transfers.amount_tolerance),
            },
            "log_level": self.log_level,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process.

    Raises:
        ValidationError: DATABASE_URL is missing or a value is out of range.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached settings so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()


def load_transfer_settings() -> TransferSettings:
    """Transfer settings alone (environment, then `.env`), without requiring DATABASE_URL."""
    return _from_env_file(TransferSettings)()
