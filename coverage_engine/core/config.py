"""Application configuration."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from coverage_engine.schemas.coverage import DeductibleType, LimitType
from coverage_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


# Find .env file - check multiple possible locations
def find_env_file() -> Optional[Path]:
    """Find .env file in multiple possible locations."""
    current_dir = os.path.dirname(os.path.abspath(__file__))

    possible_paths = [
        os.path.join(os.getcwd(), ".env"),
        os.path.join(os.path.dirname(current_dir), ".env"),
        os.path.join(os.path.dirname(os.path.dirname(current_dir)), ".env"),
    ]

    for path_str in possible_paths:
        if os.path.exists(path_str):
            path = Path(path_str)
            LOGGER.debug(f"Found .env file at: {path}")
            return path

    return None


ENV_FILE = find_env_file()


def to_async_url(raw_url: str) -> str:
    """Swap a plain PostgreSQL or SQLite URL to its async driver."""
    if raw_url.startswith("postgres://") or raw_url.startswith("postgresql://"):
        _, rest = raw_url.split("://", 1)
        return f"postgresql+asyncpg://{rest}"
    if raw_url.startswith("sqlite:///"):
        return raw_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return raw_url


class StoreSettings(BaseSettings):
    """Record store connection and retry settings."""
    url: str = Field(default="sqlite+aiosqlite:///./coverage_engine.db", validation_alias="DATABASE_URL")
    echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")

    max_retries: int = Field(default=3, ge=1, validation_alias="STORE_MAX_RETRIES")
    retry_delay: float = Field(default=0.5, ge=0, validation_alias="STORE_RETRY_DELAY")
    max_retry_delay: float = Field(default=8.0, ge=0, validation_alias="STORE_MAX_RETRY_DELAY")

    @property
    def connection_url(self) -> str:
        """Get the connection URL with an async driver prefix."""
        return to_async_url(self.url)

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="",  # No prefix for nested settings
    )


class MigrationSettings(BaseSettings):
    """Defaults applied by the migration engine."""
    concurrency: int = Field(default=4, ge=1, validation_alias="MIGRATION_CONCURRENCY")
    default_limit_type: LimitType = Field(
        default=LimitType.PER_OCCURRENCE, validation_alias="MIGRATION_DEFAULT_LIMIT_TYPE"
    )
    default_deductible_type: DeductibleType = Field(
        default=DeductibleType.FLAT, validation_alias="MIGRATION_DEFAULT_DEDUCTIBLE_TYPE"
    )
    infer_types: bool = Field(default=False, validation_alias="MIGRATION_INFER_TYPES")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="",
    )


class CompatibilitySettings(BaseSettings):
    """Dual-read / dual-write switches for the transition window."""
    dual_write_enabled: bool = Field(default=True, validation_alias="DUAL_WRITE_ENABLED")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="",
    )


class Settings(BaseSettings):
    """Unified application settings with nested models."""

    app_name: str = Field(default="Coverage Engine", validation_alias="APP_NAME")
    app_version: str = "0.1.0"
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    api_v1_prefix: str = "/api/v1"
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], validation_alias="CORS_ORIGINS")

    store: StoreSettings = Field(default_factory=lambda: StoreSettings())
    migration: MigrationSettings = Field(default_factory=lambda: MigrationSettings())
    compatibility: CompatibilitySettings = Field(default_factory=lambda: CompatibilitySettings())

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        return self.store.connection_url

    @property
    def dual_write_enabled(self) -> bool:
        return self.compatibility.dual_write_enabled


settings = Settings()

LOGGER.debug(
    f"Settings initialized with environment: {settings.environment}",
    extra={"dual_write": settings.dual_write_enabled, "concurrency": settings.migration.concurrency},
)
