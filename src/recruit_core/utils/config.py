"""
Configuration Management for the recruiting backend core

Settings are read from the environment (and an optional .env file) with
pydantic BaseSettings.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


class BaseServiceSettings(BaseSettings):
    """Base class of all settings groups"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.validate_configuration()

    def validate_configuration(self) -> None:
        pass


class DatabaseSettings(BaseServiceSettings):
    """Database connection settings"""

    model_config = SettingsConfigDict(
        env_prefix="RECRUIT_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./recruit.db",
        description="Async SQLAlchemy database URL",
    )

    # Connection pool (ignored by SQLite)
    pool_size: int = Field(default=5, ge=1, le=50)
    max_overflow: int = Field(default=10, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1, description="Seconds to wait for a pooled connection")
    pool_recycle: int = Field(default=3600, ge=300)
    pool_pre_ping: bool = Field(default=True)

    echo: bool = Field(default=False, description="Echo SQL statements")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Database URL cannot be empty")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


class TransactionSettings(BaseServiceSettings):
    """Defaults of the transaction service"""

    model_config = SettingsConfigDict(
        env_prefix="RECRUIT_TXN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    default_timeout_ms: int = Field(default=30000, gt=0)
    default_max_retries: int = Field(default=1, ge=0)

    # Backoff is retry_base_delay_ms * 2**attempt, scaled by 1 +/- retry_jitter
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_jitter: float = Field(default=0.2, ge=0.0, le=1.0)

    default_chunk_size: int = Field(default=100, ge=1)

    # 32 keeps lock ids compatible with the legacy Node service sharing the database
    lock_hash_bits: int = Field(default=64)

    def validate_configuration(self) -> None:
        if self.lock_hash_bits not in (32, 64):
            raise ConfigurationError(
                "lock_hash_bits",
                expected="32 or 64",
                actual_value=self.lock_hash_bits,
            )


class LoggingSettings(BaseServiceSettings):
    """Logging settings"""

    model_config = SettingsConfigDict(
        env_prefix="RECRUIT_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="json", pattern=r"^(json|text)$")

    file_enabled: bool = Field(default=False)
    file_path: Optional[str] = Field(default="logs/recruit_core.log")
    file_max_size: int = Field(default=10485760, ge=1024)
    file_backup_count: int = Field(default=5, ge=1, le=50)

    console_enabled: bool = Field(default=True)

    include_trace: bool = Field(default=False)
    service_name: str = Field(default="recruit-core")
    service_version: str = Field(default="1.0.0")

    def validate_configuration(self) -> None:
        if self.file_enabled and self.file_path:
            Path(self.file_path).parent.mkdir(parents=True, exist_ok=True)


class DiagnosticsSettings(BaseServiceSettings):
    """Load test and query plan profiler settings"""

    model_config = SettingsConfigDict(
        env_prefix="RECRUIT_DIAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    enabled: bool = Field(default=False, description="Expose the admin diagnostics router")
    admin_token: Optional[str] = Field(default=None, min_length=16)
    default_concurrency: int = Field(default=10, ge=1)
    max_concurrency: int = Field(default=100, ge=1)

    def validate_configuration(self) -> None:
        if self.default_concurrency > self.max_concurrency:
            raise ConfigurationError(
                "default_concurrency",
                message="default_concurrency cannot exceed max_concurrency",
                actual_value=self.default_concurrency,
            )


class Settings(BaseServiceSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_prefix="RECRUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    environment: str = Field(
        default="development",
        pattern=r"^(development|staging|production|test)$",
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    transaction: TransactionSettings = Field(default_factory=TransactionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    diagnostics: DiagnosticsSettings = Field(default_factory=DiagnosticsSettings)

    @model_validator(mode="after")
    def validate_environment_consistency(self) -> "Settings":
        """Reject combinations that must never reach production"""
        if self.is_production():
            if self.database.is_sqlite:
                raise ValueError("SQLite is not supported in production")
            if self.diagnostics.enabled and not self.diagnostics.admin_token:
                raise ValueError("Diagnostics require an admin token in production")
        return self

    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings singleton"""
    return Settings()
