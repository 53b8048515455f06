from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.exceptions import ConfigError


class Duration(BaseModel):
    """Structured duration such as ``{"minutes": 15}`` or ``{"hours": 24}``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    seconds: int = Field(default=0, ge=0)

    def to_timedelta(self) -> timedelta:
        return timedelta(days=self.days, hours=self.hours, minutes=self.minutes, seconds=self.seconds)


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    app_name: str = Field(default="EtherSub Refund Daemon", alias="APP_NAME")
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="production",
        alias="APP_ENV",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(default="sqlite:///./ethersub.db", alias="DATABASE_URL")

    refund_daemon_enabled: bool = Field(default=True, alias="REFUND_DAEMON_ENABLED")
    refund_daemon_interval: Duration = Field(
        default_factory=lambda: Duration(minutes=15),
        alias="REFUND_DAEMON_INTERVAL",
    )
    refund_daemon_inactivity_threshold: Duration = Field(
        default_factory=lambda: Duration(hours=24),
        alias="REFUND_DAEMON_INACTIVITY_THRESHOLD",
    )
    refund_daemon_dispatch_concurrency: int = Field(
        default=5, ge=1, le=100, alias="REFUND_DAEMON_DISPATCH_CONCURRENCY"
    )

    email_url_host: str = Field(default="myethersub.com", alias="EMAIL_URL_HOST")
    sendgrid_api_key: Optional[SecretStr] = Field(default=None, alias="SENDGRID_API_KEY")
    smtp_host: Optional[str] = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: Optional[str] = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: Optional[SecretStr] = Field(default=None, alias="SMTP_PASSWORD")
    default_from_email: str = Field(default="noreply@myethersub.com", alias="DEFAULT_FROM_EMAIL")
    default_from_name: str = Field(default="EtherSub", alias="DEFAULT_FROM_NAME")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, value: str) -> str:
        """Validate database URL is a SQLAlchemy URL for a supported backend."""
        lowered = value.lower()
        if not lowered.startswith(("sqlite:", "mysql", "postgresql")):
            raise ValueError("DATABASE_URL must be a sqlite, mysql or postgresql URL")
        return value

    @field_validator("email_url_host")
    @classmethod
    def validate_email_url_host(cls, value: str) -> str:
        normalized = value.strip().rstrip("/")
        if not normalized or "://" in normalized:
            raise ValueError("EMAIL_URL_HOST must be a bare host name")
        return normalized


@dataclass(frozen=True)
class DaemonConfig:
    """Refund daemon configuration, built once at startup and never mutated."""

    enabled: bool
    scan_interval: timedelta
    inactivity_threshold: timedelta
    dispatch_concurrency: int = 5
    email_url_host: str = "myethersub.com"

    def __post_init__(self) -> None:
        if self.scan_interval <= timedelta(0):
            raise ConfigError("Refund daemon scan interval must be greater than zero")
        if self.inactivity_threshold <= timedelta(0):
            raise ConfigError("Refund daemon inactivity threshold must be greater than zero")
        if self.dispatch_concurrency < 1:
            raise ConfigError("Refund daemon dispatch concurrency must be at least 1")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


def load_settings() -> Settings:
    """Return the cached settings, raising ConfigError when the environment is invalid."""
    try:
        return get_settings()
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc


def load_daemon_config(settings: Settings | None = None) -> DaemonConfig:
    """Build the refund daemon configuration, raising ConfigError when it is unusable."""
    settings = settings or load_settings()
    return DaemonConfig(
        enabled=settings.refund_daemon_enabled,
        scan_interval=settings.refund_daemon_interval.to_timedelta(),
        inactivity_threshold=settings.refund_daemon_inactivity_threshold.to_timedelta(),
        dispatch_concurrency=settings.refund_daemon_dispatch_concurrency,
        email_url_host=settings.email_url_host,
    )
