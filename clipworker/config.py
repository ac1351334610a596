"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from clipworker.constants import (
    DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
    DEFAULT_IDLE_INTERVAL_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
)
from clipworker.exceptions import ConfigurationError


def _default_worker_id() -> str:
    return f"{os.uname().nodename}-{os.getpid()}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database (required)
    database_url: str
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Worker identity and scheduling
    worker_id: str = Field(default_factory=_default_worker_id)
    worker_type: str = "combined"
    worker_poll_interval_seconds: float = 1.0
    worker_idle_interval_seconds: float = DEFAULT_IDLE_INTERVAL_SECONDS
    heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS

    # Claim and retry policy
    claim_strategy: Literal["atomic", "read_update"] = "atomic"
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    retry_backoff_seconds: float = Field(default=DEFAULT_RETRY_BACKOFF_SECONDS, ge=0)

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "clipworker"
    metrics_enabled: bool = False
    prometheus_port: int = 9090
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Object storage
    storage_upload_url: str | None = None
    storage_public_url: str | None = None
    storage_token: str | None = None
    storage_bucket: str = "renders"

    # Discovery APIs
    twitch_client_id: str | None = None
    twitch_client_secret: str | None = None
    youtube_api_key: str | None = None

    # AI short generation
    elevenlabs_api_key: str | None = None
    pexels_api_key: str | None = None

    # Media engine
    media_work_dir: str = "/tmp/clipworker"
    media_font_path: str = "/app/fonts/DejaVuSans.ttf"
    media_download_timeout_seconds: float = 120.0
    media_encode_timeout_seconds: float = 180.0
    http_timeout_seconds: float = 30.0

    @field_validator("database_url", "worker_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


def load_settings(**overrides) -> Settings:
    """
    Build settings, converting validation failures into ConfigurationError.

    Missing required values (DATABASE_URL) are fatal at startup.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        missing = ", ".join(
            ".".join(str(part) for part in err["loc"]) for err in e.errors()
        )
        raise ConfigurationError(f"Invalid worker configuration: {missing}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
