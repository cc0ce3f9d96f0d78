"""Application configuration for the orchestration layer.

Defaults give 5 second polling for at most 150 attempts, 3 submission
attempts with a slower first one and a 10 MiB ceiling for direct uploads
to the provider. Secrets come from environment
variables prefixed with ``HUBTASKS_``.
"""

from __future__ import annotations

from typing import Any, cast

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class AppConfig(BaseSettings):
    """Pydantic settings container for the orchestration layer."""

    model_config = cast(Any, SettingsConfigDict(env_prefix="HUBTASKS_", extra="ignore"))

    api_key: str = Field(
        default="",
        description="Provider API key; startup fails when empty.",
    )
    default_region: str = Field(
        default="hongkong",
        description="Region used when a request names none or an unknown one.",
    )
    poll_interval_seconds: float = Field(default=5.0, ge=0.0)
    poll_max_attempts: int = Field(default=150, ge=1)
    settle_delay_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Wait between a success status and reading outputs.",
    )
    submit_max_attempts: int = Field(default=3, ge=1, le=10)
    submit_first_timeout_seconds: float = Field(default=60.0, gt=0)
    submit_retry_timeout_seconds: float = Field(default=30.0, gt=0)
    submit_backoff_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Linear backoff base between submission attempts.",
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for status and outputs requests.",
    )
    cancel_timeout_seconds: float = Field(default=30.0, gt=0)
    upload_threshold_bytes: int = Field(
        default=10 * MIB,
        ge=1,
        description="Files above this size are offloaded to object storage.",
    )
    upload_small_timeout_seconds: float = Field(default=60.0, gt=0)
    upload_large_timeout_seconds: float = Field(default=120.0, gt=0)
    upload_offload_timeout_seconds: float = Field(default=180.0, gt=0)
    upload_max_retries: int = Field(default=3, ge=1, le=10)
    retention_minutes: int = Field(
        default=30,
        ge=1,
        description="How long terminal jobs stay in the registry.",
    )
    sweep_interval_seconds: float = Field(default=300.0, ge=1.0)
    max_in_flight_jobs: int = Field(
        default=32,
        ge=1,
        description="Upper bound on concurrent provider submissions; polling does not count.",
    )
    object_storage_endpoint: str | None = Field(
        default=None,
        description="Base URL accepting PUT uploads for large files.",
    )
    object_storage_public_base_url: str | None = Field(
        default=None,
        description="Public base URL of uploaded objects; defaults to the endpoint.",
    )
    object_storage_token: str | None = None
    object_storage_prefix: str = "large-files"
    history_database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL for archiving evicted jobs; disabled when unset.",
    )
    log_level: str = "INFO"
    http_host: str = "127.0.0.1"
    http_port: int = Field(default=8000, ge=1, le=65535)

    @classmethod
    def build_default(cls) -> "AppConfig":
        """Construct configuration from the environment."""

        return cls()


__all__ = ["AppConfig", "MIB"]
