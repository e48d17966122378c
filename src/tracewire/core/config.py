"""SDK configuration for Tracewire clients."""
from __future__ import annotations

from functools import lru_cache
import logging
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger("tracewire.config")

DEFAULT_BASE_URL = "https://cloud.tracewire.dev"


class Settings(BaseSettings):
    """Recognised client options, loaded from keyword overrides and environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TRACEWIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Root URL of the collection API.")
    public_key: Optional[str] = Field(default=None, description="Project public key.")
    secret_key: Optional[str] = Field(default=None, description="Project secret key.")
    flush_at: int = Field(default=10, description="Queue length that triggers an immediate flush.")
    flush_interval: float = Field(default=1.0, ge=0, description="Seconds before a pending flush timer fires.")
    queue_capacity: int = Field(default=100_000, gt=0, description="Maximum number of buffered events.")
    max_batch_size: int = Field(default=100, gt=0, description="Maximum events per ingestion request.")
    cache_ttl_seconds: float = Field(default=60, ge=0, description="Prompt cache freshness window.")
    upload_max_retries: int = Field(default=3, ge=0, description="Retries for a media upload PUT.")
    upload_base_delay_ms: float = Field(default=1000, ge=0, description="Base delay of the upload backoff.")
    upload_max_jitter_ms: float = Field(default=1000, ge=0, description="Upper bound of the random backoff jitter.")
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        validation_alias="TRACEWIRE_TIMEOUT",
        description="Per-request transport timeout.",
    )
    max_connections: int = Field(default=10, gt=0, description="Connection pool size of the HTTP client.")
    media_max_depth: int = Field(default=10, ge=0, description="Traversal depth when scanning payloads for media.")
    max_event_size_bytes: int = Field(
        default=1_000_000, gt=0, description="Serialized body size above which large fields are truncated."
    )
    sample_rate: Optional[float] = Field(default=None, description="Fraction of traces to keep, between 0 and 1.")
    environment: Optional[str] = Field(
        default=None,
        validation_alias="TRACEWIRE_TRACING_ENVIRONMENT",
        description="Environment tag applied to traces and scores.",
    )
    release: Optional[str] = Field(default=None, description="Release tag applied to traces.")
    enabled: bool = Field(default=True, description="Disable to turn every enqueue into a no-op.")
    log_level: str = Field(default="WARNING", description="Level used by setup_logging.")

    @field_validator("base_url", mode="after")
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("flush_at", mode="after")
    def _clamp_flush_at(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("sample_rate", mode="after")
    def _check_sample_rate(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not 0 <= value <= 1:
            logger.warning("Sample rate must be between 0 and 1, got %s. Ignoring setting.", value)
            return None
        return value


def resolve_settings(**overrides: Any) -> Settings:
    """Build settings from explicit overrides, the environment and defaults, in that order."""

    explicit = {key: value for key, value in overrides.items() if value is not None}
    unknown = set(explicit) - set(Settings.model_fields)
    if unknown:
        raise TypeError(f"Unknown Tracewire option(s): {', '.join(sorted(unknown))}")
    return Settings(**explicit)


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings built from the environment alone."""

    return resolve_settings()
