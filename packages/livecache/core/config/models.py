"""Configuration models for livecache."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConfigBase(BaseModel):
    """Base class for livecache configurations.

    Provides common functionality for loading from files with defaults.
    Subclasses must implement default_path() to specify their default location.
    """

    model_config = ConfigDict(extra="ignore")  # Forward compatibility

    @classmethod
    def default_path(cls) -> Path:
        """Return the default config file path for this config type."""
        raise NotImplementedError(f"{cls.__name__} must implement default_path()")

    @classmethod
    def load_or_default(cls, path: Path | str | None = None) -> Self:
        """Load config from path or use default path.

        Args:
            path: Path to config file, or None to use default

        Returns:
            Loaded config instance

        Raises:
            ValidationError: If config is invalid
        """
        from livecache.core.config.loader import load_app_config

        return load_app_config(path)  # type: ignore[return-value]


class ReconnectPolicy(BaseModel):
    """Backoff policy for reopening a dropped backend channel.

    Args:
        max_attempts: Reconnect attempts before the affected entries are errored
        base_delay_s: Base delay in seconds for exponential backoff
        max_delay_s: Maximum delay in seconds (caps exponential growth)
        jitter: Jitter as fraction of delay (0.15 = +/-15% randomization)
    """

    model_config = {"frozen": True}

    max_attempts: int = Field(default=5, ge=1)
    base_delay_s: float = Field(default=0.25, ge=0.0)
    max_delay_s: float = Field(default=10.0, ge=0.0)
    jitter: float = Field(default=0.15, ge=0.0, le=1.0)

    @field_validator("max_delay_s")
    @classmethod
    def validate_max_delay(cls, v: float, info) -> float:
        """Ensure max_delay_s >= base_delay_s."""
        base = info.data.get("base_delay_s", 0.25)
        if v < base:
            raise ValueError("max_delay_s must be >= base_delay_s")
        return v

    def compute_delay(self, attempt: int) -> float:
        """Compute reconnect delay with exponential backoff and jitter.

        Args:
            attempt: Attempt number (1-indexed)

        Returns:
            Delay in seconds before the attempt
        """
        delay: float = min(self.max_delay_s, self.base_delay_s * (2 ** (attempt - 1)))
        if self.jitter > 0:
            spread: float = delay * self.jitter
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay


class HttpBackendConfig(BaseModel):
    """HTTP backend transport settings."""

    model_config = {"frozen": True}

    timeout_s: float = Field(default=10.0, gt=0)
    connect_timeout_s: float = Field(default=5.0, gt=0)
    # None keeps a quiet subscription stream open indefinitely
    stream_read_timeout_s: float | None = Field(default=None, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    user_agent: str = "livecache/0.1"
    query_path: str = "/api/query"
    subscribe_path: str = "/api/subscribe"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    structured: bool = False


class LiveCacheConfig(ConfigBase):
    """Application-level configuration (shared by every scope)."""

    backend_url: str | None = Field(
        default=None,
        description="Opaque backend connection string (load from env: LIVECACHE_BACKEND_URL)",
    )
    grace_period_s: float = Field(
        default=2.0,
        ge=0.0,
        description="Delay before closing a subscription whose last reader went away",
    )
    gc_time_s: float | None = Field(
        default=300.0,
        ge=0.0,
        description="Idle time before an unwatched client cache entry is evicted (None disables)",
    )
    reconnect: ReconnectPolicy = ReconnectPolicy()
    http: HttpBackendConfig = HttpBackendConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def default_path(cls) -> Path:
        """Default path for application config."""
        return Path("livecache.json")
