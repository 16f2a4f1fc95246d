"""
Converge Config - Configuration models.

Pydantic models for type-safe configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from converge.config.constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE,
    DEFAULT_RETRY_INITIAL_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
    MAX_CONCURRENCY_LIMIT,
    STATE_DB_NAME,
)
from converge.core.resilience import RetryPolicy


class GeneralConfig(BaseModel):
    """General application settings."""

    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="warning", description="Console log level"
    )
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Data directory path")


class RetryConfig(BaseModel):
    """Backoff for transient provider errors."""

    max_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=1, le=20)
    initial_delay: float = Field(default=DEFAULT_RETRY_INITIAL_DELAY, ge=0.0, le=60.0)
    max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY, ge=0.0, le=600.0)
    exponential_base: float = Field(default=DEFAULT_RETRY_BASE, ge=1.0, le=10.0)

    @model_validator(mode="after")
    def _check_delays(self) -> RetryConfig:
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
        )


class EngineConfig(BaseModel):
    """Plan/apply engine settings."""

    max_concurrency: int = Field(
        default=DEFAULT_MAX_CONCURRENCY,
        ge=1,
        le=MAX_CONCURRENCY_LIMIT,
        description="Maximum provider calls in flight",
    )
    refresh: bool = Field(default=True, description="Read remote state before planning")
    retry: RetryConfig = Field(default_factory=RetryConfig)


class StateConfig(BaseModel):
    """State store settings."""

    path: Path | None = Field(default=None, description="SQLite state file (default: data_dir/state.db)")


class Config(BaseModel):
    """Complete Converge configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    @property
    def state_path(self) -> Path:
        return self.state.path or (self.general.data_dir / STATE_DB_NAME)
