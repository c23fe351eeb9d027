# src/config/settings.py — v3
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for orchestration tuning: timeouts, concurrency,
recovery policy, circuit breakers, result cache, batching and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from callagents.core.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Scheduler ===
    step_default_timeout_s: float = 30.0
    max_parallel_steps: int = 5

    # === Recovery ===
    recovery_max_retries: int = 3
    recovery_base_delay_s: float = 1.0
    recovery_backoff_factor: float = 2.0
    recovery_jitter: bool = True
    partial_confidence_cap: float = 0.3

    # === Circuit breakers ===
    breaker_failure_threshold: int = 5
    breaker_failure_window_s: float = 300.0
    breaker_reset_timeout_s: float = 60.0
    breaker_half_open_successes: int = 3

    # === Result cache ===
    cache_enabled: bool = True
    cache_ttl_s: float = 300.0
    cache_max_entries: int = 1000
    cache_sweep_interval_s: float = 60.0

    # === Batching ===
    batching_enabled: bool = True
    batch_window_s: float = 0.1
    batch_max_size: int = 10

    # === Prompt optimization (best effort) ===
    prompt_optimization_enabled: bool = False
    prompt_strip_examples_above: float = 0.9

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("partial_confidence_cap", "prompt_strip_examples_above")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:  # noqa: N805
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        for name in (
            "max_parallel_steps",
            "recovery_max_retries",
            "breaker_failure_threshold",
            "breaker_half_open_successes",
            "cache_max_entries",
            "batch_max_size",
        ):
            if getattr(self, name) < 1:
                errors.append(f"{name.upper()} must be >= 1")

        for name in (
            "step_default_timeout_s",
            "breaker_failure_window_s",
            "breaker_reset_timeout_s",
            "cache_ttl_s",
            "cache_sweep_interval_s",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be > 0")

        if self.recovery_base_delay_s < 0 or self.batch_window_s < 0:
            errors.append("RECOVERY_BASE_DELAY_S and BATCH_WINDOW_S must be >= 0")

        if self.recovery_backoff_factor < 1.0:
            errors.append("RECOVERY_BACKOFF_FACTOR must be >= 1")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-call config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
