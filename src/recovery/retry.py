# src/recovery/retry.py — v1
"""Retry policy with exponential backoff for transient step errors."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for transient errors.

    max_retries is the total number of attempts per step invocation.
    """

    max_retries: int = 3
    base_delay_s: float = 1.0
    backoff_factor: float = 2.0
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay before the retry that follows a failed attempt (1-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** (attempt - 1))
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay
