# src/recovery/errors.py — v1
"""Error classification for recovery decisions.

Two levels: the step-level kind (timeout, parse, upstream_api, unknown)
reported by classify_step_error(), and the recovery class (transient,
data, other) that selects the recovery strategy.
"""

from __future__ import annotations

import asyncio
import json

from callagents.core.errors import StepParseError, StepTimeoutError, UpstreamAPIError
from callagents.core.models import RecoveryClass
from callagents.pipeline.plugin_kit.models import ClassifiedError

_TIMEOUT_PATTERNS = ("timeout", "timed out")
_TRANSIENT_PATTERNS = ("network", "econnrefused", "connection reset", "429", "502", "503")
_DATA_PATTERNS = ("json", "parse", "invalid", "malformed")


def classify_step_error(error: BaseException) -> ClassifiedError:
    """Map a raised error to its step-level kind.

    Typed errors are classified by type; anything else falls back to
    message patterns before being reported as unknown.
    """
    message = str(error) or type(error).__name__

    if isinstance(error, (StepTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ClassifiedError(kind="timeout", recoverable=True, message=message)
    if isinstance(error, (StepParseError, json.JSONDecodeError)):
        return ClassifiedError(kind="parse", recoverable=True, message=message)
    if isinstance(error, UpstreamAPIError):
        return ClassifiedError(
            kind="upstream_api", recoverable=error.transient, message=message
        )
    if isinstance(error, ConnectionError):
        return ClassifiedError(kind="upstream_api", recoverable=True, message=message)

    lowered = message.lower()
    if any(p in lowered for p in _TIMEOUT_PATTERNS):
        return ClassifiedError(kind="timeout", recoverable=True, message=message)
    if any(p in lowered for p in _TRANSIENT_PATTERNS):
        return ClassifiedError(kind="upstream_api", recoverable=True, message=message)
    if any(p in lowered for p in _DATA_PATTERNS):
        return ClassifiedError(kind="parse", recoverable=True, message=message)
    return ClassifiedError(kind="unknown", recoverable=False, message=message)


def recovery_class(classified: ClassifiedError) -> RecoveryClass:
    """Timeouts and recoverable upstream errors are transient; parse errors are data."""
    if classified.kind == "timeout":
        return "transient"
    if classified.kind == "upstream_api" and classified.recoverable:
        return "transient"
    if classified.kind == "parse":
        return "data"
    return "other"
