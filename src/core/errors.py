# src/core/errors.py — v2
"""Exception hierarchy rooted at PipelineError.

Step errors are always caught by the recovery engine and turned into a
StepResult. Only programming errors (unknown step in a plan, dependency
cycle, bad configuration) are allowed to reach the pipeline caller.
"""

from __future__ import annotations

from typing import Any

_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


class PipelineError(Exception):
    """Base class for all callagents errors."""


class StepError(PipelineError):
    """Raised by a step (or on its behalf) when an invocation fails."""

    kind: str = "unknown"

    def __init__(self, message: str, step: str | None = None) -> None:
        self.step = step
        super().__init__(message)


class StepTimeoutError(StepError):
    """The step did not finish within its timeout."""

    kind = "timeout"

    def __init__(self, step: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Step '{step}' timed out after {timeout_s:.1f}s", step=step)


class StepParseError(StepError):
    """The upstream payload could not be parsed into the step's output shape."""

    kind = "parse"

    def __init__(
        self, message: str, step: str | None = None, raw: str | None = None
    ) -> None:
        self.raw = raw
        super().__init__(message, step=step)


class InvalidOutputError(StepParseError):
    """The step returned an output that failed validation."""


class UpstreamAPIError(StepError):
    """The completion provider rejected or failed the request."""

    kind = "upstream_api"

    def __init__(
        self,
        message: str,
        step: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message, step=step)

    @property
    def transient(self) -> bool:
        """Whether the failure is worth retrying (rate limit, 5xx, network)."""
        if self.status_code is not None:
            return self.status_code in _TRANSIENT_STATUS_CODES
        msg = str(self).lower()
        return any(m in msg for m in ("network", "connection", "unavailable"))


# --- Programming errors: the only ones that escape a pipeline run ---


class RegistryError(PipelineError):
    """Raised when agent loading, lookup or registration fails."""


class PlanError(PipelineError):
    """Raised when a plan references a step that is not registered."""


class DAGError(PipelineError):
    """Raised when the dependency graph is invalid (cycle, missing dep)."""


class ConfigurationError(PipelineError):
    """Raised when configuration is internally inconsistent."""
