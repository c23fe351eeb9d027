# src/logging/context.py — v2
"""Contextual logging support — attach call_id, run_id, phase and step to records.

Context variables are task-local under asyncio, so steps running
concurrently in a parallel phase each log with their own step name.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_call_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "call_id", default=None
)
_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "run_id", default=None
)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phase", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    call_id: str | None = None
    run_id: str | None = None
    phase: str | None = None
    step: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        call_id=_call_id.get(),
        run_id=_run_id.get(),
        phase=_phase.get(),
        step=_step.get(),
    )


def set_run_context(call_id: str, run_id: str) -> None:
    """Set run-level context (called once per pipeline run)."""
    _call_id.set(call_id)
    _run_id.set(run_id)


def set_phase_context(phase: str | None) -> None:
    _phase.set(phase)


def set_step_context(step: str | None) -> None:
    _step.set(step)


def clear_context() -> None:
    """Reset all context variables."""
    _call_id.set(None)
    _run_id.set(None)
    _phase.set(None)
    _step.set(None)
