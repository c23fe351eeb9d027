# src/recovery/circuit_breaker.py — v1
"""Per-step circuit breakers shared by all concurrent pipeline runs.

State machine per step name:
    closed --(failures >= threshold within window)--> open
    open --(reset timeout elapsed, next acquire)--> half_open
    half_open --(N successes)--> closed
    half_open --(any failure)--> open

Each step name has its own asyncio.Lock, so a slow or failing step never
serializes updates for unrelated steps.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from typing import Any, Literal

logger = logging.getLogger(__name__)

BreakerState = Literal["closed", "open", "half_open"]


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    failure_window_s: float = 300.0
    reset_timeout_s: float = 60.0
    half_open_successes: int = 3


@dataclass
class CircuitBreakerState:
    """Breaker bookkeeping for one step name. Times come from the board's clock."""

    step: str
    state: BreakerState = "closed"
    failures: int = 0
    success_count: int = 0
    half_open_in_flight: int = 0
    window_started_at: float | None = None
    last_failure_at: float | None = None
    next_retry_at: float | None = None
    times_opened: int = 0


class CircuitBreakerBoard:
    """All circuit breakers of the process, keyed by step name.

    Args:
        config: Thresholds and timeouts shared by every breaker.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or BreakerConfig()
        self._clock = clock
        self._states: dict[str, CircuitBreakerState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> BreakerConfig:
        return self._config

    def _lock(self, step: str) -> asyncio.Lock:
        lock = self._locks.get(step)
        if lock is None:
            lock = self._locks[step] = asyncio.Lock()
        return lock

    def _get(self, step: str) -> CircuitBreakerState:
        st = self._states.get(step)
        if st is None:
            st = self._states[step] = CircuitBreakerState(step=step)
        return st

    # --- Gate ---

    async def acquire(self, step: str) -> bool:
        """Whether a call to step may proceed.

        An open breaker whose reset timeout has elapsed moves to half_open.
        A half_open breaker admits at most half_open_successes concurrent
        trial calls; every admitted call must be followed by exactly one
        record_success() or record_failure().
        """
        async with self._lock(step):
            st = self._get(step)
            if st.state == "open":
                if st.next_retry_at is not None and self._clock() < st.next_retry_at:
                    return False
                self._transition(st, "half_open")
                st.success_count = 0
                st.half_open_in_flight = 0
            if st.state == "half_open":
                if st.half_open_in_flight >= self._config.half_open_successes:
                    return False
                st.half_open_in_flight += 1
            return True

    # --- Outcomes ---

    async def record_success(self, step: str) -> None:
        async with self._lock(step):
            st = self._get(step)
            if st.state == "half_open":
                st.half_open_in_flight = max(0, st.half_open_in_flight - 1)
                st.success_count += 1
                if st.success_count >= self._config.half_open_successes:
                    self._transition(st, "closed")
                    st.failures = 0
                    st.success_count = 0
                    st.window_started_at = None
            elif st.state == "closed":
                st.failures = 0
                st.window_started_at = None

    async def record_failure(self, step: str) -> None:
        async with self._lock(step):
            st = self._get(step)
            now = self._clock()
            st.last_failure_at = now
            if st.state == "half_open":
                st.half_open_in_flight = max(0, st.half_open_in_flight - 1)
                self._open(st, now)
            elif st.state == "closed":
                if (
                    st.window_started_at is None
                    or now - st.window_started_at > self._config.failure_window_s
                ):
                    st.failures = 0
                    st.window_started_at = now
                st.failures += 1
                if st.failures >= self._config.failure_threshold:
                    self._open(st, now)

    # --- Inspection ---

    def state(self, step: str) -> BreakerState:
        st = self._states.get(step)
        return st.state if st is not None else "closed"

    def get(self, step: str) -> CircuitBreakerState:
        """Copy of the breaker state for step."""
        return replace(self._get(step))

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {step: asdict(st) for step, st in sorted(self._states.items())}

    def open_steps(self) -> list[str]:
        return sorted(s for s, st in self._states.items() if st.state == "open")

    def reset(self, step: str | None = None) -> None:
        """Forget breaker state for one step, or for all steps."""
        if step is None:
            self._states.clear()
        else:
            self._states.pop(step, None)

    # --- Internals ---

    def _open(self, st: CircuitBreakerState, now: float) -> None:
        self._transition(st, "open")
        st.next_retry_at = now + self._config.reset_timeout_s
        st.success_count = 0
        st.half_open_in_flight = 0
        st.times_opened += 1

    def _transition(self, st: CircuitBreakerState, new_state: BreakerState) -> None:
        if st.state == new_state:
            return
        log = logger.warning if new_state == "open" else logger.info
        log(
            "Circuit breaker for '%s': %s -> %s (failures=%d)",
            st.step, st.state, new_state, st.failures,
        )
        st.state = new_state
