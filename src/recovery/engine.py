# src/recovery/engine.py — v2
"""Fault recovery engine: every step invocation runs through here.

Per attempt: circuit breaker gate, invocation under the step timeout, then
either success bookkeeping or the recovery cascade:

1. transient error with attempts left -> backoff and retry
2. data error -> partial extraction, confidence capped
3. last good output of this step in this process -> degraded:minimal
4. non-critical step -> default output (degraded:moderate), or minimal
   output (degraded:severe) when the step has none
5. critical step -> failed

An open breaker skips the invocation and goes straight to 3-5. Step
errors never propagate out of execute(). A timed-out invocation is
abandoned: it keeps running, its result is discarded and the optional
abandon() hook lets the invocation layer release what it was holding.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from callagents.core.confidence import aggregate_confidence, cap_confidence
from callagents.core.errors import StepTimeoutError
from callagents.core.models import RecoveryClass
from callagents.pipeline.plugin_kit.models import (
    AgentExecutionConfig,
    AgentMetadata,
    AgentOutput,
    ClassifiedError,
)
from callagents.pipeline.state import StepResult
from callagents.recovery.circuit_breaker import CircuitBreakerBoard
from callagents.recovery.errors import recovery_class
from callagents.recovery.retry import RetryConfig, compute_delay

if TYPE_CHECKING:
    from callagents.pipeline.plugin_kit.base_agent import BaseAgent
    from callagents.pipeline.state import PipelineContext

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT_S = 30.0
DEFAULT_PARTIAL_CONFIDENCE_CAP = 0.3

Invoke = Callable[[], Awaitable[AgentOutput]]


@dataclass(frozen=True)
class ErrorContext:
    """One failed attempt, linked to the attempts before it."""

    step: str
    error: BaseException
    classified: ClassifiedError
    recovery_class: RecoveryClass
    attempt: int
    timestamp: float
    previous: tuple[ErrorContext, ...] = field(default=())


def minimal_output(agent: BaseAgent) -> AgentOutput:
    """Empty zero-confidence output used when nothing better exists."""
    return AgentOutput(
        data={},
        confidence=aggregate_confidence({"minimal_output": 0.0}),
        metadata=AgentMetadata(agent_name=agent.name, agent_version=agent.version),
        warnings=[f"Minimal degraded output for '{agent.name}'"],
    )


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned invocation finished with error: %s", exc)
    else:
        logger.debug("Abandoned invocation finished, result discarded")


class FaultRecoveryEngine:
    """Runs step invocations with retry, circuit breaking and fallbacks.

    Args:
        breakers: Process-wide breaker board shared across runs.
        retry_config: Backoff policy for transient errors.
        partial_confidence_cap: Confidence ceiling of partial extraction.
        default_timeout_s: Timeout for steps that declare none.
        sleep: Awaitable delay function (injectable for tests).
    """

    def __init__(
        self,
        breakers: CircuitBreakerBoard | None = None,
        retry_config: RetryConfig | None = None,
        partial_confidence_cap: float = DEFAULT_PARTIAL_CONFIDENCE_CAP,
        default_timeout_s: float = DEFAULT_STEP_TIMEOUT_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._breakers = breakers or CircuitBreakerBoard()
        self._retry = retry_config or RetryConfig()
        self._partial_cap = partial_confidence_cap
        self._default_timeout_s = default_timeout_s
        self._sleep = sleep
        self._fallback_store: dict[str, AgentOutput] = {}
        self._error_counts: Counter[str] = Counter()
        self._strategy_counts: Counter[str] = Counter()

    @property
    def breakers(self) -> CircuitBreakerBoard:
        return self._breakers

    def remember(self, step: str, output: AgentOutput) -> None:
        """Store the last good output of a step for later fallback."""
        self._fallback_store[step] = output

    def has_fallback(self, step: str) -> bool:
        return step in self._fallback_store

    async def execute(
        self,
        agent: BaseAgent,
        context: PipelineContext,
        config: AgentExecutionConfig,
        invoke: Invoke,
        abandon: Callable[[], None] | None = None,
    ) -> StepResult:
        """Invoke a step and always return a terminal StepResult."""
        name = agent.name
        timeout_s = config.timeout_s or self._default_timeout_s
        start_ns = time.monotonic_ns()
        history: list[ErrorContext] = []
        attempt = 0

        while True:
            if not await self._breakers.acquire(name):
                logger.warning("Circuit open for '%s', skipping invocation", name)
                last = history[-1] if history else None
                return self._fallback(
                    agent, config, last, attempt, start_ns, short_circuit=True
                )

            attempt += 1
            try:
                output = await self._invoke_with_timeout(name, invoke, timeout_s, abandon)
            except Exception as exc:
                await self._breakers.record_failure(name)
                classified = agent.classify_error(exc)
                err_ctx = ErrorContext(
                    step=name,
                    error=exc,
                    classified=classified,
                    recovery_class=recovery_class(classified),
                    attempt=attempt,
                    timestamp=time.time(),
                    previous=tuple(history),
                )
                history.append(err_ctx)
                self._error_counts[name] += 1
                logger.warning(
                    "Step '%s' failed (attempt %d/%d, %s/%s): %s",
                    name, attempt, self._retry.max_retries,
                    classified.kind, err_ctx.recovery_class, classified.message,
                )

                if (
                    err_ctx.recovery_class == "transient"
                    and config.retry_on_failure
                    and attempt < self._retry.max_retries
                ):
                    delay = compute_delay(self._retry, attempt)
                    self._strategy_counts["retry"] += 1
                    logger.info("Retrying '%s' in %.2fs", name, delay)
                    await self._sleep(delay)
                    continue
                return self._recover(agent, context, config, err_ctx, start_ns)

            await self._breakers.record_success(name)
            self.remember(name, output)
            strategy = "retry" if attempt > 1 else "none"
            return StepResult(
                step=name,
                status="completed",
                output=output,
                strategy=strategy,
                attempts=attempt,
                duration_ms=_elapsed_ms(start_ns),
            )

    async def _invoke_with_timeout(
        self,
        name: str,
        invoke: Invoke,
        timeout_s: float,
        abandon: Callable[[], None] | None,
    ) -> AgentOutput:
        """Await invoke() for at most timeout_s; on expiry it is abandoned, not cancelled."""
        task = asyncio.ensure_future(invoke())
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout_s)
        except asyncio.TimeoutError:
            task.add_done_callback(_discard_late_result)
            if abandon is not None:
                abandon()
            raise StepTimeoutError(name, timeout_s) from None

    def _recover(
        self,
        agent: BaseAgent,
        context: PipelineContext,
        config: AgentExecutionConfig,
        err_ctx: ErrorContext,
        start_ns: int,
    ) -> StepResult:
        if err_ctx.recovery_class == "data":
            partial = agent.partial_output(context, err_ctx.error)
            if partial is not None:
                capped = cap_confidence(
                    partial.confidence, self._partial_cap, "partial extraction"
                )
                logger.info("Step '%s' recovered by partial extraction", agent.name)
                return self._result(
                    agent.name, "degraded", "moderate", "partial", err_ctx,
                    err_ctx.attempt, start_ns,
                    output=partial.model_copy(update={"confidence": capped}),
                )
        return self._fallback(agent, config, err_ctx, err_ctx.attempt, start_ns)

    def _fallback(
        self,
        agent: BaseAgent,
        config: AgentExecutionConfig,
        err_ctx: ErrorContext | None,
        attempts: int,
        start_ns: int,
        short_circuit: bool = False,
    ) -> StepResult:
        name = agent.name
        cached = self._fallback_store.get(name)
        if cached is not None:
            logger.info("Step '%s' using last good output", name)
            return self._result(
                name, "degraded", "minimal", "cached", err_ctx, attempts, start_ns,
                output=cached, warning="Using result from a previous successful run",
            )

        if not config.critical:
            default = agent.default_output()
            if default is not None:
                logger.info("Non-critical step '%s' using default output", name)
                return self._result(
                    name, "degraded", "moderate", "default", err_ctx, attempts,
                    start_ns, output=default,
                )
            logger.info("Non-critical step '%s' using minimal output", name)
            return self._result(
                name, "degraded", "severe", "minimal", err_ctx, attempts, start_ns,
                output=minimal_output(agent),
            )

        strategy = "circuit_open" if short_circuit else "failed"
        logger.error("Critical step '%s' failed with no fallback (%s)", name, strategy)
        return self._result(
            name, "failed", "severe", strategy, err_ctx, attempts, start_ns,
            warning="Circuit breaker open" if short_circuit else None,
        )

    def _result(
        self,
        step: str,
        status: str,
        degradation: str,
        strategy: str,
        err_ctx: ErrorContext | None,
        attempts: int,
        start_ns: int,
        output: AgentOutput | None = None,
        warning: str | None = None,
    ) -> StepResult:
        self._strategy_counts[strategy] += 1
        warnings = [warning] if warning else []
        if err_ctx is not None:
            warnings.append(f"{err_ctx.classified.kind} error: {err_ctx.classified.message}")
        return StepResult(
            step=step,
            status=status,
            output=output,
            error=err_ctx.classified.message if err_ctx else None,
            error_kind=err_ctx.classified.kind if err_ctx else None,
            degradation=degradation,
            strategy=strategy,
            attempts=attempts,
            duration_ms=_elapsed_ms(start_ns),
            warnings=warnings,
        )

    # --- Introspection ---

    def stats(self) -> dict[str, Any]:
        return {
            "breakers": self._breakers.snapshot(),
            "errors_by_step": dict(self._error_counts),
            "strategies": dict(self._strategy_counts),
            "fallback_outputs": sorted(self._fallback_store),
        }

    def health_check(self) -> dict[str, Any]:
        open_steps = self._breakers.open_steps()
        issues = [f"Circuit breaker open for '{step}'" for step in open_steps]
        return {"healthy": not issues, "issues": issues, "open_breakers": open_steps}


def _elapsed_ms(start_ns: int) -> int:
    return (time.monotonic_ns() - start_ns) // 1_000_000
