# src/pipeline/orchestrator.py — v2
"""Extraction orchestrator — the explicitly constructed pipeline service.

Owns the process-wide shared components (registry, circuit breakers,
result cache, batcher) and hands them to each run, so nothing is a hidden
global. One instance serves any number of concurrent extract() calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from callagents.cache.batching import StepBatcher
from callagents.cache.optimizer import StepInvoker
from callagents.cache.result_cache import ResultCache
from callagents.llm.prompt_optimizer import OptimizingLLMClient, PromptOptimizer
from callagents.logging.context import clear_context, set_run_context
from callagents.pipeline.agents.foundation import DEFAULT_CALL_TYPE
from callagents.pipeline.planner import CLASSIFICATION_PHASE, build_plan, classification_plan
from callagents.pipeline.registry import AgentRegistry, build_default_registry
from callagents.pipeline.scheduler import PipelineResult, PipelineScheduler, summarize_run
from callagents.pipeline.state import PipelineContext
from callagents.recovery.circuit_breaker import BreakerConfig, CircuitBreakerBoard
from callagents.recovery.engine import FaultRecoveryEngine
from callagents.recovery.retry import RetryConfig
from callagents.tracking.agent_tracker import aggregate_by_step, records_from_context
from callagents.tracking.models import StepRecord

if TYPE_CHECKING:
    from callagents.api.models import ExtractionRequest
    from callagents.config.settings import Settings
    from callagents.llm.base_client import BaseLLMClient

logger = logging.getLogger(__name__)

EARLY_EXIT_CALL_TYPES = frozenset({"wrong_number"})
MAX_TRACKED_RECORDS = 10_000


class ExtractionOrchestrator:
    """Run call extractions end to end.

    Args:
        settings: Application settings.
        registry: AgentRegistry (initialized here if it is not yet).
        llm_client: Completion client shared by all steps.
        breakers: Shared circuit breaker board.
        cache: Shared result cache, or None to disable caching.
        batcher: Shared step batcher, or None to disable batching.
        optimizer: Optional prompt optimizer applied to every step.
        sleep: Backoff delay function (injectable for tests).
    """

    def __init__(
        self,
        settings: Settings,
        registry: AgentRegistry,
        llm_client: BaseLLMClient,
        breakers: CircuitBreakerBoard | None = None,
        cache: ResultCache | None = None,
        batcher: StepBatcher | None = None,
        optimizer: PromptOptimizer | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not registry.initialized:
            registry.initialize()
        self._settings = settings
        self._registry = registry
        self._llm_client = llm_client
        self._cache = cache
        self._batcher = batcher
        self._optimizer = optimizer
        self._recovery = FaultRecoveryEngine(
            breakers=breakers or CircuitBreakerBoard(breaker_config(settings)),
            retry_config=retry_config(settings),
            partial_confidence_cap=settings.partial_confidence_cap,
            default_timeout_s=settings.step_default_timeout_s,
            sleep=sleep,
        )
        self._invoker = StepInvoker(cache=cache, batcher=batcher)
        self._scheduler = PipelineScheduler(
            registry=registry,
            recovery=self._recovery,
            invoker=self._invoker,
            llm_factory=self._llm_for,
            max_parallel_steps=settings.max_parallel_steps,
        )
        self._records: deque[StepRecord] = deque(maxlen=MAX_TRACKED_RECORDS)
        self._runs = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        llm_client: BaseLLMClient,
        registry: AgentRegistry | None = None,
    ) -> ExtractionOrchestrator:
        """Build the orchestrator and its shared components from settings."""
        cache = (
            ResultCache(ttl_s=settings.cache_ttl_s, max_entries=settings.cache_max_entries)
            if settings.cache_enabled
            else None
        )
        batcher = (
            StepBatcher(window_s=settings.batch_window_s, max_batch_size=settings.batch_max_size)
            if settings.batching_enabled
            else None
        )
        optimizer = (
            PromptOptimizer(strip_examples_above=settings.prompt_strip_examples_above)
            if settings.prompt_optimization_enabled
            else None
        )
        return cls(
            settings=settings,
            registry=registry or build_default_registry(),
            llm_client=llm_client,
            cache=cache,
            batcher=batcher,
            optimizer=optimizer,
        )

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def recovery(self) -> FaultRecoveryEngine:
        return self._recovery

    @property
    def invoker(self) -> StepInvoker:
        return self._invoker

    async def extract(self, request: ExtractionRequest) -> PipelineResult:
        """Run the pipeline for one call.

        Without a call type, the classification phase runs first and its
        primary_type selects the plan; wrong_number calls stop there.
        """
        if self._cache is not None:
            self._cache.start_sweeper(self._settings.cache_sweep_interval_s)

        start_ns = time.monotonic_ns()
        context = PipelineContext(
            call_type=request.call_type,
            transcript=request.transcript,
            utterances=request.utterances,
            metadata=request.metadata,
        )
        set_run_context(context.metadata.call_id, context.run_id)
        try:
            if request.call_type is not None:
                result = await self._scheduler.run(build_plan(request.call_type), context)
            else:
                result = await self._classify_then_run(context)

            result = result.model_copy(
                update={"duration_ms": (time.monotonic_ns() - start_ns) // 1_000_000}
            )
            self._track(context)
            logger.info(
                "Extraction %s for call %s (type=%s, degradation=%s)",
                result.status, context.metadata.call_id, context.call_type, result.degradation,
            )
            return result
        finally:
            clear_context()

    async def _classify_then_run(self, context: PipelineContext) -> PipelineResult:
        first = classification_plan()
        classified = await self._scheduler.run(first, context)
        if classified.status == "aborted":
            return classified

        data = context.get_output_data("classification") or {}
        context.call_type = data.get("primary_type", DEFAULT_CALL_TYPE)
        logger.info("Call classified as '%s'", context.call_type)

        if context.call_type in EARLY_EXIT_CALL_TYPES:
            logger.info("Call type '%s' needs no extraction, stopping", context.call_type)
            return summarize_run(context)

        plan = build_plan(context.call_type).without_phase(CLASSIFICATION_PHASE)
        return await self._scheduler.run(plan, context)

    def _llm_for(self, step: str) -> BaseLLMClient:
        if self._optimizer is None:
            return self._llm_client
        return OptimizingLLMClient(self._llm_client, self._optimizer, step)

    def _track(self, context: PipelineContext) -> None:
        self._runs += 1
        self._records.extend(records_from_context(context))
        if self._optimizer is not None:
            for name, result in context.results.items():
                if result.status == "completed" and result.output is not None:
                    self._optimizer.observe(name, result.output.confidence.value)

    # --- Introspection ---

    def stats(self) -> dict[str, Any]:
        return {
            "runs": self._runs,
            "steps": {
                name: s.model_dump() for name, s in aggregate_by_step(list(self._records)).items()
            },
            "recovery": self._recovery.stats(),
            "invocations": self._invoker.stats(),
            "prompt_chars_saved": self._optimizer.chars_saved if self._optimizer else 0,
        }

    def health_check(self) -> dict[str, Any]:
        health = self._recovery.health_check()
        registry_errors = self._registry.validate_dependencies()
        issues = [*health["issues"], *registry_errors]
        return {
            "healthy": not issues,
            "issues": issues,
            "open_breakers": health["open_breakers"],
            "registered_steps": len(self._registry),
        }

    async def aclose(self) -> None:
        """Stop background tasks of the shared cache and batcher."""
        if self._cache is not None:
            await self._cache.aclose()
        if self._batcher is not None:
            await self._batcher.aclose()


def breaker_config(settings: Settings) -> BreakerConfig:
    return BreakerConfig(
        failure_threshold=settings.breaker_failure_threshold,
        failure_window_s=settings.breaker_failure_window_s,
        reset_timeout_s=settings.breaker_reset_timeout_s,
        half_open_successes=settings.breaker_half_open_successes,
    )


def retry_config(settings: Settings) -> RetryConfig:
    return RetryConfig(
        max_retries=settings.recovery_max_retries,
        base_delay_s=settings.recovery_base_delay_s,
        backoff_factor=settings.recovery_backoff_factor,
        jitter=settings.recovery_jitter,
    )
