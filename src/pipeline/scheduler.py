# src/pipeline/scheduler.py — v2
"""Pipeline scheduler — execute an ExecutionPlan against a PipelineContext.

Phases run strictly in order. A sequential phase runs its steps one at a
time; a parallel phase launches all of them (bounded by a semaphore) and
joins before the next phase. Every invocation goes through the fault
recovery engine, so step errors never escape; a critical step that ends
`failed` aborts the rest of the plan and the partial result is returned.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Literal, Union

from pydantic import BaseModel, Field

from callagents.cache.optimizer import StepInvoker
from callagents.core.models import DegradationLevel, worst_degradation
from callagents.llm.base_client import BaseLLMClient
from callagents.logging.context import set_phase_context, set_run_context, set_step_context
from callagents.pipeline.planner import ExecutionPlan, PlannedStep, validate_plan
from callagents.pipeline.plugin_kit.models import AgentExecutionConfig, AgentOutput
from callagents.pipeline.state import PipelineContext, StepResult

if TYPE_CHECKING:
    from callagents.pipeline.registry import AgentRegistry
    from callagents.recovery.engine import FaultRecoveryEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_PARALLEL_STEPS = 5

LLMFactory = Union[Callable[[str], BaseLLMClient], BaseLLMClient]


class PipelineResult(BaseModel):
    """Aggregate outcome of one pipeline run."""

    run_id: str
    call_type: str | None = None
    status: Literal["completed", "degraded", "aborted"]
    success: bool
    degradation: DegradationLevel
    steps: dict[str, StepResult] = Field(default_factory=dict)
    steps_executed: list[str] = Field(default_factory=list)
    steps_failed: list[str] = Field(default_factory=list)
    steps_skipped: list[str] = Field(default_factory=list)
    aborted_steps: list[str] = Field(default_factory=list)
    aborted_by: str | None = None
    warnings: list[str] = Field(default_factory=list)
    total_tokens: int = 0
    total_llm_calls: int = 0
    estimated_cost_usd: float = 0.0
    duration_ms: int = 0

    def output(self, step: str) -> AgentOutput | None:
        result = self.steps.get(step)
        return result.output if result is not None else None


def summarize_run(
    context: PipelineContext,
    aborted_by: str | None = None,
    aborted_steps: list[str] | None = None,
    duration_ms: int = 0,
) -> PipelineResult:
    """Build the aggregate result from the context's recorded StepResults."""
    aborted_steps = aborted_steps or []
    results = context.results
    failed = context.steps_by_status("failed")
    aborted = aborted_by is not None

    if aborted or failed:
        degradation: DegradationLevel = "severe"
    else:
        degradation = worst_degradation([r.degradation for r in results.values()])

    if aborted:
        status = "aborted"
    elif failed or degradation != "none":
        status = "degraded"
    else:
        status = "completed"

    warnings = context.all_warnings()
    if aborted:
        warnings.append(
            f"Critical step '{aborted_by}' failed; aborted: {', '.join(aborted_steps) or 'none'}"
        )

    return PipelineResult(
        run_id=context.run_id,
        call_type=context.call_type,
        status=status,
        success=not aborted and not failed,
        degradation=degradation,
        steps=dict(results),
        steps_executed=[n for n, r in results.items() if r.status != "skipped"],
        steps_failed=failed,
        steps_skipped=context.steps_by_status("skipped"),
        aborted_steps=list(aborted_steps),
        aborted_by=aborted_by,
        warnings=warnings,
        total_tokens=context.total_tokens,
        total_llm_calls=context.total_llm_calls,
        estimated_cost_usd=context.estimated_cost_usd,
        duration_ms=duration_ms,
    )


class PipelineScheduler:
    """Execute plans phase by phase.

    Args:
        registry: Initialized AgentRegistry.
        recovery: Fault recovery engine wrapping every invocation.
        invoker: Cache/batching layer in front of every step.
        llm_factory: Callable(step_name) -> BaseLLMClient, or a single client.
        max_parallel_steps: Concurrency bound inside a parallel phase.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        recovery: FaultRecoveryEngine,
        invoker: StepInvoker | None = None,
        llm_factory: LLMFactory | None = None,
        max_parallel_steps: int = DEFAULT_MAX_PARALLEL_STEPS,
    ) -> None:
        self._registry = registry
        self._recovery = recovery
        self._invoker = invoker or StepInvoker()
        self._llm_factory = llm_factory
        self._max_parallel_steps = max_parallel_steps

    async def run(self, plan: ExecutionPlan, context: PipelineContext) -> PipelineResult:
        """Execute all phases of plan.

        Raises:
            PlanError: If the plan references an unregistered step.
        """
        validate_plan(plan, self._registry)
        start_ns = time.monotonic_ns()
        set_run_context(context.metadata.call_id, context.run_id)
        semaphore = asyncio.Semaphore(self._max_parallel_steps)

        aborted_by: str | None = None
        aborted_steps: list[str] = []

        for phase_idx, phase in enumerate(plan.phases):
            if aborted_by is not None:
                aborted_steps.extend(phase.step_names)
                continue

            set_phase_context(phase.name)
            logger.info(
                "Phase %d/%d '%s' (%s): %s",
                phase_idx + 1,
                len(plan.phases),
                phase.name,
                "parallel" if phase.parallel else "sequential",
                phase.step_names,
            )

            if phase.parallel:
                outcomes = await asyncio.gather(
                    *(self._run_bounded(semaphore, entry, context) for entry in phase.steps)
                )
                for result, config in outcomes:
                    if aborted_by is None and config.critical and result.status == "failed":
                        aborted_by = result.step
            else:
                for entry in phase.steps:
                    if aborted_by is not None:
                        aborted_steps.append(entry.name)
                        continue
                    result, config = await self._run_step(entry, context)
                    if config.critical and result.status == "failed":
                        aborted_by = result.step

            if aborted_by is not None:
                logger.error(
                    "Critical step '%s' failed, aborting remaining plan", aborted_by
                )

        set_phase_context(None)
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        pipeline_result = summarize_run(context, aborted_by, aborted_steps, duration_ms)

        logger.info(
            "Pipeline %s: %d executed, %d failed, %d skipped, %d aborted, "
            "degradation=%s, %dms",
            pipeline_result.status,
            len(pipeline_result.steps_executed),
            len(pipeline_result.steps_failed),
            len(pipeline_result.steps_skipped),
            len(aborted_steps),
            pipeline_result.degradation,
            duration_ms,
        )
        return pipeline_result

    async def _run_bounded(
        self, semaphore: asyncio.Semaphore, entry: PlannedStep, context: PipelineContext
    ) -> tuple[StepResult, AgentExecutionConfig]:
        async with semaphore:
            return await self._run_step(entry, context)

    async def _run_step(
        self, entry: PlannedStep, context: PipelineContext
    ) -> tuple[StepResult, AgentExecutionConfig]:
        """Run one step to a terminal StepResult and record it."""
        agent = self._registry.get_or_raise(entry.name)
        config = agent.config.merged(entry.override)
        set_step_context(agent.name)
        try:
            if not agent.should_run(context):
                missing = [d for d in agent.dependencies if not context.has_completed(d)]
                logger.info("Skipping '%s': dependencies not completed %s", agent.name, missing)
                result = StepResult(step=agent.name, status="skipped")
            else:
                llm = self._get_llm(agent.name)
                logger.debug("Running step '%s'", agent.name)
                call = self._invoker.call(agent, context, llm)
                result = await self._recovery.execute(
                    agent, context, config, call, abandon=call.abandon
                )
                logger.info(
                    "Step '%s' %s (attempts=%d, degradation=%s, %dms)",
                    agent.name, result.status, result.attempts,
                    result.degradation, result.duration_ms,
                )
            context.record_result(result)
        finally:
            set_step_context(None)
        return result, config

    def _get_llm(self, step: str) -> BaseLLMClient:
        """Get LLM client for a specific step."""
        if self._llm_factory is None:
            raise RuntimeError(f"No LLM factory configured for step '{step}'")
        if isinstance(self._llm_factory, BaseLLMClient):
            return self._llm_factory
        return self._llm_factory(step)
