# tests/unit/pipeline/test_unit_scheduler.py — v2
"""Tests for pipeline/scheduler.py — phase execution, abort and aggregation."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from callagents.cache.fingerprint import compute_cache_key
from callagents.cache.optimizer import StepInvoker
from callagents.cache.result_cache import ResultCache
from callagents.core.confidence import aggregate_confidence
from callagents.core.errors import UpstreamAPIError
from callagents.llm.base_client import BaseLLMClient
from callagents.pipeline.planner import ExecutionPlan, Phase, PlannedStep, PlanError
from callagents.pipeline.plugin_kit.base_agent import BaseAgent
from callagents.pipeline.plugin_kit.models import AgentMetadata, AgentOutput
from callagents.pipeline.registry import AgentRegistry
from callagents.pipeline.scheduler import PipelineScheduler
from callagents.pipeline.state import PipelineContext
from callagents.recovery.circuit_breaker import CircuitBreakerBoard
from callagents.recovery.engine import FaultRecoveryEngine
from callagents.recovery.retry import RetryConfig


# --- Helpers ---

def _make_output(name: str, confidence: float = 0.9) -> AgentOutput:
    return AgentOutput(
        data={"result": f"from_{name}"},
        confidence=aggregate_confidence({"model": confidence}),
        metadata=AgentMetadata(
            agent_name=name, agent_version="1.0.0", llm_calls=1, tokens_used=100
        ),
    )


class StubAgent(BaseAgent):
    """Agent that fails with each error in `errors` before succeeding."""

    def __init__(
        self,
        agent_name: str,
        deps: list[str] | None = None,
        errors: list[Exception] | None = None,
        delay_s: float = 0.0,
        tracker: dict | None = None,
    ):
        self._name = agent_name
        self._deps = deps or []
        self._errors = list(errors or [])
        self._delay_s = delay_s
        self._tracker = tracker
        self.calls = 0

    @property
    def name(self): return self._name
    @property
    def version(self): return "1.0.0"
    @property
    def description(self): return f"Stub {self._name}"
    @property
    def dependencies(self): return self._deps

    async def execute(self, context, llm):
        self.calls += 1
        if self._tracker is not None:
            self._tracker["active"] += 1
            self._tracker["peak"] = max(self._tracker["peak"], self._tracker["active"])
        try:
            if self._delay_s:
                await asyncio.sleep(self._delay_s)
            if self.calls <= len(self._errors):
                raise self._errors[self.calls - 1]
            return _make_output(self._name)
        finally:
            if self._tracker is not None:
                self._tracker["active"] -= 1


def _registry(*agents: BaseAgent) -> AgentRegistry:
    reg = AgentRegistry()
    reg.initialize(agents)
    return reg


def _phase(name: str, *entries: tuple[str, dict], parallel: bool = False) -> Phase:
    return Phase(
        name=name,
        parallel=parallel,
        steps=tuple(PlannedStep(name=n, override=o) for n, o in entries),
    )


def _scheduler(
    registry: AgentRegistry,
    invoker: StepInvoker | None = None,
    max_parallel_steps: int = 5,
    breakers: CircuitBreakerBoard | None = None,
) -> PipelineScheduler:
    recovery = FaultRecoveryEngine(
        breakers=breakers or CircuitBreakerBoard(),
        retry_config=RetryConfig(max_retries=3, base_delay_s=0.0, jitter=False),
        sleep=AsyncMock(),
    )
    return PipelineScheduler(
        registry=registry,
        recovery=recovery,
        invoker=invoker,
        llm_factory=lambda step: MagicMock(),
        max_parallel_steps=max_parallel_steps,
    )


def _scenario_plan() -> ExecutionPlan:
    return ExecutionPlan(
        call_type="test",
        phases=(
            _phase("classification", ("classification", {"critical": True})),
            _phase("foundation", ("role_id", {"optional": True, "parallel": True}), parallel=True),
            _phase(
                "post",
                ("validation", {"critical": True}),
                ("summary", {"optional": True}),
            ),
        ),
    )


# --- Scenarios ---

class TestTransientRecoveryScenario:
    @pytest.mark.asyncio
    async def test_retry_then_completed(self, pipeline_context):
        transient = UpstreamAPIError("service unavailable", status_code=503)
        role_id = StubAgent("role_id", deps=["classification"], errors=[transient, transient])
        reg = _registry(
            StubAgent("classification"), role_id, StubAgent("validation"), StubAgent("summary")
        )
        breakers = CircuitBreakerBoard()
        result = await _scheduler(reg, breakers=breakers).run(_scenario_plan(), pipeline_context)

        assert result.status == "completed"
        assert result.success is True
        assert result.degradation == "none"
        assert result.steps["role_id"].attempts == 3
        assert result.steps["role_id"].status == "completed"
        assert breakers.open_steps() == []
        assert breakers.get("role_id").times_opened == 0


class TestCriticalFailureScenario:
    @pytest.mark.asyncio
    async def test_abort_keeps_earlier_results(self, pipeline_context):
        permanent = UpstreamAPIError("invalid api key", status_code=401)
        plan = ExecutionPlan(
            call_type="test",
            phases=(
                _phase("classification", ("classification", {"critical": True})),
                _phase("extraction", ("rates", {"critical": True}), ("actions", {})),
                _phase("post", ("summary", {"optional": True})),
            ),
        )
        rates = StubAgent("rates", errors=[permanent])
        summary = StubAgent("summary")
        reg = _registry(StubAgent("classification"), rates, StubAgent("actions"), summary)
        result = await _scheduler(reg).run(plan, pipeline_context)

        assert result.status == "aborted"
        assert result.success is False
        assert result.degradation == "severe"
        assert result.aborted_by == "rates"
        assert result.aborted_steps == ["actions", "summary"]
        assert result.steps["rates"].status == "failed"
        assert result.steps["rates"].attempts == 1
        assert result.steps["classification"].status == "completed"
        assert "summary" not in result.steps
        assert summary.calls == 0
        assert any("Critical step 'rates' failed" in w for w in result.warnings)


class TestSharedCacheScenario:
    @pytest.mark.asyncio
    async def test_concurrent_runs_invoke_once(self, pipeline_context):
        step_y = StubAgent("step_y", delay_s=0.05)
        reg = _registry(step_y)
        cache = ResultCache()
        scheduler = _scheduler(reg, invoker=StepInvoker(cache=cache))
        plan = ExecutionPlan(call_type="test", phases=(_phase("p", ("step_y", {})),))

        other = PipelineContext(
            call_type=pipeline_context.call_type,
            transcript=pipeline_context.transcript,
            utterances=pipeline_context.utterances,
            metadata=pipeline_context.metadata.model_copy(update={"call_id": "call_002"}),
        )
        r1, r2 = await asyncio.gather(
            scheduler.run(plan, pipeline_context), scheduler.run(plan, other)
        )

        assert step_y.calls == 1
        assert r1.output("step_y").data == r2.output("step_y").data
        assert r1.steps["step_y"].status == r2.steps["step_y"].status == "completed"
        key = compute_cache_key("step_y", step_y.build_input(pipeline_context))
        assert cache.entry(key).hits >= 1


class DefaultingAgent(StubAgent):
    def default_output(self):
        return _make_output(self.name, confidence=0.3)


class HangOnceAgent(StubAgent):
    async def execute(self, context, llm):
        if self.calls == 0:
            self.calls += 1
            await asyncio.sleep(1.0)
            return _make_output(self.name)
        return await super().execute(context, llm)


class TestNonCriticalFailure:
    @pytest.mark.asyncio
    async def test_required_step_degrades_to_default(self, pipeline_context):
        unauthorized = UpstreamAPIError("invalid api key", status_code=401)
        validation = DefaultingAgent("validation", errors=[unauthorized])
        reg = _registry(StubAgent("a"), validation, StubAgent("summary"))
        plan = ExecutionPlan(
            call_type="test",
            phases=(
                _phase(
                    "p",
                    ("a", {}),
                    ("validation", {"optional": False}),
                    ("summary", {"optional": True}),
                ),
            ),
        )
        result = await _scheduler(reg).run(plan, pipeline_context)

        assert result.steps["validation"].status == "degraded"
        assert result.steps["validation"].strategy == "default"
        assert result.steps["summary"].status == "completed"
        assert result.status == "degraded"
        assert result.success is True
        assert result.degradation == "moderate"
        assert result.aborted_steps == []


class TestTimeoutWithSharedCache:
    @pytest.mark.asyncio
    async def test_timed_out_step_is_invoked_again(self, pipeline_context):
        slow = HangOnceAgent("slow")
        cache = ResultCache()
        scheduler = _scheduler(_registry(slow), invoker=StepInvoker(cache=cache))
        plan = ExecutionPlan(
            call_type="test", phases=(_phase("p", ("slow", {"timeout_s": 0.1})),)
        )
        result = await scheduler.run(plan, pipeline_context)

        assert result.steps["slow"].status == "completed"
        assert result.steps["slow"].attempts == 2
        assert slow.calls == 2
        assert cache.in_flight == 0


# --- Phase semantics ---

class TestPhaseExecution:
    @pytest.mark.asyncio
    async def test_unmet_dependency_is_skipped(self, pipeline_context):
        needs = StubAgent("needs", deps=["flaky"])
        reg = _registry(StubAgent("flaky", errors=[KeyError("x")]), needs)
        plan = ExecutionPlan(
            call_type="test",
            phases=(_phase("p", ("flaky", {"optional": True}), ("needs", {})),),
        )
        result = await _scheduler(reg).run(plan, pipeline_context)

        assert result.steps["flaky"].status == "degraded"
        assert result.steps["needs"].status == "skipped"
        assert result.steps_skipped == ["needs"]
        assert "needs" not in result.steps_executed
        assert needs.calls == 0
        assert result.status == "degraded"
        assert result.degradation == "severe"

    @pytest.mark.asyncio
    async def test_parallel_phase_bounded(self, pipeline_context):
        tracker = {"active": 0, "peak": 0}
        agents = [StubAgent(f"s{i}", delay_s=0.02, tracker=tracker) for i in range(4)]
        plan = ExecutionPlan(
            call_type="test",
            phases=(_phase("p", *((a.name, {}) for a in agents), parallel=True),),
        )
        result = await _scheduler(_registry(*agents), max_parallel_steps=2).run(
            plan, pipeline_context
        )
        assert result.status == "completed"
        assert tracker["peak"] == 2

    @pytest.mark.asyncio
    async def test_parallel_phase_runs_concurrently(self, pipeline_context):
        tracker = {"active": 0, "peak": 0}
        agents = [StubAgent(f"s{i}", delay_s=0.02, tracker=tracker) for i in range(3)]
        plan = ExecutionPlan(
            call_type="test",
            phases=(_phase("p", *((a.name, {}) for a in agents), parallel=True),),
        )
        await _scheduler(_registry(*agents)).run(plan, pipeline_context)
        assert tracker["peak"] == 3

    @pytest.mark.asyncio
    async def test_critical_failure_in_parallel_phase(self, pipeline_context):
        reg = _registry(
            StubAgent("a", errors=[KeyError("x")]), StubAgent("b"), StubAgent("c")
        )
        plan = ExecutionPlan(
            call_type="test",
            phases=(
                _phase("p1", ("a", {"critical": True}), ("b", {}), parallel=True),
                _phase("p2", ("c", {})),
            ),
        )
        result = await _scheduler(reg).run(plan, pipeline_context)
        assert result.status == "aborted"
        assert result.steps["b"].status == "completed"
        assert result.aborted_steps == ["c"]

    @pytest.mark.asyncio
    async def test_totals_and_degradation(self, pipeline_context):
        reg = _registry(StubAgent("a"), StubAgent("b", errors=[KeyError("x")]))
        plan = ExecutionPlan(
            call_type="test", phases=(_phase("p", ("a", {}), ("b", {"optional": True})),)
        )
        result = await _scheduler(reg).run(plan, pipeline_context)
        assert result.total_tokens == 100
        assert result.total_llm_calls == 1
        assert result.steps["b"].strategy == "minimal"
        assert result.degradation == "severe"
        assert result.status == "degraded"
        assert result.success is True

    @pytest.mark.asyncio
    async def test_unregistered_step_raises(self, pipeline_context):
        plan = ExecutionPlan(call_type="test", phases=(_phase("p", ("ghost", {})),))
        with pytest.raises(PlanError):
            await _scheduler(_registry(StubAgent("a"))).run(plan, pipeline_context)

    @pytest.mark.asyncio
    async def test_single_client_instead_of_factory(self, pipeline_context):
        class Client(BaseLLMClient):
            async def complete(self, messages, system=None, max_tokens=2048, temperature=0.3):
                raise AssertionError("not called")

            @property
            def provider_name(self):
                return "test"

        client = Client()
        seen = []

        class Recording(StubAgent):
            async def execute(self, context, llm):
                seen.append(llm)
                return await super().execute(context, llm)

        reg = _registry(Recording("a"))
        scheduler = PipelineScheduler(
            registry=reg,
            recovery=FaultRecoveryEngine(sleep=AsyncMock()),
            llm_factory=client,
        )
        plan = ExecutionPlan(call_type="test", phases=(_phase("p", ("a", {})),))
        await scheduler.run(plan, pipeline_context)
        assert seen == [client]
