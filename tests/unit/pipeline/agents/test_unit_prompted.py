# tests/unit/pipeline/agents/test_unit_prompted.py — v1
"""Tests for pipeline/agents/prompted.py — shared single-completion step."""

from __future__ import annotations

import json
from typing import Any, ClassVar
from unittest.mock import AsyncMock

import pytest

from callagents.core.confidence import aggregate_confidence
from callagents.core.errors import StepParseError
from callagents.llm.models import LLMResponse
from callagents.pipeline.agents.prompted import (
    DEFAULT_OUTPUT_CONFIDENCE,
    PromptedAgent,
    as_bool,
    as_dict,
    as_list,
    as_str,
    as_unit,
    fill_ratio,
)
from callagents.pipeline.plugin_kit.models import AgentMetadata, AgentOutput
from callagents.pipeline.state import StepResult


class EchoAgent(PromptedAgent):
    step_name = "echo"
    step_description = "Echo test step"
    step_dependencies = ("classification",)
    instructions = "Return JSON with keys: items, confidence."
    required_fields = ("items",)
    fallback_data: ClassVar[dict[str, Any] | None] = {"items": ["fallback"]}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        return {"items": as_list(data.get("items"))}


class NoFallbackAgent(EchoAgent):
    step_name = "no_fallback"
    fallback_data = None


def _mock_llm(content: str, model: str = "gpt-4o-mini") -> AsyncMock:
    llm = AsyncMock()
    llm.complete = AsyncMock(return_value=LLMResponse(
        content=content,
        input_tokens=100, output_tokens=50,
        model=model, provider="test", latency_ms=10,
    ))
    return llm


def _record_classification(context, primary_type: str = "carrier_quote") -> None:
    context.record_result(StepResult(
        step="classification",
        status="completed",
        output=AgentOutput(
            data={"primary_type": primary_type},
            confidence=aggregate_confidence({"model": 0.9}),
            metadata=AgentMetadata(agent_name="classification", agent_version="1.0.0"),
        ),
    ))


class TestFieldHelpers:
    def test_as_unit(self):
        assert as_unit(0.7) == 0.7
        assert as_unit(3) == 1.0
        assert as_unit(-1) == 0.0
        assert as_unit("high") == 0.5
        assert as_unit(None, default=0.2) == 0.2
        assert as_unit(float("nan")) == 0.5

    def test_coercions(self):
        assert as_list(("a", "b")) == ["a", "b"]
        assert as_list("a") == []
        assert as_dict({"k": 1}) == {"k": 1}
        assert as_dict([1]) == {}
        assert as_bool("yes") is False
        assert as_bool(True) is True
        assert as_str(5, "x") == "x"

    def test_fill_ratio(self):
        data = {"a": "x", "b": "", "c": [], "d": 0}
        assert fill_ratio(data, ("a", "b", "c", "d")) == 0.5
        assert fill_ratio(data, ()) == 1.0


class TestProperties:
    def test_declared_attributes(self):
        agent = EchoAgent()
        assert agent.name == "echo"
        assert agent.version == "1.0.0"
        assert agent.dependencies == ["classification"]
        assert agent.batchable is False


class TestExecute:
    @pytest.mark.asyncio
    async def test_parses_payload(self, pipeline_context):
        llm = _mock_llm(json.dumps({"items": ["a", "b"], "confidence": 0.9}))
        output = await EchoAgent().execute(pipeline_context, llm)

        assert output.data == {"items": ["a", "b"]}
        assert output.confidence.value == pytest.approx(0.95)
        assert output.confidence.level == "high"
        assert output.metadata.llm_calls == 1
        assert output.metadata.tokens_used == 150
        assert output.metadata.estimated_cost_usd == pytest.approx(0.000045)
        assert output.metadata.prompt_hash is not None

    @pytest.mark.asyncio
    async def test_code_fences_stripped(self, pipeline_context):
        llm = _mock_llm('```json\n{"items": ["a"], "confidence": 0.8}\n```')
        output = await EchoAgent().execute(pipeline_context, llm)
        assert output.data["items"] == ["a"]

    @pytest.mark.asyncio
    async def test_unparseable_raises_with_raw(self, pipeline_context):
        llm = _mock_llm("Sorry, I cannot help with that")
        with pytest.raises(StepParseError) as exc_info:
            await EchoAgent().execute(pipeline_context, llm)
        assert exc_info.value.raw == "Sorry, I cannot help with that"
        assert exc_info.value.step == "echo"

    @pytest.mark.asyncio
    async def test_low_confidence_warns(self, pipeline_context):
        llm = _mock_llm(json.dumps({"items": [], "confidence": 0.2}))
        output = await EchoAgent().execute(pipeline_context, llm)
        assert output.confidence.level == "low"
        assert any("Low confidence" in w for w in output.warnings)

    @pytest.mark.asyncio
    async def test_prompt_carries_transcript_and_dependencies(self, pipeline_context):
        _record_classification(pipeline_context)
        llm = _mock_llm(json.dumps({"items": []}))
        await EchoAgent().execute(pipeline_context, llm)

        kwargs = llm.complete.call_args.kwargs
        prompt = kwargs["messages"][0].content
        assert "Dallas to Atlanta" in prompt
        assert "[A] Thanks for calling" in prompt
        assert "CLASSIFICATION OUTPUT:" in prompt
        assert "carrier_quote" in prompt
        assert kwargs["system"] == EchoAgent.system_prompt
        assert kwargs["temperature"] == 0.3


class TestBuildInput:
    def test_includes_dependency_data(self, pipeline_context):
        _record_classification(pipeline_context)
        payload = EchoAgent().build_input(pipeline_context)
        assert payload["dependencies"] == {"classification": {"primary_type": "carrier_quote"}}
        assert payload["transcript"] == pipeline_context.transcript
        assert "call_id" not in payload["metadata"]
        assert "call_date" not in payload


class TestFallbacks:
    def test_default_output(self):
        output = EchoAgent().default_output()
        assert output.data == {"items": ["fallback"]}
        assert output.confidence.value == DEFAULT_OUTPUT_CONFIDENCE
        assert output.confidence.level == "low"

    def test_no_default_output(self):
        assert NoFallbackAgent().default_output() is None

    def test_partial_output_salvages_object(self, pipeline_context):
        raw = 'Here you go: {"items": ["x"], "confidence": 0.9} trailing text {'
        error = StepParseError("bad", step="echo", raw=raw)
        output = EchoAgent().partial_output(pipeline_context, error)
        assert output is not None
        assert output.data == {"items": ["x"]}
        assert output.metadata.llm_calls == 1
        assert "Partial extraction" in output.warnings[0]

    def test_partial_output_without_raw(self, pipeline_context):
        assert EchoAgent().partial_output(pipeline_context, ValueError("x")) is None

    def test_partial_output_nothing_to_salvage(self, pipeline_context):
        error = StepParseError("bad", raw="no json here")
        assert EchoAgent().partial_output(pipeline_context, error) is None
