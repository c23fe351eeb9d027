# tests/unit/pipeline/agents/test_unit_post_processing.py — v1
"""Tests for validation and summary steps."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from callagents.core.confidence import aggregate_confidence
from callagents.llm.models import LLMResponse
from callagents.pipeline.agents.post_processing import (
    SummaryAgent,
    ValidationAgent,
    recorded_outputs,
)
from callagents.pipeline.plugin_kit.models import AgentMetadata, AgentOutput
from callagents.pipeline.state import StepResult


def _mock_llm(response_data: dict) -> AsyncMock:
    llm = AsyncMock()
    llm.complete = AsyncMock(return_value=LLMResponse(
        content=json.dumps(response_data),
        input_tokens=300, output_tokens=200,
        model="test", provider="test", latency_ms=10,
    ))
    return llm


def _record(context, step: str, data: dict | None, status: str = "completed") -> None:
    output = None
    if data is not None:
        output = AgentOutput(
            data=data,
            confidence=aggregate_confidence({"model": 0.9}),
            metadata=AgentMetadata(agent_name=step, agent_version="1.0.0"),
        )
    context.record_result(StepResult(step=step, status=status, output=output))


class TestRecordedOutputs:
    def test_collects_outputs_in_order(self, pipeline_context):
        _record(pipeline_context, "classification", {"primary_type": "carrier_quote"})
        _record(pipeline_context, "load_extraction", None, status="skipped")
        _record(pipeline_context, "action_items", {"action_items": []}, status="degraded")
        outputs = recorded_outputs(pipeline_context, exclude="summary")
        assert list(outputs) == ["classification", "action_items"]


class TestValidation:
    def test_no_declared_dependencies(self):
        assert ValidationAgent().dependencies == []

    @pytest.mark.asyncio
    async def test_prompt_includes_recorded_outputs(self, pipeline_context):
        _record(pipeline_context, "simple_rate_extraction", {"rates": [{"amount": 2300}]})
        llm = _mock_llm({
            "validation_status": {"is_valid": True, "completeness": 0.9,
                                  "consistency": 0.8, "reliability": 0.7,
                                  "overall_score": 80},
        })
        output = await ValidationAgent().execute(pipeline_context, llm)
        prompt = llm.complete.call_args.kwargs["messages"][0].content
        assert "SIMPLE_RATE_EXTRACTION OUTPUT:" in prompt
        assert output.confidence.value == pytest.approx(0.8)
        assert output.data["validation_status"]["overall_score"] == 80

    @pytest.mark.asyncio
    async def test_severe_issues_become_warnings(self, pipeline_context):
        llm = _mock_llm({
            "validation_status": {"completeness": 0.9, "consistency": 0.9, "reliability": 0.9},
            "issues": [
                {"severity": "critical", "message": "Rate does not match load"},
                {"severity": "low", "message": "Minor"},
            ],
        })
        output = await ValidationAgent().execute(pipeline_context, llm)
        assert output.warnings == ["Validation issue: Rate does not match load"]
        assert output.data["validation_status"]["is_valid"] is False

    def test_build_input_changes_with_recorded_outputs(self, pipeline_context):
        before = ValidationAgent().build_input(pipeline_context)
        _record(pipeline_context, "classification", {"primary_type": "carrier_quote"})
        after = ValidationAgent().build_input(pipeline_context)
        assert before["dependencies"] == {}
        assert after["dependencies"] == {"classification": {"primary_type": "carrier_quote"}}


class TestSummary:
    @pytest.mark.asyncio
    async def test_execute(self, pipeline_context):
        llm = _mock_llm({
            "executive_summary": "Carrier quoted 2500, broker countered at 2300.",
            "summary": {"outcome": "pending", "key_points": ["counter offer"]},
            "follow_up_required": True,
            "confidence": 0.8,
        })
        output = await SummaryAgent().execute(pipeline_context, llm)
        assert output.data["summary"]["call_type"] is None
        assert output.data["follow_up_required"] is True
        assert output.confidence.value == pytest.approx(0.9)

    def test_default_output(self):
        output = SummaryAgent().default_output()
        assert output.data["executive_summary"] == ""
        assert output.data["insights"] == []
