# src/pipeline/agents/post_processing.py — v1
"""Post-processing steps: cross-step validation and call summary.

Neither declares dependencies; both read every output recorded so far in
the run, so they always run and degrade with whatever is available.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from callagents.pipeline.agents.prompted import (
    PromptedAgent,
    as_bool,
    as_dict,
    as_list,
    as_str,
    as_unit,
)
from callagents.pipeline.plugin_kit.models import AgentExecutionConfig

if TYPE_CHECKING:
    from callagents.pipeline.state import PipelineContext


def recorded_outputs(context: PipelineContext, exclude: str) -> dict[str, Any]:
    """Data of every step that produced an output, in recording order."""
    return {
        name: result.output.data
        for name, result in context.results.items()
        if name != exclude and result.output is not None
    }


class ValidationAgent(PromptedAgent):
    """Checks the extracted data for internal consistency."""

    step_name = "validation"
    step_description = "Cross-step consistency validation"
    execution_config = AgentExecutionConfig(timeout_s=15.0)
    temperature = 0.1
    instructions = """Validate the extracted data below against the transcript.
Check that rates match loads, dates are logically ordered, speakers are
consistent and conditions are coherent.

Return JSON with keys: validation_status {is_valid, completeness,
consistency, reliability, overall_score (0-100)}, issues (list of
{severity, field, message}), recommendations, confidence (0.0-1.0)."""
    fallback_data = {}

    def dependency_payload(self, context: PipelineContext) -> dict[str, Any]:
        return recorded_outputs(context, exclude=self.step_name)

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        status = as_dict(data.get("validation_status"))
        issues = [as_dict(i) for i in as_list(data.get("issues"))]
        score = status.get("overall_score")
        return {
            "validation_status": {
                "is_valid": as_bool(status.get("is_valid"), not issues),
                "completeness": as_unit(status.get("completeness")),
                "consistency": as_unit(status.get("consistency")),
                "reliability": as_unit(status.get("reliability")),
                "overall_score": score if isinstance(score, (int, float)) else 0,
            },
            "issues": issues,
            "recommendations": as_list(data.get("recommendations")),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        status = data["validation_status"]
        return {
            "completeness": status["completeness"],
            "consistency": status["consistency"],
            "reliability": status["reliability"],
        }

    def output_warnings(self, data: dict[str, Any]) -> list[str]:
        return [
            f"Validation issue: {as_str(issue.get('message'), 'unspecified')}"
            for issue in data["issues"]
            if issue.get("severity") in ("critical", "high")
        ]


class SummaryAgent(PromptedAgent):
    """Produces the executive summary of the call."""

    step_name = "summary"
    step_description = "Executive call summary"
    execution_config = AgentExecutionConfig(timeout_s=12.0)
    instructions = """Summarize this freight call for the broker using the
extracted data below.

Return JSON with keys: executive_summary (2-3 sentences), summary
{call_type, outcome, key_points}, insights, action_items,
follow_up_required, confidence (0.0-1.0)."""
    required_fields = ("executive_summary",)
    fallback_data = {}

    def dependency_payload(self, context: PipelineContext) -> dict[str, Any]:
        return recorded_outputs(context, exclude=self.step_name)

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        summary = as_dict(data.get("summary"))
        return {
            "executive_summary": as_str(data.get("executive_summary")),
            "summary": {
                "call_type": as_str(summary.get("call_type")) or None,
                "outcome": as_str(summary.get("outcome")) or None,
                "key_points": as_list(summary.get("key_points")),
            },
            "insights": as_list(data.get("insights")),
            "action_items": as_list(data.get("action_items")),
            "follow_up_required": as_bool(data.get("follow_up_required")),
        }
