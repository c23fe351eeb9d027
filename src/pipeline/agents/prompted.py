# src/pipeline/agents/prompted.py — v1
"""Shared single-completion step implementation.

Every built-in step follows the same shape: render a prompt from the call
input and dependency outputs, call the completion client once, parse the
payload explicitly, normalize it through the step's apply_defaults(), and
derive a confidence score from named factors. Subclasses only declare
their attributes, their defaults function and (optionally) their factors.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import TYPE_CHECKING, Any, ClassVar

from callagents.config.agents import BATCHABLE_STEPS
from callagents.core.confidence import aggregate_confidence
from callagents.core.errors import StepParseError
from callagents.llm.models import Message
from callagents.pipeline.plugin_kit.base_agent import BaseAgent
from callagents.pipeline.plugin_kit.models import (
    AgentExecutionConfig,
    AgentMetadata,
    AgentOutput,
)
from callagents.pipeline.plugin_kit.parsing import parse_json_payload, salvage_json_object
from callagents.tracking.cost_calculator import estimate_response_cost

if TYPE_CHECKING:
    from callagents.llm.base_client import BaseLLMClient
    from callagents.pipeline.state import PipelineContext

logger = logging.getLogger(__name__)

DEFAULT_REPORTED_CONFIDENCE = 0.5
DEFAULT_OUTPUT_CONFIDENCE = 0.3


# === FIELD HELPERS ===


def as_unit(value: Any, default: float = DEFAULT_REPORTED_CONFIDENCE) -> float:
    """Coerce a reported score to [0, 1], falling back to default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(max(number, 0.0), 1.0)


def as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def as_bool(value: Any, default: bool = False) -> bool:
    return value if isinstance(value, bool) else default


def as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def fill_ratio(data: dict[str, Any], fields: tuple[str, ...]) -> float:
    """Fraction of fields holding a non-empty value."""
    if not fields:
        return 1.0
    filled = sum(1 for f in fields if data.get(f) not in (None, "", [], {}))
    return filled / len(fields)


# === BASE STEP ===


class PromptedAgent(BaseAgent):
    """Step that runs one JSON completion against the call transcript."""

    step_name: ClassVar[str]
    step_description: ClassVar[str]
    step_version: ClassVar[str] = "1.0.0"
    step_dependencies: ClassVar[tuple[str, ...]] = ()
    execution_config: ClassVar[AgentExecutionConfig] = AgentExecutionConfig()

    system_prompt: ClassVar[str] = (
        "You extract structured data from freight broker phone calls. "
        "Return valid JSON without any markdown formatting."
    )
    instructions: ClassVar[str] = ""
    temperature: ClassVar[float] = 0.3
    max_tokens: ClassVar[int] = 2048
    transcript_limit: ClassVar[int | None] = None
    uses_call_date: ClassVar[bool] = False
    # Fields counted by the completeness factor.
    required_fields: ClassVar[tuple[str, ...]] = ()
    # Raw (pre-defaults) payload of default_output(); None disables it.
    fallback_data: ClassVar[dict[str, Any] | None] = None

    @property
    def name(self) -> str:
        return self.step_name

    @property
    def version(self) -> str:
        return self.step_version

    @property
    def description(self) -> str:
        return self.step_description

    @property
    def dependencies(self) -> list[str]:
        return list(self.step_dependencies)

    @property
    def config(self) -> AgentExecutionConfig:
        return self.execution_config

    @property
    def batchable(self) -> bool:
        return self.step_name in BATCHABLE_STEPS

    # --- Output shape ---

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        """Canonical output shape of the step. Subclasses override."""
        return dict(data)

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        factors = {"model": as_unit(reported)}
        if self.required_fields:
            factors["completeness"] = fill_ratio(data, self.required_fields)
        return factors

    def output_warnings(self, data: dict[str, Any]) -> list[str]:
        return []

    # --- Prompt ---

    def dependency_payload(self, context: PipelineContext) -> dict[str, Any]:
        """Outputs of other steps this step reads."""
        return {dep: context.get_output_data(dep) for dep in self.step_dependencies}

    def render_prompt(self, context: PipelineContext) -> str:
        transcript = context.transcript
        if self.transcript_limit is not None:
            transcript = transcript[: self.transcript_limit]

        sections = [self.instructions.strip(), "", "TRANSCRIPT:", transcript]
        if context.utterances:
            sections += ["", "UTTERANCES:"]
            sections += [f"[{u.speaker}] {u.text}" for u in context.utterances]

        meta = context.metadata
        sections += ["", "METADATA:", f"- Utterance count: {len(context.utterances)}"]
        if meta.duration_s is not None:
            sections.append(f"- Duration: {meta.duration_s:.0f} seconds")
        if meta.customer_name:
            sections.append(f"- Customer: {meta.customer_name}")
        if self.uses_call_date:
            sections.append(f"- Call date: {meta.call_date.isoformat()}")
            sections.append(f"- Timezone: {meta.timezone}")

        for dep, data in self.dependency_payload(context).items():
            if data:
                sections += [
                    "",
                    f"{dep.upper()} OUTPUT:",
                    json.dumps(data, sort_keys=True, default=str),
                ]
        return "\n".join(sections)

    def build_input(self, context: PipelineContext) -> dict[str, Any]:
        payload = super().build_input(context)
        payload["dependencies"] = self.dependency_payload(context)
        if self.uses_call_date:
            payload["call_date"] = context.metadata.call_date.isoformat()
        return payload

    # --- Execution ---

    async def execute(self, context: PipelineContext, llm: BaseLLMClient) -> AgentOutput:
        start_ms = time.monotonic_ns() // 1_000_000
        prompt = self.render_prompt(context)
        prompt_hash = hashlib.sha256(prompt.encode()).hexdigest()[:16]

        response = await llm.complete(
            messages=[Message(role="user", content=prompt)],
            system=self.system_prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        parsed = parse_json_payload(response.content)
        if not parsed.ok:
            raise StepParseError(
                f"Step '{self.name}' returned an unparseable payload: {parsed.error}",
                step=self.name,
                raw=parsed.raw,
            )

        raw = dict(parsed.data)
        reported = raw.pop("confidence", None)
        data = self.apply_defaults(raw)
        confidence = aggregate_confidence(self.confidence_factors(data, reported, context))
        warnings = self.output_warnings(data)
        if confidence.level == "low":
            warnings.append("Low confidence, may need human review")

        elapsed_ms = (time.monotonic_ns() // 1_000_000) - start_ms
        logger.debug(
            "Step '%s' parsed: confidence=%.2f, tokens=%d",
            self.name, confidence.value, response.total_tokens,
        )
        return AgentOutput(
            data=data,
            confidence=confidence,
            metadata=AgentMetadata(
                agent_name=self.name,
                agent_version=self.version,
                execution_time_ms=elapsed_ms,
                llm_calls=1,
                tokens_used=response.total_tokens,
                estimated_cost_usd=estimate_response_cost(response),
                prompt_hash=prompt_hash,
            ),
            warnings=warnings,
        )

    # --- Fallbacks ---

    def default_output(self) -> AgentOutput | None:
        if self.fallback_data is None:
            return None
        return AgentOutput(
            data=self.apply_defaults(dict(self.fallback_data)),
            confidence=aggregate_confidence({"default_output": DEFAULT_OUTPUT_CONFIDENCE}),
            metadata=AgentMetadata(agent_name=self.name, agent_version=self.version),
            warnings=[f"Default output used for '{self.name}'"],
        )

    def partial_output(
        self, context: PipelineContext, error: BaseException
    ) -> AgentOutput | None:
        raw = getattr(error, "raw", None)
        if not raw:
            return None
        salvaged = salvage_json_object(raw)
        if salvaged is None:
            return None
        reported = salvaged.pop("confidence", None)
        data = self.apply_defaults(salvaged)
        return AgentOutput(
            data=data,
            confidence=aggregate_confidence(self.confidence_factors(data, reported, context)),
            metadata=AgentMetadata(
                agent_name=self.name, agent_version=self.version, llm_calls=1
            ),
            warnings=["Partial extraction from malformed payload"],
        )
