# src/pipeline/plugin_kit/base_agent.py — v2
"""Standard agent interface for pipeline steps.

Every extraction step exposes execute / default_output / should_run /
classify_error / validate_output. Shared behavior is provided by free
functions (dependencies_met, classify_step_error, aggregate_confidence);
the base class only wires them to the step's declared attributes.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from callagents.core.confidence import confidence_level
from callagents.core.errors import InvalidOutputError
from callagents.pipeline.plugin_kit.models import (
    AgentExecutionConfig,
    AgentOutput,
    ClassifiedError,
)
from callagents.recovery.errors import classify_step_error

if TYPE_CHECKING:
    from callagents.llm.base_client import BaseLLMClient
    from callagents.pipeline.state import PipelineContext


def dependencies_met(dependencies: list[str], context: PipelineContext) -> bool:
    """True iff there are no dependencies or every one of them completed."""
    return all(context.has_completed(dep) for dep in dependencies)


def check_output(step: str, output: object) -> None:
    """Raise InvalidOutputError unless output carries a well-formed confidence."""
    if not isinstance(output, AgentOutput):
        raise InvalidOutputError(
            f"Step '{step}' returned {type(output).__name__}, expected AgentOutput",
            step=step,
        )
    score = getattr(output, "confidence", None)
    if score is None:
        raise InvalidOutputError(f"Step '{step}' output has no confidence score", step=step)
    value = getattr(score, "value", None)
    if not isinstance(value, (int, float)) or math.isnan(value) or not 0.0 <= value <= 1.0:
        raise InvalidOutputError(
            f"Step '{step}' confidence value {value!r} outside [0, 1]", step=step
        )
    if getattr(score, "level", None) != confidence_level(value):
        raise InvalidOutputError(
            f"Step '{step}' confidence level {score.level!r} does not match value {value:.2f}",
            step=step,
        )


class BaseAgent(ABC):
    """Standard interface for all pipeline agents."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique step identifier (e.g., 'classification', 'summary')."""

    @property
    @abstractmethod
    def version(self) -> str:
        """Agent version (semver)."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of what this step extracts."""

    @property
    def dependencies(self) -> list[str]:
        """Names of steps whose completed output this step needs."""
        return []

    @property
    def config(self) -> AgentExecutionConfig:
        """Default execution policy; plans can override it per entry."""
        return AgentExecutionConfig()

    @property
    def batchable(self) -> bool:
        """Whether concurrent invocations may be coalesced by the batcher."""
        return False

    @abstractmethod
    async def execute(self, context: PipelineContext, llm: BaseLLMClient) -> AgentOutput:
        """Run the step against the shared context.

        Args:
            context: Request context (read-only for the step).
            llm: Completion client for this step.

        Returns:
            AgentOutput with data, confidence, and metadata.
        """

    def default_output(self) -> AgentOutput | None:
        """Static fallback used when recovery runs out of options."""
        return None

    def partial_output(
        self, context: PipelineContext, error: BaseException
    ) -> AgentOutput | None:
        """Reduced-scope output salvaged after a data error, if possible."""
        return None

    def should_run(self, context: PipelineContext) -> bool:
        return dependencies_met(self.dependencies, context)

    def classify_error(self, error: BaseException) -> ClassifiedError:
        return classify_step_error(error)

    def validate_output(self, output: AgentOutput) -> None:
        """Reject outputs without a well-formed confidence score.

        Raises:
            InvalidOutputError: If the output is malformed.
        """
        check_output(self.name, output)

    def build_input(self, context: PipelineContext) -> dict[str, Any]:
        """Canonical input of this step, used for result caching.

        Includes everything execute() may read: the transcript, utterances,
        call type, call metadata (identity fields excluded) and the data of
        each declared dependency.
        """
        return {
            "call_type": context.call_type,
            "transcript": context.transcript,
            "utterances": [u.model_dump(mode="json") for u in context.utterances],
            "metadata": context.metadata.cache_view(),
            "dependencies": {
                dep: context.get_output_data(dep) for dep in self.dependencies
            },
        }
