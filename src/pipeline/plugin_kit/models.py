# src/pipeline/plugin_kit/models.py — v2
"""Agent plugin models: AgentExecutionConfig, AgentMetadata, AgentOutput, ClassifiedError."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from callagents.core.confidence import ConfidenceScore
from callagents.core.models import ErrorKind


class AgentExecutionConfig(BaseModel):
    """Per-step execution policy. Plans may override any field per phase entry."""

    model_config = ConfigDict(frozen=True)

    timeout_s: float | None = None
    critical: bool = False
    optional: bool = False
    parallel: bool = False
    retry_on_failure: bool = True

    def merged(self, override: dict[str, Any] | None) -> AgentExecutionConfig:
        """Return a copy with the plan-level override applied."""
        if not override:
            return self
        unknown = set(override) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown config override keys: {sorted(unknown)}")
        return self.model_copy(update=override)


class AgentMetadata(BaseModel):
    """Metadata about an agent execution, attached to every AgentOutput."""

    agent_name: str
    agent_version: str
    execution_time_ms: int = 0
    llm_calls: int = 0
    tokens_used: int = 0
    estimated_cost_usd: float = 0.0
    prompt_hash: str | None = None


class AgentOutput(BaseModel):
    """Standard return type for all BaseAgent.execute() calls."""

    data: dict[str, Any]
    confidence: ConfidenceScore
    metadata: AgentMetadata
    warnings: list[str] = Field(default_factory=list)


class ClassifiedError(BaseModel):
    """Step-level classification of a raised error."""

    kind: ErrorKind
    recoverable: bool
    message: str
