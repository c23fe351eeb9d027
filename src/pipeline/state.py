# src/pipeline/state.py — v2
"""Per-run request context shared by all steps.

Holds the raw call input and the mapping step name -> StepResult. The
scheduler is the only writer; steps read the outputs of their
dependencies. A StepResult is written at most once per run.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from callagents.core.errors import PipelineError
from callagents.core.models import (
    CallMetadata,
    DegradationLevel,
    ErrorKind,
    RecoveryStrategy,
    StepStatus,
    Utterance,
)
from callagents.pipeline.plugin_kit.models import AgentOutput


class DuplicateResultError(PipelineError):
    """Raised when a step result is recorded twice in the same run."""


class StepResult(BaseModel):
    """Terminal outcome of one step in one run."""

    step: str
    status: StepStatus
    output: AgentOutput | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    degradation: DegradationLevel = "none"
    strategy: RecoveryStrategy = "none"
    attempts: int = 0
    duration_ms: int = 0
    warnings: list[str] = Field(default_factory=list)

    @property
    def confidence(self) -> float | None:
        return self.output.confidence.value if self.output is not None else None


class PipelineContext(BaseModel):
    """Mutable state of a single pipeline run.

    Created at pipeline start, mutated only by the scheduler as steps
    finish, read by later steps.
    """

    # === IDENTITY ===
    run_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    call_type: str | None = None

    # === INPUT ===
    transcript: str = ""
    utterances: list[Utterance] = Field(default_factory=list)
    metadata: CallMetadata

    # === STEP RESULTS ===
    results: dict[str, StepResult] = Field(default_factory=dict)

    def record_result(self, result: StepResult) -> None:
        """Record a step's terminal result.

        Raises:
            DuplicateResultError: If the step already has a result in this run.
        """
        if result.step in self.results:
            raise DuplicateResultError(
                f"Step '{result.step}' already has a result in run {self.run_id}"
            )
        self.results[result.step] = result

    def get_result(self, step: str) -> StepResult | None:
        return self.results.get(step)

    def get_output(self, step: str) -> AgentOutput | None:
        result = self.results.get(step)
        return result.output if result is not None else None

    def get_output_data(self, step: str) -> dict[str, Any] | None:
        """Data of a step's output, or None if it produced none."""
        output = self.get_output(step)
        return output.data if output is not None else None

    def has_completed(self, step: str) -> bool:
        result = self.results.get(step)
        return result is not None and result.status == "completed"

    def steps_by_status(self, status: StepStatus) -> list[str]:
        return [name for name, r in self.results.items() if r.status == status]

    def all_warnings(self) -> list[str]:
        """Step warnings, each prefixed with its step name."""
        warnings: list[str] = []
        for name, result in self.results.items():
            warnings.extend(f"{name}: {w}" for w in result.warnings)
            if result.output is not None:
                warnings.extend(f"{name}: {w}" for w in result.output.warnings)
        return warnings

    # === TOTALS ===

    @property
    def total_tokens(self) -> int:
        return sum(
            r.output.metadata.tokens_used for r in self.results.values() if r.output
        )

    @property
    def total_llm_calls(self) -> int:
        return sum(
            r.output.metadata.llm_calls for r in self.results.values() if r.output
        )

    @property
    def estimated_cost_usd(self) -> float:
        return sum(
            r.output.metadata.estimated_cost_usd
            for r in self.results.values()
            if r.output
        )
