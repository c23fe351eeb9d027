# src/pipeline/planner.py — v3
"""Routing table: call type -> ExecutionPlan.

Every plan has the same frame: a critical classification phase, a
parallel foundation phase of optional steps, a call-type specific
sequential extraction phase, and a sequential post-processing phase.
Plans are immutable and built once per call type.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from callagents.core.errors import PlanError

if TYPE_CHECKING:
    from callagents.pipeline.registry import AgentRegistry

logger = logging.getLogger(__name__)

CLASSIFICATION_PHASE = "classification"
FOUNDATION_PHASE = "foundation"
EXTRACTION_PHASE = "extraction"
POST_PROCESSING_PHASE = "post_processing"

CRITICAL: dict[str, Any] = {"critical": True}
OPTIONAL: dict[str, Any] = {"optional": True}


class PlannedStep(BaseModel):
    """One step entry of a phase with its plan-level config override."""

    model_config = ConfigDict(frozen=True)

    name: str
    override: dict[str, Any] = Field(default_factory=dict)


class Phase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    parallel: bool = False
    steps: tuple[PlannedStep, ...] = ()

    @property
    def step_names(self) -> list[str]:
        return [s.name for s in self.steps]


class ExecutionPlan(BaseModel):
    """Ordered phases to run for one call type."""

    model_config = ConfigDict(frozen=True)

    call_type: str
    phases: tuple[Phase, ...] = ()

    @property
    def step_names(self) -> list[str]:
        """All step names in execution order."""
        return [name for phase in self.phases for name in phase.step_names]

    def phase(self, name: str) -> Phase | None:
        return next((p for p in self.phases if p.name == name), None)

    def without_phase(self, name: str) -> ExecutionPlan:
        """Copy of the plan with the named phase removed."""
        return self.model_copy(
            update={"phases": tuple(p for p in self.phases if p.name != name)}
        )

    def only_phase(self, name: str) -> ExecutionPlan:
        """Copy of the plan keeping just the named phase."""
        return self.model_copy(
            update={"phases": tuple(p for p in self.phases if p.name == name)}
        )


# === ROUTING TABLE ===

_EXTRACTION_TABLE: dict[str, list[tuple[str, dict[str, Any]]]] = {
    "carrier_quote": [
        ("carrier_information", CRITICAL),
        ("load_extraction", OPTIONAL),
        ("simple_rate_extraction", {}),
        ("rate_negotiation", CRITICAL),
        ("conditional_agreement", {}),
        ("accessorial_parser", OPTIONAL),
        ("action_items", {}),
    ],
    "new_booking": [
        ("shipper_information", CRITICAL),
        ("load_extraction", CRITICAL),
        ("simple_rate_extraction", OPTIONAL),
        ("action_items", {}),
    ],
    "check_call": [
        ("load_extraction", OPTIONAL),
        ("action_items", {}),
    ],
    "renegotiation": [
        ("load_extraction", OPTIONAL),
        ("rate_negotiation", CRITICAL),
        ("conditional_agreement", {}),
        ("accessorial_parser", OPTIONAL),
        ("action_items", {}),
    ],
    "callback_acceptance": [
        ("carrier_information", OPTIONAL),
        ("rate_negotiation", CRITICAL),
        ("conditional_agreement", {}),
        ("action_items", {}),
    ],
    # wrong_number and voicemail carry nothing to extract.
    "wrong_number": [],
    "voicemail": [],
}

_CLASSIFICATION = Phase(
    name=CLASSIFICATION_PHASE,
    steps=(PlannedStep(name="classification", override=CRITICAL),),
)

_FOUNDATION = Phase(
    name=FOUNDATION_PHASE,
    parallel=True,
    steps=tuple(
        PlannedStep(name=name, override={"optional": True, "parallel": True})
        for name in ("speaker_identification", "temporal_resolution", "reference_resolution")
    ),
)

_POST_PROCESSING = Phase(
    name=POST_PROCESSING_PHASE,
    steps=(
        PlannedStep(name="validation", override={"optional": False}),
        PlannedStep(name="summary", override=OPTIONAL),
    ),
)


@lru_cache(maxsize=None)
def build_plan(call_type: str) -> ExecutionPlan:
    """Return the execution plan for a call type.

    Unmapped call types get an empty extraction phase.
    """
    entries = _EXTRACTION_TABLE.get(call_type)
    if entries is None:
        logger.warning("No routing entry for call type '%s', extraction phase empty", call_type)
        entries = []
    extraction = Phase(
        name=EXTRACTION_PHASE,
        steps=tuple(PlannedStep(name=n, override=dict(o)) for n, o in entries),
    )
    return ExecutionPlan(
        call_type=call_type,
        phases=(_CLASSIFICATION, _FOUNDATION, extraction, _POST_PROCESSING),
    )


def validate_plan(plan: ExecutionPlan, registry: AgentRegistry) -> None:
    """Ensure every step in the plan is registered and appears once.

    Raises:
        PlanError: If the plan references an unregistered or repeated step.
    """
    names = plan.step_names
    missing = [name for name in names if name not in registry]
    if missing:
        raise PlanError(
            f"Plan for '{plan.call_type}' references unregistered steps: {missing}"
        )
    repeated = sorted({name for name in names if names.count(name) > 1})
    if repeated:
        raise PlanError(f"Plan for '{plan.call_type}' repeats steps: {repeated}")


def classification_plan() -> ExecutionPlan:
    """Plan holding only the classification phase, for calls of unknown type."""
    return ExecutionPlan(call_type="unclassified", phases=(_CLASSIFICATION,))
