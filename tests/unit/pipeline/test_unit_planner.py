# tests/unit/pipeline/test_unit_planner.py — v1
"""Tests for pipeline/planner.py — routing table and plan validation."""

from __future__ import annotations

import pytest

from callagents.core.models import CALL_TYPES
from callagents.pipeline.planner import (
    CLASSIFICATION_PHASE,
    EXTRACTION_PHASE,
    FOUNDATION_PHASE,
    POST_PROCESSING_PHASE,
    ExecutionPlan,
    Phase,
    PlannedStep,
    PlanError,
    build_plan,
    classification_plan,
    validate_plan,
)
from callagents.pipeline.registry import build_default_registry


@pytest.fixture(scope="module")
def registry():
    return build_default_registry()


class TestBuildPlan:
    def test_phase_frame(self):
        plan = build_plan("carrier_quote")
        assert [p.name for p in plan.phases] == [
            CLASSIFICATION_PHASE,
            FOUNDATION_PHASE,
            EXTRACTION_PHASE,
            POST_PROCESSING_PHASE,
        ]
        assert plan.phase(FOUNDATION_PHASE).parallel is True
        assert plan.phase(EXTRACTION_PHASE).parallel is False

    def test_classification_is_critical(self):
        entry = build_plan("new_booking").phase(CLASSIFICATION_PHASE).steps[0]
        assert entry.name == "classification"
        assert entry.override == {"critical": True}

    def test_carrier_quote_extraction(self):
        extraction = build_plan("carrier_quote").phase(EXTRACTION_PHASE)
        assert extraction.step_names == [
            "carrier_information",
            "load_extraction",
            "simple_rate_extraction",
            "rate_negotiation",
            "conditional_agreement",
            "accessorial_parser",
            "action_items",
        ]
        overrides = {s.name: s.override for s in extraction.steps}
        assert overrides["rate_negotiation"] == {"critical": True}
        assert overrides["load_extraction"] == {"optional": True}

    def test_wrong_number_has_no_extraction(self):
        assert build_plan("wrong_number").phase(EXTRACTION_PHASE).steps == ()

    def test_unmapped_type_gets_empty_extraction(self):
        plan = build_plan("freight_audit")
        assert plan.phase(EXTRACTION_PHASE).steps == ()
        assert "classification" in plan.step_names

    def test_plans_are_cached(self):
        assert build_plan("check_call") is build_plan("check_call")

    def test_without_and_only_phase(self):
        plan = build_plan("check_call")
        rest = plan.without_phase(CLASSIFICATION_PHASE)
        assert "classification" not in rest.step_names
        assert plan.only_phase(CLASSIFICATION_PHASE).step_names == ["classification"]
        assert "classification" in plan.step_names

    def test_classification_plan(self):
        plan = classification_plan()
        assert plan.step_names == ["classification"]
        assert plan.phases[0].steps[0].override == {"critical": True}


class TestValidatePlan:
    @pytest.mark.parametrize("call_type", CALL_TYPES)
    def test_builtin_plans_valid(self, registry, call_type):
        validate_plan(build_plan(call_type), registry)

    def test_unregistered_step(self, registry):
        plan = ExecutionPlan(
            call_type="custom",
            phases=(Phase(name="x", steps=(PlannedStep(name="status_update"),)),),
        )
        with pytest.raises(PlanError, match="status_update"):
            validate_plan(plan, registry)

    def test_repeated_step(self, registry):
        plan = ExecutionPlan(
            call_type="custom",
            phases=(
                Phase(name="a", steps=(PlannedStep(name="summary"),)),
                Phase(name="b", steps=(PlannedStep(name="summary"),)),
            ),
        )
        with pytest.raises(PlanError, match="repeats"):
            validate_plan(plan, registry)
