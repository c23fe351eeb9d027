# src/pipeline/agents/foundation.py — v1
"""Classification and foundation steps.

Classification decides the plan; the foundation steps (speakers, dates,
references) feed every call-type specific extraction and may run in
parallel once classification has completed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from callagents.core.models import CALL_TYPES
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

DEFAULT_CALL_TYPE = "check_call"
SPEAKER_ROLES = frozenset({"broker", "carrier", "shipper", "driver", "dispatcher", "unknown"})


class ClassificationAgent(PromptedAgent):
    """Determines the call type that selects the execution plan."""

    step_name = "classification"
    step_description = "Call type classification and routing"
    execution_config = AgentExecutionConfig(timeout_s=15.0, critical=True)
    temperature = 0.2
    transcript_limit = 4000
    instructions = """Analyze this freight broker call transcript and classify it.

CALL TYPES:
1. new_booking - shipper calling to book a new load
2. carrier_quote - carrier offering capacity or discussing rates
3. check_call - checking on an existing load
4. renegotiation - changing terms of an existing agreement
5. callback_acceptance - carrier calling back to accept a previous offer
6. wrong_number - not a freight-related call
7. voicemail - voicemail message

Return JSON with keys: primary_type, sub_types (multi_load, continuation,
urgent, team_required, partial), indicators (key phrases), multi_load_call,
continuation_call, call_purpose, confidence (0.0-1.0)."""
    fallback_data = {"primary_type": DEFAULT_CALL_TYPE}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        primary = data.get("primary_type")
        return {
            "primary_type": primary if primary in CALL_TYPES else DEFAULT_CALL_TYPE,
            "reported_type": as_str(primary) or None,
            "sub_types": as_list(data.get("sub_types")),
            "indicators": as_list(data.get("indicators")),
            "multi_load_call": as_bool(data.get("multi_load_call")),
            "continuation_call": as_bool(data.get("continuation_call")),
            "call_purpose": as_str(data.get("call_purpose")),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        indicator_count = len(data["indicators"])
        value = as_unit(reported)
        if indicator_count >= 3:
            value = min(value * 1.2, 1.0)
        elif indicator_count <= 1:
            value = max(value * 0.8, 0.3)
        good_context = (
            len(context.transcript) > 100
            and len(context.utterances) > 2
            and (context.metadata.duration_s or 0) > 10
        )
        return {
            "classification": value,
            "indicators": 0.9 if indicator_count >= 2 else 0.5,
            "context": 0.8 if good_context else 0.4,
        }

    def output_warnings(self, data: dict[str, Any]) -> list[str]:
        if data["reported_type"] and data["reported_type"] != data["primary_type"]:
            return [
                f"Invalid primary type '{data['reported_type']}', "
                f"defaulted to {DEFAULT_CALL_TYPE}"
            ]
        return []


class SpeakerIdentificationAgent(PromptedAgent):
    """Maps diarized speaker ids to business roles."""

    step_name = "speaker_identification"
    step_description = "Speaker role identification"
    step_dependencies = ("classification",)
    execution_config = AgentExecutionConfig(timeout_s=10.0, parallel=True)
    temperature = 0.2
    instructions = """Identify the role of each speaker in this freight call.

Roles: broker, carrier, shipper, driver, dispatcher, unknown.

Return JSON with keys: speakers (speaker id -> {role, confidence, name,
company}), broker_speaker_id, primary_speaker_id, confidence (0.0-1.0)."""
    fallback_data = {
        "speakers": {
            "A": {"role": "broker", "confidence": 0.3},
            "B": {"role": "unknown", "confidence": 0.3},
        }
    }

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        speakers: dict[str, dict[str, Any]] = {}
        for speaker_id, raw in as_dict(data.get("speakers")).items():
            info = as_dict(raw)
            role = info.get("role")
            speakers[str(speaker_id)] = {
                "role": role if role in SPEAKER_ROLES else "unknown",
                "confidence": as_unit(info.get("confidence")),
                "name": as_str(info.get("name")) or None,
                "company": as_str(info.get("company")) or None,
            }

        broker = as_str(data.get("broker_speaker_id")) or None
        if broker is None:
            broker = next(
                (sid for sid, s in speakers.items() if s["role"] == "broker"),
                next(iter(speakers), None),
            )
        return {
            "speakers": speakers,
            "broker_speaker_id": broker,
            "primary_speaker_id": as_str(data.get("primary_speaker_id")) or broker,
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        speakers = data["speakers"]
        if not speakers:
            return {"speaker_identification": 0.0, "role_clarity": 0.0}
        known = [s for s in speakers.values() if s["role"] != "unknown"]
        return {
            "speaker_identification": sum(s["confidence"] for s in speakers.values())
            / len(speakers),
            "role_clarity": len(known) / len(speakers),
        }


class TemporalResolutionAgent(PromptedAgent):
    """Resolves relative dates and times against the call date."""

    step_name = "temporal_resolution"
    step_description = "Relative date and time window resolution"
    step_dependencies = ("classification",)
    execution_config = AgentExecutionConfig(timeout_s=15.0, parallel=True)
    uses_call_date = True
    instructions = """Resolve every date and time mentioned in this call
relative to the call date and timezone given in the metadata.

Return JSON with keys: resolved_dates (list of {original_text, resolved,
type, certainty}), time_windows (list of {type, start, end, load_id}),
constraints, confidence (0.0-1.0)."""
    required_fields = ("resolved_dates",)
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "resolved_dates": as_list(data.get("resolved_dates")),
            "time_windows": as_list(data.get("time_windows")),
            "recurring_patterns": as_list(data.get("recurring_patterns")),
            "constraints": as_list(data.get("constraints")),
        }


class ReferenceResolutionAgent(PromptedAgent):
    """Resolves references to prior loads, lanes, rates and calls."""

    step_name = "reference_resolution"
    step_description = "Reference and relationship context resolution"
    step_dependencies = ("classification",)
    execution_config = AgentExecutionConfig(timeout_s=15.0, parallel=True)
    instructions = """Find references to earlier conversations, regular lanes,
standard rates or previously discussed loads in this call.

Return JSON with keys: references (list of {text, type, resolved_to}),
reference_patterns {has_regular_lanes, has_repeat_customer,
has_standard_rates, has_previous_negotiation}, inferred_context
{relationship_type, familiarity_level}, confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        patterns = as_dict(data.get("reference_patterns"))
        inferred = as_dict(data.get("inferred_context"))
        return {
            "references": as_list(data.get("references")),
            "reference_patterns": {
                key: as_bool(patterns.get(key))
                for key in (
                    "has_regular_lanes",
                    "has_repeat_customer",
                    "has_standard_rates",
                    "has_previous_negotiation",
                )
            },
            "inferred_context": {
                "relationship_type": as_str(inferred.get("relationship_type")) or None,
                "familiarity_level": as_str(
                    inferred.get("familiarity_level"), "first_time"
                ),
            },
        }
