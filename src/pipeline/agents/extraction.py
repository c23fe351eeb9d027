# src/pipeline/agents/extraction.py — v1
"""Call-type specific extraction steps.

Which of these run, and whether each is critical, is decided by the
planner's routing table. Field-level business rules stay in the prompts;
the code only guarantees the output shape.
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
    fill_ratio,
)
from callagents.pipeline.plugin_kit.models import AgentExecutionConfig

if TYPE_CHECKING:
    from callagents.pipeline.state import PipelineContext

RATE_TYPES = frozenset({"flat", "per_mile", "hourly", "percentage"})
AGREEMENT_TYPES = frozenset({"firm", "conditional", "tentative", "contingent", "pending_approval"})


class CarrierInformationAgent(PromptedAgent):
    step_name = "carrier_information"
    step_description = "Carrier company, driver and equipment details"
    step_dependencies = ("classification", "speaker_identification")
    execution_config = AgentExecutionConfig(timeout_s=15.0)
    instructions = """Extract the carrier's details from this call.

Return JSON with keys: carrier {company_name, mc_number, dot_number,
contact_name, contact_phone, contact_email, dispatcher_name}, driver {name,
phone, truck_number, trailer_number}, equipment {type, length, count},
lanes {preferred, home_base}, confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "carrier": as_dict(data.get("carrier")),
            "driver": as_dict(data.get("driver")),
            "equipment": as_dict(data.get("equipment")),
            "lanes": as_dict(data.get("lanes")),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        carrier = data["carrier"]
        return {
            "model": as_unit(reported),
            "identity": fill_ratio(carrier, ("company_name", "mc_number")),
            "contact": fill_ratio(carrier, ("contact_name", "contact_phone")),
        }


class ShipperInformationAgent(PromptedAgent):
    step_name = "shipper_information"
    step_description = "Shipper, receiver and facility details"
    step_dependencies = ("classification", "speaker_identification")
    execution_config = AgentExecutionConfig(timeout_s=15.0)
    instructions = """Extract shipper and receiver details from this call.

Return JSON with keys: shipper {company_name, contact_name, contact_phone,
facility_name, facility_address, pickup_hours, appointment_required},
receiver {company_name, contact_name, facility_address, delivery_hours},
confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "shipper": as_dict(data.get("shipper")),
            "receiver": as_dict(data.get("receiver")),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        return {
            "model": as_unit(reported),
            "shipper": fill_ratio(data["shipper"], ("company_name", "contact_name")),
            "receiver": 1.0 if data["receiver"] else 0.5,
        }


class LoadExtractionAgent(PromptedAgent):
    step_name = "load_extraction"
    step_description = "Load origin, destination, commodity and schedule"
    step_dependencies = ("classification", "speaker_identification")
    execution_config = AgentExecutionConfig(timeout_s=20.0)
    instructions = """Extract every load discussed in this call.

Return JSON with keys: loads (list of {load_id, origin, destination,
pickup_date, delivery_date, commodity, weight, equipment_type, miles}),
multi_load_call, confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        loads = [as_dict(load) for load in as_list(data.get("loads"))]
        return {
            "loads": loads,
            "multi_load_call": as_bool(data.get("multi_load_call"), len(loads) > 1),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        loads = data["loads"]
        if not loads:
            return {"model": as_unit(reported), "loads": 0.0}
        per_load = [fill_ratio(load, ("origin", "destination", "pickup_date")) for load in loads]
        return {"model": as_unit(reported), "loads": sum(per_load) / len(per_load)}

    def output_warnings(self, data: dict[str, Any]) -> list[str]:
        return [] if data["loads"] else ["No loads extracted"]


class SimpleRateExtractionAgent(PromptedAgent):
    step_name = "simple_rate_extraction"
    step_description = "Quoted and agreed rates"
    step_dependencies = ("classification", "speaker_identification")
    execution_config = AgentExecutionConfig(timeout_s=12.0)
    instructions = """Extract every rate mentioned in this call.

Return JSON with keys: rates (list of {load_id, amount, type (flat,
per_mile, hourly, percentage), currency, includes_fuel, status (quoted,
accepted, declined, pending)}), confidence (0.0-1.0)."""
    required_fields = ("rates",)
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        rates = []
        for raw in as_list(data.get("rates")):
            rate = as_dict(raw)
            rate["type"] = rate.get("type") if rate.get("type") in RATE_TYPES else "flat"
            rate["currency"] = as_str(rate.get("currency"), "USD")
            rates.append(rate)
        return {"rates": rates}


class RateNegotiationAgent(PromptedAgent):
    step_name = "rate_negotiation"
    step_description = "Negotiation rounds, positions and outcome"
    step_dependencies = ("classification", "speaker_identification", "load_extraction")
    execution_config = AgentExecutionConfig(timeout_s=20.0, critical=True)
    instructions = """Analyze the rate negotiation in this call.

Return JSON with keys: negotiations (list of {load_id, status (agreed,
pending, rejected, stalled, callback_requested), agreed_rate, rate_type,
price_history, initial_positions}), negotiation_summary {outcome,
complexity, rounds}, insights, confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        summary = as_dict(data.get("negotiation_summary"))
        return {
            "negotiations": [as_dict(n) for n in as_list(data.get("negotiations"))],
            "negotiation_summary": {
                "outcome": as_str(summary.get("outcome"), "none"),
                "complexity": as_str(summary.get("complexity"), "simple"),
                "rounds": summary.get("rounds") if isinstance(summary.get("rounds"), int) else 0,
            },
            "insights": as_list(data.get("insights")),
        }

    def confidence_factors(
        self, data: dict[str, Any], reported: Any, context: PipelineContext
    ) -> dict[str, float]:
        negotiations = data["negotiations"]
        settled = [n for n in negotiations if n.get("status") in ("agreed", "rejected")]
        return {
            "model": as_unit(reported),
            "resolution": len(settled) / len(negotiations) if negotiations else 0.5,
        }


class ConditionalAgreementAgent(PromptedAgent):
    step_name = "conditional_agreement"
    step_description = "Conditions, approvals and firmness of the agreement"
    step_dependencies = ("classification", "rate_negotiation")
    execution_config = AgentExecutionConfig(timeout_s=15.0)
    instructions = """Find conditions attached to any agreement in this call
("if", "as long as", "pending approval").

Return JSON with keys: conditions (list of {text, type, status, critical}),
agreement_status {type (firm, conditional, tentative, contingent,
pending_approval), firmness}, approvals, required_actions,
confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        status = as_dict(data.get("agreement_status"))
        conditions = [as_dict(c) for c in as_list(data.get("conditions"))]
        kind = status.get("type")
        return {
            "conditions": conditions,
            "agreement_status": {
                "type": kind if kind in AGREEMENT_TYPES else ("conditional" if conditions else "firm"),
                "firmness": as_unit(status.get("firmness"), 1.0 if not conditions else 0.5),
            },
            "approvals": as_list(data.get("approvals")),
            "required_actions": as_list(data.get("required_actions")),
        }


class AccessorialParserAgent(PromptedAgent):
    step_name = "accessorial_parser"
    step_description = "Detention, lumper, TONU and other accessorial terms"
    step_dependencies = ("classification", "simple_rate_extraction")
    execution_config = AgentExecutionConfig(timeout_s=12.0)
    temperature = 0.2
    instructions = """Extract accessorial charges and special provisions.

Return JSON with keys: accessorials (list of {type, amount, unit,
conditions}), included_in_rate, additional, special_provisions,
confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "accessorials": [as_dict(a) for a in as_list(data.get("accessorials"))],
            "included_in_rate": as_list(data.get("included_in_rate")),
            "additional": as_list(data.get("additional")),
            "special_provisions": as_list(data.get("special_provisions")),
        }


class ActionItemsAgent(PromptedAgent):
    step_name = "action_items"
    step_description = "Follow-ups, callbacks and pending decisions"
    step_dependencies = ("classification",)
    execution_config = AgentExecutionConfig(timeout_s=12.0)
    instructions = """List every action item agreed or implied in this call.

Return JSON with keys: action_items (list of {description, owner (broker,
carrier, shipper, driver), priority (high, medium, low), deadline}),
next_steps, callbacks, documents_needed, confidence (0.0-1.0)."""
    fallback_data = {}

    @staticmethod
    def apply_defaults(data: dict[str, Any]) -> dict[str, Any]:
        items = []
        for raw in as_list(data.get("action_items")):
            item = as_dict(raw)
            if item.get("priority") not in ("high", "medium", "low"):
                item["priority"] = "medium"
            items.append(item)
        return {
            "action_items": items,
            "next_steps": as_list(data.get("next_steps")),
            "callbacks": as_list(data.get("callbacks")),
            "documents_needed": as_list(data.get("documents_needed")),
        }
