# src/core/models.py — v2
"""Shared Pydantic domain models used across modules.

Call inputs (utterances, call metadata), the closed set of step names and
the status vocabularies. No module redefines these types.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, get_args

from pydantic import BaseModel, Field

# === VOCABULARIES ===

StepName = Literal[
    "classification",
    "speaker_identification",
    "temporal_resolution",
    "reference_resolution",
    "carrier_information",
    "shipper_information",
    "load_extraction",
    "simple_rate_extraction",
    "rate_negotiation",
    "conditional_agreement",
    "accessorial_parser",
    "action_items",
    "validation",
    "summary",
]

STEP_NAMES: tuple[str, ...] = get_args(StepName)

CallType = Literal[
    "new_booking",
    "carrier_quote",
    "check_call",
    "renegotiation",
    "callback_acceptance",
    "wrong_number",
    "voicemail",
]

CALL_TYPES: tuple[str, ...] = get_args(CallType)

StepStatus = Literal["completed", "skipped", "degraded", "failed"]

DegradationLevel = Literal["none", "minimal", "moderate", "severe"]

DEGRADATION_ORDER: dict[str, int] = {
    "none": 0,
    "minimal": 1,
    "moderate": 2,
    "severe": 3,
}

ErrorKind = Literal["timeout", "parse", "upstream_api", "unknown"]

RecoveryClass = Literal["transient", "data", "other"]

RecoveryStrategy = Literal[
    "none", "retry", "partial", "cached", "default", "minimal", "circuit_open", "failed"
]


def worst_degradation(levels: list[str]) -> DegradationLevel:
    """Return the most severe degradation level in levels ("none" if empty)."""
    worst = "none"
    for level in levels:
        if DEGRADATION_ORDER[level] > DEGRADATION_ORDER[worst]:
            worst = level
    return worst  # type: ignore[return-value]


# === CALL INPUT ===


class Utterance(BaseModel):
    """One diarized utterance of the call transcript."""

    speaker: str
    text: str
    start_ms: int = 0
    end_ms: int = 0
    confidence: float = 1.0


class CallMetadata(BaseModel):
    """Metadata attached to a call by the surrounding workflow."""

    call_id: str
    organization_id: str = ""
    user_id: str | None = None
    call_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_s: float | None = None
    customer_name: str | None = None
    timezone: str = "America/Chicago"

    def cache_view(self) -> dict[str, object]:
        """Fields that influence step output (identity fields excluded)."""
        return self.model_dump(
            mode="json",
            exclude={"call_id", "organization_id", "user_id", "call_date"},
        )
