# src/api/models.py — v2
"""API-level models: ExtractionRequest."""

from __future__ import annotations

from pydantic import BaseModel, Field

from callagents.core.models import CallMetadata, CallType, Utterance


class ExtractionRequest(BaseModel):
    """One unit of work handed to the orchestrator by the surrounding workflow.

    call_type may be omitted, in which case the classification step decides it.
    """

    transcript: str
    utterances: list[Utterance] = Field(default_factory=list)
    metadata: CallMetadata
    call_type: CallType | None = None
