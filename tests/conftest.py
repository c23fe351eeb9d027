# tests/conftest.py — v2
"""Shared test fixtures for all unit tests.

Provides call metadata, a fresh pipeline context, mock LLM clients and
settings that ignore any local .env file. No external dependencies, all
I/O is mocked.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from callagents.config.settings import Settings
from callagents.core.models import CallMetadata, Utterance
from callagents.llm.models import LLMResponse
from callagents.pipeline.state import PipelineContext

SAMPLE_TRANSCRIPT = (
    "Broker: Thanks for calling, this is Dana with Summit Logistics. "
    "Carrier: Hi, I'm calling about the Dallas to Atlanta load, can you do 2500? "
    "Broker: Best I can do is 2300 all in, pickup tomorrow morning."
)


# === FIXTURES: Sample data ===


@pytest.fixture
def call_metadata() -> CallMetadata:
    return CallMetadata(
        call_id="call_001",
        organization_id="org_1",
        call_date=datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc),
        duration_s=95.0,
    )


@pytest.fixture
def sample_utterances() -> list[Utterance]:
    return [
        Utterance(speaker="A", text="Thanks for calling, this is Dana with Summit Logistics."),
        Utterance(speaker="B", text="Hi, I'm calling about the Dallas to Atlanta load."),
        Utterance(speaker="A", text="Best I can do is 2300 all in."),
    ]


@pytest.fixture
def pipeline_context(
    call_metadata: CallMetadata, sample_utterances: list[Utterance]
) -> PipelineContext:
    """Fresh context for a carrier quote call."""
    return PipelineContext(
        call_type="carrier_quote",
        transcript=SAMPLE_TRANSCRIPT,
        utterances=sample_utterances,
        metadata=call_metadata,
    )


# === FIXTURES: Mock LLM ===


@pytest.fixture
def mock_llm_response() -> LLMResponse:
    """Standard JSON completion."""
    return LLMResponse(
        content=json.dumps({"primary_type": "carrier_quote", "confidence": 0.9}),
        input_tokens=100,
        output_tokens=50,
        model="gpt-4o-mini",
        provider="mock",
        latency_ms=200,
    )


@pytest.fixture
def mock_llm_client(mock_llm_response: LLMResponse) -> AsyncMock:
    """Mock LLM client returning mock_llm_response for every call."""
    client = AsyncMock()
    client.complete = AsyncMock(return_value=mock_llm_response)
    client.provider_name = "mock"
    return client


# === FIXTURES: Settings ===


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only and no backoff delay."""
    return Settings(_env_file=None, recovery_base_delay_s=0.0, recovery_jitter=False)
