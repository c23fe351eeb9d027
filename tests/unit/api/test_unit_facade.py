# tests/unit/api/test_unit_facade.py — v2
"""Tests for api/facade.py — one-shot extract()."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from callagents.api.facade import extract
from callagents.api.models import ExtractionRequest
from callagents.llm.models import LLMResponse


@pytest.fixture
def generic_client() -> AsyncMock:
    client = AsyncMock()
    client.complete = AsyncMock(return_value=LLMResponse(
        content=json.dumps({"primary_type": "voicemail", "confidence": 0.9}),
        input_tokens=10, output_tokens=10, model="test", provider="test",
    ))
    return client


class TestExtract:
    @pytest.mark.asyncio
    async def test_empty_transcript_rejected(self, call_metadata, generic_client, settings):
        request = ExtractionRequest(transcript="   ", metadata=call_metadata)
        with pytest.raises(ValueError, match="Transcript is empty"):
            await extract(request, generic_client, settings)
        generic_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_runs_pipeline(self, call_metadata, generic_client, settings):
        request = ExtractionRequest(
            transcript="You have reached Summit Logistics, leave a message.",
            metadata=call_metadata,
        )
        result = await extract(request, generic_client, settings)
        assert result.call_type == "voicemail"
        assert result.steps["classification"].status == "completed"
        assert "summary" in result.steps
        assert result.success is True
