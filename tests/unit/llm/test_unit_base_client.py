# tests/unit/llm/test_unit_base_client.py — v2
"""Tests for llm/base_client.py — BaseLLMClient ABC is not instantiable."""

from __future__ import annotations

import pytest

from callagents.llm.base_client import BaseLLMClient
from callagents.llm.models import LLMResponse, Message


class TestBaseLLMClient:
    def test_cannot_instantiate(self):
        with pytest.raises(TypeError):
            BaseLLMClient()  # type: ignore[abstract]

    @pytest.mark.asyncio
    async def test_minimal_subclass(self):
        class EchoClient(BaseLLMClient):
            async def complete(self, messages, system=None, max_tokens=2048, temperature=0.3):
                return LLMResponse(content=messages[-1].content)

            @property
            def provider_name(self):
                return "echo"

        client = EchoClient()
        response = await client.complete([Message(role="user", content="{}")])
        assert response.content == "{}"
        assert client.provider_name == "echo"
