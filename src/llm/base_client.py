# src/llm/base_client.py — v2
"""Abstract completion client interface.

The pipeline only depends on this contract: a prompt goes in, a parseable
payload comes out, and the call may time out, return malformed content or
fail outright. Provider adapters live outside this package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from callagents.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for completion providers."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
    ) -> LLMResponse:
        """Text completion expected to return a JSON object as content."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (openai, anthropic, ...)."""
