# src/llm/prompt_optimizer.py — v1
"""Best-effort prompt compression.

Heuristic text rewriting with no correctness guarantee: whitespace is
collapsed, filler phrases are dropped and "Example:" blocks are removed
for steps whose recent confidence is high. It is pluggable and off by
default; OptimizingLLMClient applies it to any client transparently.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque

from callagents.llm.base_client import BaseLLMClient
from callagents.llm.models import LLMResponse, Message

logger = logging.getLogger(__name__)

_FILLER_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"please\s+", re.IGNORECASE),
    re.compile(r"you should\s+", re.IGNORECASE),
    re.compile(r"make sure to\s+", re.IGNORECASE),
    re.compile(r"it is important that\s+", re.IGNORECASE),
]

_EXAMPLE_BLOCK = re.compile(r"Example:.*?(?=\n\s*\n|\Z)", re.IGNORECASE | re.DOTALL)
_WHITESPACE = re.compile(r"[ \t]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


class PromptOptimizer:
    """Rewrites prompts to save tokens.

    Args:
        strip_examples_above: Remove example blocks once a step's mean
            recent confidence exceeds this value.
        history_size: Number of confidence observations kept per step.
    """

    def __init__(self, strip_examples_above: float = 0.9, history_size: int = 20) -> None:
        self._strip_examples_above = strip_examples_above
        self._confidence: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=history_size)
        )
        self.chars_saved = 0

    def observe(self, step: str, confidence: float) -> None:
        """Feed back a step's output confidence."""
        self._confidence[step].append(confidence)

    def historical_confidence(self, step: str) -> float:
        history = self._confidence.get(step)
        if not history:
            return 0.0
        return sum(history) / len(history)

    def optimize(self, step: str, prompt: str) -> str:
        """Return the compressed prompt for step."""
        text = prompt
        if self.historical_confidence(step) > self._strip_examples_above:
            text = _EXAMPLE_BLOCK.sub("", text)
        # Paragraph breaks are kept: they delimit the example blocks.
        text = _BLANK_LINES.sub("\n\n", text)
        text = _WHITESPACE.sub(" ", text)
        for pattern in _FILLER_PATTERNS:
            text = pattern.sub("", text)
        text = text.strip()

        self.chars_saved += max(len(prompt) - len(text), 0)
        return text


class OptimizingLLMClient(BaseLLMClient):
    """Client wrapper that passes user prompts through a PromptOptimizer."""

    def __init__(self, inner: BaseLLMClient, optimizer: PromptOptimizer, step: str) -> None:
        self._inner = inner
        self._optimizer = optimizer
        self._step = step

    @property
    def provider_name(self) -> str:
        return self._inner.provider_name

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.3,
    ) -> LLMResponse:
        rewritten = [
            m.model_copy(update={"content": self._optimizer.optimize(self._step, m.content)})
            if m.role == "user"
            else m
            for m in messages
        ]
        return await self._inner.complete(
            rewritten, system=system, max_tokens=max_tokens, temperature=temperature
        )
