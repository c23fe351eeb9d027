# src/tracking/cost_calculator.py — v2
"""Cost estimation for completion responses.

Unknown models are priced at zero; steps report whatever the table knows.
"""

from __future__ import annotations

from callagents.llm.models import LLMResponse
from callagents.tracking.models import ModelPricing

# Default pricing per 1M tokens
DEFAULT_PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing(
        model="gpt-4o",
        input_price_per_1m=2.50, output_price_per_1m=10.0,
    ),
    "gpt-4o-mini": ModelPricing(
        model="gpt-4o-mini",
        input_price_per_1m=0.15, output_price_per_1m=0.60,
    ),
    "gpt-4-turbo": ModelPricing(
        model="gpt-4-turbo",
        input_price_per_1m=10.0, output_price_per_1m=30.0,
    ),
    "claude-haiku-4-5-20251001": ModelPricing(
        model="claude-haiku-4-5-20251001",
        input_price_per_1m=0.80, output_price_per_1m=4.0,
    ),
    "claude-sonnet-4-20250514": ModelPricing(
        model="claude-sonnet-4-20250514",
        input_price_per_1m=3.0, output_price_per_1m=15.0,
    ),
}


def estimate_response_cost(
    response: LLMResponse, pricing: dict[str, ModelPricing] | None = None
) -> float:
    """Estimated USD cost of a single completion."""
    pricing = pricing or DEFAULT_PRICING
    p = pricing.get(response.model)
    if p is None:
        return 0.0
    return (response.input_tokens * p.input_price_per_1m / 1_000_000
            + response.output_tokens * p.output_price_per_1m / 1_000_000)
