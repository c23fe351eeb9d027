# src/core/confidence.py — v1
"""Confidence aggregation shared by every step.

Factor scores are averaged into a single value and bucketed into a
qualitative level. Scores are always derived through these functions,
never hand-set.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ConfidenceLevel = Literal["low", "medium", "high"]

HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.5


class ConfidenceScore(BaseModel):
    """Aggregated confidence with its human-readable factor breakdown."""

    value: float = Field(ge=0.0, le=1.0)
    level: ConfidenceLevel
    factors: list[str] = Field(default_factory=list)


def confidence_level(value: float) -> ConfidenceLevel:
    """Bucket a [0, 1] value: high >= 0.8, medium >= 0.5, else low."""
    if value >= HIGH_THRESHOLD:
        return "high"
    if value >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def aggregate_confidence(factors: dict[str, float]) -> ConfidenceScore:
    """Combine named factor scores into one ConfidenceScore.

    Each factor is clamped to [0, 1] before averaging. An empty factor
    mapping yields a zero, low-confidence score.

    Args:
        factors: factor name -> score.

    Returns:
        ConfidenceScore with mean value, level and "name: NN%" breakdown.
    """
    if not factors:
        return ConfidenceScore(value=0.0, level="low", factors=[])

    clamped = {name: min(max(float(v), 0.0), 1.0) for name, v in factors.items()}
    value = sum(clamped.values()) / len(clamped)
    return ConfidenceScore(
        value=value,
        level=confidence_level(value),
        factors=[f"{name}: {v * 100:.0f}%" for name, v in clamped.items()],
    )


def cap_confidence(score: ConfidenceScore, cap: float, reason: str) -> ConfidenceScore:
    """Return a copy of score with its value limited to cap."""
    if score.value <= cap:
        return score.model_copy(update={"factors": [*score.factors, reason]})
    return ConfidenceScore(
        value=cap,
        level=confidence_level(cap),
        factors=[*score.factors, reason],
    )
