# src/tracking/models.py — v2
"""Tracking domain models: StepRecord, StepStats, ModelPricing."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from callagents.core.models import DegradationLevel, RecoveryStrategy, StepStatus


class StepRecord(BaseModel):
    """One terminal step outcome of one pipeline run."""

    run_id: str
    call_id: str
    call_type: str | None = None
    step: str
    status: StepStatus
    degradation: DegradationLevel = "none"
    strategy: RecoveryStrategy = "none"
    attempts: int = 0
    duration_ms: int = 0
    tokens_used: int = 0
    llm_calls: int = 0
    estimated_cost_usd: float = 0.0
    confidence: float | None = None
    error_kind: str | None = None
    timestamp: datetime


class StepStats(BaseModel):
    """Per-step aggregated stats across runs."""

    step: str
    executions: int
    completed: int = 0
    degraded: int = 0
    failed: int = 0
    skipped: int = 0
    avg_latency_ms: float = 0.0
    max_latency_ms: int = 0
    total_attempts: int = 0
    total_tokens: int = 0
    estimated_cost_usd: float = 0.0
    failure_rate: float = 0.0


class ModelPricing(BaseModel):
    """LLM model pricing configuration."""

    model: str
    input_price_per_1m: float
    output_price_per_1m: float
