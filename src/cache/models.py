# src/cache/models.py — v2
"""Cache domain models: CacheEntry, CacheStats."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from callagents.pipeline.plugin_kit.models import AgentOutput


class CacheEntry(BaseModel):
    """Cached step output. Times come from the cache's clock."""

    key: str
    step: str
    value: AgentOutput
    created_at: float
    ttl_s: float
    hits: int = 0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_s

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStats(BaseModel):
    """Point-in-time cache counters."""

    size: int
    max_entries: int
    hits: int
    misses: int
    hit_rate: float
    evictions: int
    expirations: int
    top_entries: list[dict[str, Any]] = Field(default_factory=list)
