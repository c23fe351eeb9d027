# src/cache/result_cache.py — v2
"""In-process TTL cache of step outputs.

Entries are keyed by compute_cache_key(). Concurrent identical
invocations collapse into one: get_or_compute() keeps one in-flight task
per key, so followers wait for the leader and are served as hits. A caller
that stops waiting (step timeout) releases the slot.
Capacity overflow evicts the oldest entry; an optional background task
sweeps expired entries.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable

from callagents.cache.models import CacheEntry, CacheStats
from callagents.pipeline.plugin_kit.models import AgentOutput

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 300.0
DEFAULT_MAX_ENTRIES = 1000


class ResultCache:
    """TTL + capacity bounded cache of AgentOutputs.

    Args:
        ttl_s: Lifetime of an entry.
        max_entries: Capacity; the oldest entry is evicted beyond it.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_s: float = DEFAULT_TTL_S,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        # Insertion order == creation order; the first key is the oldest.
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> AgentOutput | None:
        """Live value for key, or None (expired entries are dropped)."""
        return self._lookup(key, record_miss=True)

    def entry(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def put(self, key: str, step: str, value: AgentOutput) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(
            key=key, step=step, value=value, created_at=self._clock(), ttl_s=self._ttl_s
        )
        while len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            self._evictions += 1
            logger.debug("Cache evicted oldest entry %s", oldest)

    async def get_or_compute(
        self,
        key: str,
        step: str,
        compute: Callable[[], Awaitable[AgentOutput]],
        on_wait: Callable[[asyncio.Task], None] | None = None,
    ) -> tuple[AgentOutput, bool]:
        """Return (value, hit). compute() runs at most once per key at a time.

        The computation runs in its own task; on_wait receives the task the
        caller ends up waiting on so it can release() it if it gives up.
        Errors from compute() propagate and nothing is stored.
        """
        cached = self._lookup(key, record_miss=False)
        if cached is not None:
            return cached, True

        task = self._in_flight.get(key)
        if task is not None:
            if on_wait is not None:
                on_wait(task)
            value = await asyncio.shield(task)
            self._record_follower_hit(key)
            return value, True

        self._misses += 1
        task = asyncio.get_running_loop().create_task(
            compute(), name=f"cache-compute-{step}"
        )
        self._in_flight[key] = task
        task.add_done_callback(functools.partial(self._settle, key, step))
        if on_wait is not None:
            on_wait(task)
        return await asyncio.shield(task), False

    def release(self, key: str, task: asyncio.Task) -> bool:
        """Give up on an in-flight computation.

        The next get_or_compute() for key starts a fresh one; whatever the
        released task eventually produces is discarded.
        """
        if self._in_flight.get(key) is not task:
            return False
        del self._in_flight[key]
        logger.info("Released in-flight computation for %s", key)
        return True

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def sweep_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def invalidate_step(self, step: str) -> int:
        keys = [k for k, e in self._entries.items() if e.step == step]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self, top_n: int = 5) -> CacheStats:
        lookups = self._hits + self._misses
        now = self._clock()
        top = sorted(self._entries.values(), key=lambda e: e.hits, reverse=True)[:top_n]
        return CacheStats(
            size=len(self._entries),
            max_entries=self._max_entries,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            evictions=self._evictions,
            expirations=self._expirations,
            top_entries=[
                {"key": e.key, "step": e.step, "hits": e.hits, "age_s": round(now - e.created_at, 3)}
                for e in top
            ],
        )

    # --- Background sweep ---

    def start_sweeper(self, interval_s: float) -> None:
        """Sweep expired entries every interval_s until aclose()."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(interval_s), name="result-cache-sweeper"
        )

    async def _sweep_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.sweep_expired()

    async def aclose(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    # --- Internals ---

    def _lookup(self, key: str, record_miss: bool) -> AgentOutput | None:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[key]
            self._expirations += 1
            entry = None
        if entry is None:
            if record_miss:
                self._misses += 1
            return None
        entry.hits += 1
        self._hits += 1
        return entry.value

    def _record_follower_hit(self, key: str) -> None:
        self._hits += 1
        entry = self._entries.get(key)
        if entry is not None:
            entry.hits += 1

    def _settle(self, key: str, step: str, task: asyncio.Task) -> None:
        exc = None if task.cancelled() else task.exception()
        if self._in_flight.get(key) is not task:
            logger.debug("Discarding result of released computation for %s", key)
            return
        del self._in_flight[key]
        if task.cancelled() or exc is not None:
            return
        self.put(key, step, task.result())
