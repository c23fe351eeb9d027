# tests/unit/cache/test_unit_batching.py — v1
"""Tests for cache/batching.py — time-windowed per-step batches."""

from __future__ import annotations

import asyncio

import pytest

from callagents.cache.batching import StepBatcher


def _returning(value):
    async def invoke():
        return value
    return invoke


def _raising(error: Exception):
    async def invoke():
        raise error
    return invoke


class TestStepBatcher:
    @pytest.mark.asyncio
    async def test_single_request(self):
        batcher = StepBatcher(window_s=0.01)
        try:
            assert await batcher.submit("summary", _returning(42)) == 42
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_requests_in_window_share_a_batch(self):
        batcher = StepBatcher(window_s=0.02)
        try:
            results = await asyncio.gather(
                *(batcher.submit("summary", _returning(i)) for i in range(3))
            )
            assert results == [0, 1, 2]
            stats = batcher.stats()
            assert stats["batches"] == 1
            assert stats["largest_batch"] == 3
            assert stats["avg_batch_size"] == 3.0
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_max_batch_size(self):
        batcher = StepBatcher(window_s=0.02, max_batch_size=2)
        try:
            results = await asyncio.gather(
                *(batcher.submit("summary", _returning(i)) for i in range(5))
            )
            assert results == [0, 1, 2, 3, 4]
            assert batcher.stats()["batches"] == 3
            assert batcher.stats()["largest_batch"] == 2
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_errors_delivered_per_caller(self):
        batcher = StepBatcher(window_s=0.02)
        try:
            results = await asyncio.gather(
                batcher.submit("summary", _returning("ok")),
                batcher.submit("summary", _raising(ValueError("bad"))),
                return_exceptions=True,
            )
            assert results[0] == "ok"
            assert isinstance(results[1], ValueError)
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_steps_batched_separately(self):
        batcher = StepBatcher(window_s=0.02)
        try:
            await asyncio.gather(
                batcher.submit("summary", _returning(1)),
                batcher.submit("validation", _returning(2)),
            )
            assert batcher.stats()["batches"] == 2
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_slow_batch_does_not_block_next(self):
        batcher = StepBatcher(window_s=0.01, max_batch_size=1)
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "slow"

        try:
            slow_task = asyncio.ensure_future(batcher.submit("summary", slow))
            fast = await asyncio.wait_for(batcher.submit("summary", _returning("fast")), 1.0)
            assert fast == "fast"
            release.set()
            assert await slow_task == "slow"
        finally:
            await batcher.aclose()

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending(self):
        batcher = StepBatcher(window_s=0.01)
        never = asyncio.Event()

        async def blocked():
            await never.wait()

        task = asyncio.ensure_future(batcher.submit("summary", blocked))
        await asyncio.sleep(0.05)
        await batcher.aclose()
        with pytest.raises(asyncio.CancelledError):
            await task
