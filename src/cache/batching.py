# src/cache/batching.py — v2
"""Coalesced scheduling of same-step invocations.

Each step name has its own asyncio.Queue of pending requests, drained by a
dedicated task. Requests that arrive within the coalescing window are
grouped (up to max_batch_size) and started together; each caller gets its
own result or exception through its own future. The underlying step is
still invoked once per request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_S = 0.1
DEFAULT_MAX_BATCH_SIZE = 10


@dataclass
class _Pending:
    invoke: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class StepBatcher:
    """Per-step request queues drained in time-windowed batches.

    Args:
        window_s: How long a batch stays open after its first request.
        max_batch_size: Batch is dispatched as soon as it holds this many.
    """

    def __init__(
        self,
        window_s: float = DEFAULT_WINDOW_S,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ) -> None:
        self._window_s = window_s
        self._max_batch_size = max_batch_size
        self._poll_s = max(window_s / 10, 0.001)
        self._queues: dict[str, asyncio.Queue[_Pending]] = {}
        self._drainers: dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()
        self._batches = 0
        self._requests = 0
        self._largest_batch = 0

    async def submit(self, step: str, invoke: Callable[[], Awaitable[Any]]) -> Any:
        """Queue invoke() under step and wait for its own result."""
        future = asyncio.get_running_loop().create_future()
        await self._queue(step).put(_Pending(invoke=invoke, future=future))
        return await future

    def _queue(self, step: str) -> asyncio.Queue[_Pending]:
        queue = self._queues.get(step)
        if queue is None:
            queue = self._queues[step] = asyncio.Queue()
        drainer = self._drainers.get(step)
        if drainer is None or drainer.done():
            self._drainers[step] = asyncio.get_running_loop().create_task(
                self._drain(step, queue), name=f"batch-drain-{step}"
            )
        return queue

    async def _drain(self, step: str, queue: asyncio.Queue[_Pending]) -> None:
        loop = asyncio.get_running_loop()
        while True:
            batch = [await queue.get()]
            deadline = loop.time() + self._window_s
            while len(batch) < self._max_batch_size:
                try:
                    batch.append(queue.get_nowait())
                    continue
                except asyncio.QueueEmpty:
                    pass
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(remaining, self._poll_s))

            self._batches += 1
            self._requests += len(batch)
            self._largest_batch = max(self._largest_batch, len(batch))
            logger.debug("Dispatching batch of %d for '%s'", len(batch), step)
            task = loop.create_task(self._run_batch(batch))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _run_batch(self, batch: list[_Pending]) -> None:
        try:
            results = await asyncio.gather(
                *(item.invoke() for item in batch), return_exceptions=True
            )
        except asyncio.CancelledError:
            for item in batch:
                item.future.cancel()
            raise
        for item, result in zip(batch, results):
            if item.future.done():
                continue
            if isinstance(result, asyncio.CancelledError):
                item.future.cancel()
            elif isinstance(result, BaseException):
                item.future.set_exception(result)
            else:
                item.future.set_result(result)

    def stats(self) -> dict[str, Any]:
        return {
            "batches": self._batches,
            "batched_requests": self._requests,
            "largest_batch": self._largest_batch,
            "avg_batch_size": self._requests / self._batches if self._batches else 0.0,
            "queued": {step: q.qsize() for step, q in self._queues.items() if q.qsize()},
        }

    async def aclose(self) -> None:
        """Stop the drain tasks and cancel requests still queued."""
        tasks = [*self._drainers.values(), *self._running]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for queue in self._queues.values():
            while not queue.empty():
                queue.get_nowait().future.cancel()
        self._drainers.clear()
        self._running.clear()
