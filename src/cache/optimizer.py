# src/cache/optimizer.py — v2
"""Invocation layer in front of every step execution.

cache lookup -> (batched or direct) execute -> validate -> store. Invalid
outputs raise InvalidOutputError and are never cached. A StepCall binds one
step of one run so the recovery engine can release its cache slot when an
attempt times out.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from callagents.cache.fingerprint import compute_cache_key

if TYPE_CHECKING:
    from callagents.cache.batching import StepBatcher
    from callagents.cache.result_cache import ResultCache
    from callagents.llm.base_client import BaseLLMClient
    from callagents.pipeline.plugin_kit.base_agent import BaseAgent
    from callagents.pipeline.plugin_kit.models import AgentOutput
    from callagents.pipeline.state import PipelineContext

logger = logging.getLogger(__name__)


class StepInvoker:
    """Runs a step through the optional cache and batcher.

    Args:
        cache: Shared result cache, or None to always execute.
        batcher: Shared batcher for batchable steps, or None.
    """

    def __init__(
        self,
        cache: ResultCache | None = None,
        batcher: StepBatcher | None = None,
    ) -> None:
        self._cache = cache
        self._batcher = batcher
        self._executions: Counter[str] = Counter()
        self._hits: Counter[str] = Counter()
        self._misses: Counter[str] = Counter()
        self._batched: Counter[str] = Counter()

    @property
    def cache(self) -> ResultCache | None:
        return self._cache

    @property
    def batcher(self) -> StepBatcher | None:
        return self._batcher

    def call(
        self, agent: BaseAgent, context: PipelineContext, llm: BaseLLMClient
    ) -> StepCall:
        return StepCall(self, agent, context, llm)

    async def invoke(
        self,
        agent: BaseAgent,
        context: PipelineContext,
        llm: BaseLLMClient,
        on_wait: Callable[[str, asyncio.Task], None] | None = None,
    ) -> AgentOutput:
        """One attempt at running agent against context.

        on_wait(key, task) is told which cache computation this attempt waits on.
        """

        async def run() -> AgentOutput:
            self._executions[agent.name] += 1
            output = await agent.execute(context, llm)
            agent.validate_output(output)
            return output

        async def dispatch() -> AgentOutput:
            if self._batcher is not None and agent.batchable:
                self._batched[agent.name] += 1
                return await self._batcher.submit(agent.name, run)
            return await run()

        if self._cache is None:
            return await dispatch()

        key = compute_cache_key(agent.name, agent.build_input(context))
        track = functools.partial(on_wait, key) if on_wait is not None else None
        output, hit = await self._cache.get_or_compute(
            key, agent.name, dispatch, on_wait=track
        )
        if hit:
            self._hits[agent.name] += 1
            logger.debug("Cache hit for '%s'", agent.name)
        else:
            self._misses[agent.name] += 1
        return output

    def executions(self, step: str) -> int:
        return self._executions[step]

    def stats(self) -> dict[str, Any]:
        return {
            "executions": dict(self._executions),
            "cache_hits": dict(self._hits),
            "cache_misses": dict(self._misses),
            "batched_requests": dict(self._batched),
            "cache": self._cache.stats().model_dump() if self._cache is not None else None,
            "batching": self._batcher.stats() if self._batcher is not None else None,
        }


class StepCall:
    """One step of one run, awaited once per attempt.

    abandon() releases the cache computation the last attempt was waiting
    on, so the next attempt invokes the step again instead of joining it.
    """

    def __init__(
        self,
        invoker: StepInvoker,
        agent: BaseAgent,
        context: PipelineContext,
        llm: BaseLLMClient,
    ) -> None:
        self._invoker = invoker
        self._agent = agent
        self._context = context
        self._llm = llm
        self._waiting: tuple[str, asyncio.Task] | None = None

    def __call__(self) -> Awaitable[AgentOutput]:
        return self._invoker.invoke(
            self._agent, self._context, self._llm, on_wait=self._track
        )

    def _track(self, key: str, task: asyncio.Task) -> None:
        self._waiting = (key, task)

    def abandon(self) -> None:
        cache = self._invoker.cache
        if self._waiting is None or cache is None:
            return
        key, task = self._waiting
        self._waiting = None
        cache.release(key, task)
