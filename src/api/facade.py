# src/api/facade.py — v2
"""Public API facade — one-shot extraction for a single call.

Usage:
    from callagents.api.facade import extract
    result = await extract(request, llm_client)

Long-lived services should keep one ExtractionOrchestrator instead, so
circuit breakers, cache and batching are shared across calls.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from callagents.api.models import ExtractionRequest
from callagents.config.settings import Settings
from callagents.pipeline.orchestrator import ExtractionOrchestrator

if TYPE_CHECKING:
    from callagents.llm.base_client import BaseLLMClient
    from callagents.pipeline.scheduler import PipelineResult

logger = logging.getLogger(__name__)


async def extract(
    request: ExtractionRequest,
    llm_client: BaseLLMClient,
    settings: Settings | None = None,
) -> PipelineResult:
    """Run the extraction pipeline for one call and return the aggregate result.

    Args:
        request: Transcript, utterances, metadata and optional call type.
        llm_client: Completion client used by every step.
        settings: Global settings. Loaded from .env if None.

    Raises:
        ValueError: If the transcript is empty.
    """
    if not request.transcript.strip():
        raise ValueError("Transcript is empty")

    settings = settings or Settings()
    orchestrator = ExtractionOrchestrator.from_settings(settings, llm_client)
    try:
        return await orchestrator.extract(request)
    finally:
        await orchestrator.aclose()
