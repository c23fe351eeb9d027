# src/tracking/agent_tracker.py — v2
"""Per-step aggregation of step records.

Turns StepResults into StepRecords and aggregates them by step name.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from callagents.tracking.models import StepRecord, StepStats

if TYPE_CHECKING:
    from callagents.pipeline.state import PipelineContext


def records_from_context(context: PipelineContext) -> list[StepRecord]:
    """Build one StepRecord per terminal StepResult of a run."""
    now = datetime.now(timezone.utc)
    records: list[StepRecord] = []
    for name, result in context.results.items():
        meta = result.output.metadata if result.output is not None else None
        records.append(
            StepRecord(
                run_id=context.run_id,
                call_id=context.metadata.call_id,
                call_type=context.call_type,
                step=name,
                status=result.status,
                degradation=result.degradation,
                strategy=result.strategy,
                attempts=result.attempts,
                duration_ms=result.duration_ms,
                tokens_used=meta.tokens_used if meta else 0,
                llm_calls=meta.llm_calls if meta else 0,
                estimated_cost_usd=meta.estimated_cost_usd if meta else 0.0,
                confidence=result.confidence,
                error_kind=result.error_kind,
                timestamp=now,
            )
        )
    return records


def aggregate_by_step(records: list[StepRecord]) -> dict[str, StepStats]:
    """Aggregate step records into per-step statistics.

    Args:
        records: StepRecords from one or more runs.

    Returns:
        Dict mapping step name to StepStats.
    """
    grouped: dict[str, list[StepRecord]] = defaultdict(list)
    for rec in records:
        grouped[rec.step].append(rec)

    result: dict[str, StepStats] = {}
    for step, step_records in grouped.items():
        executions = len(step_records)
        # Skipped steps never ran; keep them out of latency figures.
        ran = [r for r in step_records if r.status != "skipped"]
        latencies = [r.duration_ms for r in ran]
        failed = sum(1 for r in step_records if r.status == "failed")

        result[step] = StepStats(
            step=step,
            executions=executions,
            completed=sum(1 for r in step_records if r.status == "completed"),
            degraded=sum(1 for r in step_records if r.status == "degraded"),
            failed=failed,
            skipped=executions - len(ran),
            avg_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            max_latency_ms=max(latencies) if latencies else 0,
            total_attempts=sum(r.attempts for r in step_records),
            total_tokens=sum(r.tokens_used for r in step_records),
            estimated_cost_usd=sum(r.estimated_cost_usd for r in step_records),
            failure_rate=failed / len(ran) if ran else 0.0,
        )
    return result
