# src/tracking/result_aggregator.py - v1
"""Summary statistics over per-document pipeline results."""

from __future__ import annotations

from typing import Sequence

from quextractor.batch.models import Summary
from quextractor.core.models import PipelineResult


def summarize(
    results: Sequence[PipelineResult],
    total_files: int | None = None,
) -> Summary:
    """Aggregate results into a Summary.

    Args:
        results: Results of documents that produced output.
        total_files: Number of documents in the run. Defaults to
            ``len(results)``; documents without a result count as failed.

    Returns:
        Summary where successful_files + failed_files == total_files.
    """
    total = len(results) if total_files is None else total_files
    if total < len(results):
        msg = f"total_files ({total}) is smaller than the number of results ({len(results)})"
        raise ValueError(msg)

    successful = sum(1 for r in results if r.success)
    total_questions = sum(len(r.questions) for r in results)
    with_diagrams = sum(r.diagram_count for r in results)
    total_time = sum(r.metadata.processing_time_ms for r in results)
    average_quality = (
        sum(r.metadata.quality_score for r in results) / len(results) if results else 0.0
    )

    return Summary(
        total_files=total,
        successful_files=successful,
        failed_files=total - successful,
        total_questions=total_questions,
        questions_with_diagrams=with_diagrams,
        average_quality=average_quality,
        total_processing_time_ms=total_time,
    )
