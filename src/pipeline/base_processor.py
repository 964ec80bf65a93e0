# src/pipeline/base_processor.py - v1
"""Abstract per-document extraction pipeline.

Implementations detect questions and diagram regions in one document.
They must be safe to call concurrently with themselves and should raise
PipelineError with an ErrorKind to classify failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from quextractor.core.models import DocumentInput, PipelineResult


class BaseDocumentProcessor(ABC):
    """Unified interface for question-extraction pipelines."""

    @abstractmethod
    async def process_document(self, document: DocumentInput) -> PipelineResult:
        """Run the full extraction pipeline on one document."""
