# tests/conftest.py - v2
"""Shared test fixtures for all unit and integration tests.

Provides a scripted document processor, sample documents and results,
and an instant sleep so retries and inter-batch pauses cost nothing.
No external dependencies: all I/O stays in tmp_path.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from quextractor.core.models import (
    DocumentInput,
    ExtractedQuestion,
    PipelineResult,
    ResultMetadata,
)
from quextractor.logging.context import clear_context
from quextractor.pipeline.base_processor import BaseDocumentProcessor


def make_result(
    name: str,
    quality: float = 0.8,
    questions: int = 2,
    diagrams: int = 0,
    success: bool = True,
    processing_time_ms: float = 100.0,
    warnings: list[str] | None = None,
    errors: list[str] | None = None,
) -> PipelineResult:
    """PipelineResult with ``questions`` questions, the first ``diagrams`` with a diagram."""
    return PipelineResult(
        success=success,
        questions=[
            ExtractedQuestion(
                number=i + 1,
                text=f"Question {i + 1} of {name}",
                has_diagram=i < diagrams,
                diagram_ids=[f"{name}-d{i}"] if i < diagrams else [],
            )
            for i in range(questions)
        ],
        warnings=warnings or [],
        errors=errors or [],
        metadata=ResultMetadata(
            original_file_name=name,
            processing_time_ms=processing_time_ms,
            quality_score=quality,
        ),
    )


def make_document(name: str, size: int = 1024, mime_type: str | None = None) -> DocumentInput:
    return DocumentInput(name=name, content=b"%PDF-1.4 " + b"x" * size, mime_type=mime_type)


class ScriptedProcessor(BaseDocumentProcessor):
    """Processor whose behaviour per document name is scripted by the test.

    A script entry is either a PipelineResult, an exception (raised on every
    call) or a callable ``(attempt) -> PipelineResult | Exception``.
    Unscripted documents succeed with ``make_result(name)``.
    """

    def __init__(self, script: dict[str, Any] | None = None) -> None:
        self.script = script or {}
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.started: dict[str, asyncio.Event] = {}

    def gate(self, name: str) -> asyncio.Event:
        """Block processing of ``name`` until the returned event is set."""
        self.gates[name] = asyncio.Event()
        self.started[name] = asyncio.Event()
        return self.gates[name]

    async def process_document(self, document: DocumentInput) -> PipelineResult:
        self.calls.append(document.name)
        if document.name in self.gates:
            self.started[document.name].set()
            await self.gates[document.name].wait()
        await asyncio.sleep(0)

        outcome = self.script.get(document.name)
        if callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(self.calls.count(document.name))
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return make_result(document.name)
        return outcome


# === FIXTURES ===


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def processor() -> ScriptedProcessor:
    return ScriptedProcessor()


@pytest.fixture
def instant_sleep() -> Callable[[float], Any]:
    """Sleep replacement that records requested delays and yields once."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)
        await asyncio.sleep(0)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def sample_documents() -> list[DocumentInput]:
    return [make_document(f"doc{i}.pdf") for i in range(1, 6)]


@pytest.fixture
def sample_results() -> list[PipelineResult]:
    return [
        make_result("a.pdf", quality=0.5, questions=3, diagrams=1),
        make_result("b.pdf", quality=0.7, questions=2, diagrams=0),
        make_result("c.pdf", quality=0.9, questions=4, diagrams=2),
    ]


@pytest.fixture
def result_factory() -> Callable[..., PipelineResult]:
    return make_result


@pytest.fixture
def document_factory() -> Callable[..., DocumentInput]:
    return make_document


@pytest.fixture
def processor_factory() -> Callable[..., ScriptedProcessor]:
    return ScriptedProcessor
