# src/core/models.py - v1
"""Shared Pydantic domain models used across modules.

Documents enter the orchestrator as DocumentInput and come back from the
extraction pipeline as PipelineResult. No module redefines these types.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


# === INPUT ===


class DocumentInput(BaseModel):
    """A document submitted for question extraction.

    Either ``content`` (in-memory bytes) or ``path`` must be set. ``size``
    and ``mime_type`` are derived from them when omitted.
    """

    name: str
    content: bytes | None = Field(default=None, repr=False)
    path: Path | None = None
    size: int | None = None
    mime_type: str | None = None

    @model_validator(mode="after")
    def _derive_size_and_type(self) -> DocumentInput:
        if self.content is None and self.path is None:
            raise ValueError(f"Document '{self.name}' has neither content nor path")
        if self.size is None:
            if self.content is not None:
                self.size = len(self.content)
            elif self.path is not None and self.path.exists():
                self.size = self.path.stat().st_size
            else:
                self.size = 0
        if self.mime_type is None:
            guessed, _ = mimetypes.guess_type(self.name)
            self.mime_type = guessed
        return self

    @classmethod
    def from_path(cls, path: Path) -> DocumentInput:
        """Build a path-backed document (content is read lazily)."""
        resolved = Path(path).expanduser().resolve()
        return cls(name=resolved.name, path=resolved)

    def read_bytes(self) -> bytes:
        """Return raw document bytes, reading from disk when path-backed."""
        if self.content is not None:
            return self.content
        assert self.path is not None
        return self.path.read_bytes()


# === PIPELINE OUTPUT ===


class ExtractedQuestion(BaseModel):
    """A single question detected in a document."""

    number: int
    text: str
    options: list[str] = Field(default_factory=list)
    page: int | None = None
    has_diagram: bool = False
    diagram_ids: list[str] = Field(default_factory=list)


class ResultMetadata(BaseModel):
    """Per-document processing metadata reported by the pipeline."""

    original_file_name: str
    file_size: int = 0
    page_count: int = 0
    processing_time_ms: float = 0.0
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)


class PipelineResult(BaseModel):
    """Outcome of running one document through the extraction pipeline."""

    success: bool = True
    questions: list[ExtractedQuestion] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    metadata: ResultMetadata

    @property
    def diagram_count(self) -> int:
        """Number of questions that carry at least one diagram."""
        return sum(1 for q in self.questions if q.has_diagram)
