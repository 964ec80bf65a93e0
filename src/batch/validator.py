# src/batch/validator.py - v1
"""Intake validation: supported MIME type and maximum size."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass

from quextractor.core.models import DocumentInput

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ValidationOutcome:
    name: str
    valid: bool
    reason: str | None = None


def resolve_mime_type(document: DocumentInput) -> str | None:
    """Declared MIME type, else a guess from the file name."""
    if document.mime_type:
        return document.mime_type
    guessed, _ = mimetypes.guess_type(document.name)
    return guessed


def validate_document(
    document: DocumentInput,
    supported_formats: list[str],
    max_file_size_mb: float,
) -> ValidationOutcome:
    """Check one document against format and size limits."""
    mime_type = resolve_mime_type(document)
    if mime_type not in supported_formats:
        return ValidationOutcome(
            document.name, False, f"Unsupported format: {mime_type or 'unknown'}"
        )

    size_mb = (document.size or 0) / BYTES_PER_MB
    if size_mb > max_file_size_mb:
        return ValidationOutcome(document.name, False, f"File too large: {size_mb:.1f}MB")

    return ValidationOutcome(document.name, True)
