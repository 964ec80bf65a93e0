# src/batch/scanner.py - v2
"""Batch scanner: directory scanning and session submission.

Discovers candidate documents in a directory and hands them to a
BatchOrchestrator. Files with unsupported types are still returned, so
validation failures show up on the session instead of disappearing.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

from quextractor.batch.validator import ValidationOutcome, validate_document
from quextractor.core.models import DocumentInput

if TYPE_CHECKING:
    from quextractor.batch.models import OrchestrationConfig
    from quextractor.batch.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)

# Extensions the vision pipeline can accept, mapped to MIME types
KNOWN_EXTENSIONS: dict[str, str] = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


class BatchScanner:
    """Scan directories for documents and submit them for processing."""

    def __init__(self, extensions: dict[str, str] | None = None) -> None:
        self._extensions = extensions or KNOWN_EXTENSIONS

    def scan(
        self,
        scan_root: Path,
        recursive: bool = True,
        include_unknown: bool = False,
    ) -> list[DocumentInput]:
        """Discover documents in a directory, sorted by path.

        Args:
            scan_root: Root directory to scan.
            recursive: If True, scan subdirectories recursively.
            include_unknown: Also return files with unrecognised extensions.

        Raises:
            ValueError: If scan_root is not a directory.
        """
        if not scan_root.is_dir():
            msg = f"Scan root is not a directory: {scan_root}"
            raise ValueError(msg)

        documents: list[DocumentInput] = []
        pattern_fn = scan_root.rglob if recursive else scan_root.glob
        for path in sorted(pattern_fn("*")):
            if not path.is_file() or path.name.startswith("."):
                continue
            mime_type = self._extensions.get(path.suffix.lower())
            if mime_type is None:
                if not include_unknown:
                    continue
                mime_type, _ = mimetypes.guess_type(path.name)

            resolved = path.resolve()
            documents.append(
                DocumentInput(
                    name=path.name,
                    path=resolved,
                    size=resolved.stat().st_size,
                    mime_type=mime_type,
                )
            )

        logger.info(
            "Scanned %s: found %d document(s) (recursive=%s)",
            scan_root, len(documents), recursive,
        )
        return documents

    def check(
        self,
        documents: list[DocumentInput],
        supported_formats: list[str],
        max_file_size_mb: float,
    ) -> list[ValidationOutcome]:
        """Dry-run intake validation without starting a session."""
        return [
            validate_document(d, supported_formats, max_file_size_mb) for d in documents
        ]

    async def scan_and_start(
        self,
        orchestrator: BatchOrchestrator,
        scan_root: Path,
        recursive: bool = True,
        config: OrchestrationConfig | None = None,
    ) -> str | None:
        """Scan a directory and start one session over everything found.

        Returns:
            The session id, or None if the directory holds no documents.
        """
        documents = self.scan(scan_root, recursive=recursive)
        if not documents:
            logger.info("No documents under %s, nothing to start", scan_root)
            return None
        return await orchestrator.start_session(documents, config)
