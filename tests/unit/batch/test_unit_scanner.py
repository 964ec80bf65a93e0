# tests/unit/batch/test_unit_scanner.py - v2
"""Tests for batch.scanner - directory scanning and session submission."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from quextractor.batch.scanner import KNOWN_EXTENSIONS, BatchScanner


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _create_test_files(tmp_path: Path) -> dict[str, Path]:
    """Create a set of test files in tmp_path."""
    files = {}
    for name, content in [
        ("exam.pdf", b"%PDF-1.4 fake"),
        ("photo.png", b"\x89PNG fake"),
        ("notes.txt", b"plain text"),
        (".hidden.pdf", b"%PDF-1.4 hidden"),
        ("sub/nested.pdf", b"%PDF-1.4 nested"),
    ]:
        p = tmp_path / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content)
        files[name] = p
    return files


# ---------------------------------------------------------------------------
# Tests - scan()
# ---------------------------------------------------------------------------

class TestBatchScannerScan:
    def test_scan_finds_known_extensions(self, tmp_path: Path):
        _create_test_files(tmp_path)
        names = [d.name for d in BatchScanner().scan(tmp_path)]
        assert names == ["exam.pdf", "photo.png", "nested.pdf"]

    def test_scan_sets_mime_type_and_size(self, tmp_path: Path):
        files = _create_test_files(tmp_path)
        doc = next(d for d in BatchScanner().scan(tmp_path) if d.name == "exam.pdf")
        assert doc.mime_type == KNOWN_EXTENSIONS[".pdf"]
        assert doc.size == files["exam.pdf"].stat().st_size
        assert doc.content is None
        assert doc.path == files["exam.pdf"].resolve()

    def test_scan_non_recursive(self, tmp_path: Path):
        _create_test_files(tmp_path)
        names = {d.name for d in BatchScanner().scan(tmp_path, recursive=False)}
        assert "nested.pdf" not in names

    def test_scan_include_unknown(self, tmp_path: Path):
        _create_test_files(tmp_path)
        docs = BatchScanner().scan(tmp_path, include_unknown=True)
        notes = next(d for d in docs if d.name == "notes.txt")
        assert notes.mime_type == "text/plain"

    def test_custom_extensions(self, tmp_path: Path):
        _create_test_files(tmp_path)
        docs = BatchScanner(extensions={".pdf": "application/pdf"}).scan(tmp_path)
        assert {d.name for d in docs} == {"exam.pdf", "nested.pdf"}

    def test_scan_empty_directory(self, tmp_path: Path):
        assert BatchScanner().scan(tmp_path) == []

    def test_scan_invalid_root_raises(self, tmp_path: Path):
        with pytest.raises(ValueError, match="not a directory"):
            BatchScanner().scan(tmp_path / "missing")


# ---------------------------------------------------------------------------
# Tests - check() and scan_and_start()
# ---------------------------------------------------------------------------

class TestBatchScannerSubmit:
    def test_check_reports_per_file(self, tmp_path: Path):
        _create_test_files(tmp_path)
        scanner = BatchScanner()
        outcomes = scanner.check(scanner.scan(tmp_path), ["application/pdf"], 50)
        by_name = {o.name: o for o in outcomes}
        assert by_name["exam.pdf"].valid
        assert by_name["photo.png"].reason == "Unsupported format: image/png"

    @pytest.mark.asyncio
    async def test_scan_and_start(self, tmp_path: Path):
        _create_test_files(tmp_path)
        orchestrator = MagicMock()
        orchestrator.start_session = AsyncMock(return_value="session_x")

        sid = await BatchScanner().scan_and_start(orchestrator, tmp_path)

        assert sid == "session_x"
        documents = orchestrator.start_session.await_args.args[0]
        assert [d.name for d in documents] == ["exam.pdf", "photo.png", "nested.pdf"]

    @pytest.mark.asyncio
    async def test_scan_and_start_empty(self, tmp_path: Path):
        orchestrator = MagicMock()
        orchestrator.start_session = AsyncMock()
        assert await BatchScanner().scan_and_start(orchestrator, tmp_path) is None
        orchestrator.start_session.assert_not_awaited()
