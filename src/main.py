# src/main.py - v2
"""CLI entry point: validate, sessions, show commands.

Usage:
    quextractor validate <directory> [options]
    quextractor sessions [--state-dir DIR]
    quextractor show <session_id> [--state-dir DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from quextractor.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="quextractor",
        description=f"quExtractor v{__version__}: batch question extraction orchestrator",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- validate ---
    p_validate = subparsers.add_parser(
        "validate", help="Check which files in a directory would be accepted",
    )
    p_validate.add_argument("directory", type=Path, help="Directory to scan")
    p_validate.add_argument(
        "--no-recursive", action="store_true",
        help="Disable recursive scanning",
    )
    p_validate.add_argument(
        "--max-size-mb", type=float, default=None,
        help="Override the maximum file size (default: from settings)",
    )
    p_validate.set_defaults(func=_cmd_validate)

    # --- sessions ---
    p_sessions = subparsers.add_parser(
        "sessions", help="List persisted sessions",
    )
    p_sessions.add_argument(
        "--state-dir", type=Path, default=None,
        help="Session state directory (default: from settings)",
    )
    p_sessions.set_defaults(func=_cmd_sessions)

    # --- show ---
    p_show = subparsers.add_parser(
        "show", help="Print a persisted session and its summary as JSON",
    )
    p_show.add_argument("session_id", help="Session identifier")
    p_show.add_argument(
        "--state-dir", type=Path, default=None,
        help="Session state directory (default: from settings)",
    )
    p_show.set_defaults(func=_cmd_show)

    return parser


async def _cmd_validate(args: argparse.Namespace) -> int:
    """Dry-run intake validation over a directory."""
    from quextractor.batch.scanner import BatchScanner
    from quextractor.config.settings import Settings

    directory: Path = args.directory
    if not directory.is_dir():
        logger.error("Not a directory: %s", directory)
        return 1

    settings = Settings()
    max_size = args.max_size_mb if args.max_size_mb is not None else settings.max_file_size_mb

    scanner = BatchScanner()
    documents = scanner.scan(directory, recursive=not args.no_recursive, include_unknown=True)
    outcomes = scanner.check(documents, settings.supported_formats_list, max_size)

    accepted = [o for o in outcomes if o.valid]
    print(f"\nValidation of {directory}:")
    for outcome in outcomes:
        mark = "ok " if outcome.valid else "ERR"
        detail = f"  ({outcome.reason})" if outcome.reason else ""
        print(f"  [{mark}] {outcome.name}{detail}")
    print(f"\n  Accepted: {len(accepted)}/{len(outcomes)}")
    return 0 if len(accepted) == len(outcomes) else 2


async def _cmd_sessions(args: argparse.Namespace) -> int:
    """List persisted sessions with their status."""
    store = _open_store(args.state_dir)
    ids = await store.list_ids()
    if not ids:
        print(f"No sessions in {store.root}")
        return 0

    print(f"\nSessions in {store.root}:")
    for session_id in ids:
        session = await store.load(session_id)
        if session is None:
            print(f"  {session_id}  <unreadable>")
            continue
        done = sum(1 for f in session.files if f.is_terminal)
        print(
            f"  {session.id}  {session.status.value:<10s} "
            f"{done}/{len(session.files)} files  {session.progress.percentage}%"
        )
    return 0


async def _cmd_show(args: argparse.Namespace) -> int:
    """Dump a persisted session plus its computed summary."""
    from quextractor.batch.models import FileStatus
    from quextractor.tracking.result_aggregator import summarize

    store = _open_store(args.state_dir)
    session = await store.load(args.session_id)
    if session is None:
        logger.error("Session not found: %s", args.session_id)
        return 1

    results = [
        f.result for f in session.files if f.status == FileStatus.COMPLETED and f.result
    ]
    payload = {
        "session": session.model_dump(mode="json"),
        "summary": summarize(results, total_files=len(session.files)).model_dump(),
    }
    print(json.dumps(payload, indent=2))
    return 0


def _open_store(state_dir: Path | None):
    from quextractor.config.settings import Settings
    from quextractor.storage.json_session_store import JsonSessionStore

    return JsonSessionStore(state_dir or Settings().state_dir)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage (text on stderr, no log file)."""
    from quextractor.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else "INFO", log_format="text", stream=sys.stderr,
    )


if __name__ == "__main__":
    sys.exit(main())
