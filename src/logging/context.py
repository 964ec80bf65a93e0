# src/logging/context.py - v2
"""Contextual logging support: attach session_id, phase and file_name to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables are copied into each asyncio task at creation, so
# concurrent documents in one batch keep their own file_name.
_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_phase: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "phase", default=None
)
_file_name: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "file_name", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    session_id: str | None = None
    phase: str | None = None
    file_name: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        session_id=_session_id.get(),
        phase=_phase.get(),
        file_name=_file_name.get(),
    )


def set_session_context(session_id: str) -> None:
    """Set session-level context (called once per background run)."""
    _session_id.set(session_id)


def set_phase_context(phase: str | None) -> None:
    _phase.set(phase)


def set_file_context(file_name: str | None) -> None:
    """Set document-level context (called per dispatched document)."""
    _file_name.set(file_name)


def clear_context() -> None:
    """Reset all context variables."""
    _session_id.set(None)
    _phase.set(None)
    _file_name.set(None)
