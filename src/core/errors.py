# src/core/errors.py - v1
"""Error taxonomy shared by the pipeline boundary and the orchestrator.

The extraction pipeline classifies its own failures by raising
PipelineError with a structured ErrorKind; the retry policy dispatches on
that kind instead of inspecting messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure categories recorded on sessions."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"
    FATAL = "fatal"
    PROCESSING = "processing"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.TRANSIENT})


class PipelineError(Exception):
    """Failure raised by a document-processing collaborator."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> None:
        self.kind = kind
        super().__init__(message)


class FatalOrchestrationError(Exception):
    """Session-level failure that aborts the whole run."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase} failed: {cause}")


class SessionValidationError(ValueError):
    """Invalid arguments to start a session (e.g. no documents)."""


class SessionExistsError(KeyError):
    """A session with the same id is already registered."""


def is_retryable(error: BaseException) -> bool:
    """Return True if the error should be retried.

    Errors that do not carry an ErrorKind are treated as transient.
    """
    if isinstance(error, PipelineError):
        return error.kind in RETRYABLE_KINDS
    return isinstance(error, Exception)
