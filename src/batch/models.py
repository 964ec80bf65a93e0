# src/batch/models.py - v2
"""Batch orchestration models: Session, FileEntry, OrchestrationResult.

Sessions are persisted as JSON, so every field here must round-trip
through pydantic serialization.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quextractor.core.errors import ErrorKind
from quextractor.core.models import PipelineResult


class SessionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FileStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SESSION_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)
TERMINAL_FILE_STATUSES = frozenset({FileStatus.COMPLETED, FileStatus.FAILED})

# Session status never moves backwards. Terminal states share the top rank.
_SESSION_RANK: dict[SessionStatus, int] = {
    SessionStatus.PENDING: 0,
    SessionStatus.PROCESSING: 1,
    SessionStatus.COMPLETED: 2,
    SessionStatus.FAILED: 2,
    SessionStatus.CANCELLED: 2,
}

_FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.PENDING: frozenset({FileStatus.PROCESSING, FileStatus.FAILED}),
    # Processing -> processing happens when a resumed run re-dispatches an entry.
    FileStatus.PROCESSING: frozenset(
        {FileStatus.PROCESSING, FileStatus.COMPLETED, FileStatus.FAILED}
    ),
    FileStatus.COMPLETED: frozenset(),
    FileStatus.FAILED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """A status change that would regress a terminal record."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrchestrationConfig(BaseModel):
    """Effective parameters of one orchestrated run."""

    batch_size: int = Field(default=3, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_s: float = Field(default=2.0, ge=0)
    max_retry_delay_s: float | None = 30.0
    inter_batch_delay_s: float = Field(default=0.1, ge=0)
    max_file_size_mb: float = Field(default=50, ge=0)
    supported_formats: list[str] = Field(default_factory=lambda: ["application/pdf"])
    quality_threshold: float = Field(default=0.7, ge=0, le=1)
    enable_progress_tracking: bool = True
    enable_error_recovery: bool = True
    enable_state_persistence: bool = True

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> OrchestrationConfig:
        """Project Settings onto a per-session config, then apply overrides."""
        values: dict[str, Any] = {
            "batch_size": settings.batch_size,
            "max_retries": settings.max_retries,
            "retry_delay_s": settings.retry_delay_s,
            "max_retry_delay_s": settings.max_retry_delay_s or None,
            "inter_batch_delay_s": settings.inter_batch_delay_s,
            "max_file_size_mb": settings.max_file_size_mb,
            "supported_formats": settings.supported_formats_list,
            "quality_threshold": settings.quality_threshold,
            "enable_progress_tracking": settings.enable_progress_tracking,
            "enable_error_recovery": settings.enable_error_recovery,
            "enable_state_persistence": settings.enable_state_persistence,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def effective_max_retries(self) -> int:
        return self.max_retries if self.enable_error_recovery else 0


class SessionError(BaseModel):
    """An error recorded against a session (optionally tied to one file)."""

    kind: ErrorKind
    message: str
    file_name: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SessionProgress(BaseModel):
    current_step: str = "Initializing"
    completed_steps: int = 0
    total_steps: int = 0
    percentage: int = Field(default=0, ge=0, le=100)
    estimated_time_remaining_s: float | None = None


class FileEntry(BaseModel):
    """Status of one document within a session."""

    name: str
    size: int
    source_path: str | None = None
    status: FileStatus = FileStatus.PENDING
    result: PipelineResult | None = None
    error: str | None = None
    attempts: int = 0

    def transition(self, status: FileStatus) -> None:
        if status not in _FILE_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"File '{self.name}': {self.status.value} -> {status.value}"
            )
        self.status = status

    def mark_completed(self, result: PipelineResult) -> None:
        self.transition(FileStatus.COMPLETED)
        self.result = result
        self.error = None

    def mark_failed(self, error: str) -> None:
        self.transition(FileStatus.FAILED)
        self.error = error
        self.result = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_FILE_STATUSES


class Session(BaseModel):
    """One orchestrated batch run."""

    id: str
    status: SessionStatus = SessionStatus.PENDING
    progress: SessionProgress = Field(default_factory=SessionProgress)
    files: list[FileEntry]
    errors: list[SessionError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: datetime | None = None
    config: OrchestrationConfig = Field(default_factory=OrchestrationConfig)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def file(self, name: str) -> FileEntry | None:
        for entry in self.files:
            if entry.name == name:
                return entry
        return None

    def add_error(
        self, kind: ErrorKind, message: str, file_name: str | None = None
    ) -> None:
        self.errors.append(SessionError(kind=kind, message=message, file_name=file_name))

    def transition(self, status: SessionStatus) -> bool:
        """Move to a later status.

        Returns False, leaving the session untouched, if it is already
        terminal or ``status`` would not move it forward.
        """
        if self.is_terminal or _SESSION_RANK[status] <= _SESSION_RANK[self.status]:
            return False
        self.status = status
        if status in TERMINAL_SESSION_STATUSES:
            self.end_time = _utcnow()
        return True


class Summary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_files: int = 0
    successful_files: int = 0
    failed_files: int = 0
    total_questions: int = 0
    questions_with_diagrams: int = 0
    average_quality: float = 0.0
    total_processing_time_ms: float = 0.0


class OrchestrationResult(BaseModel):
    """Immutable outcome of a completed session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    status: SessionStatus
    success: bool
    results: list[PipelineResult]
    summary: Summary
    errors: list[SessionError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
