# src/tracking/progress_tracker.py - v1
"""Weighted progress tracking for long-running operations.

Each operation is an ordered list of weighted steps. The tracker keeps
step lifecycle, overall percentage and a naive ETA, and notifies
observers through ProgressCallbacks. All state sits behind one lock;
callbacks receive deep copies and run after the lock is released.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from quextractor.tracking.models import (
    DONE_STEP_STATUSES,
    OperationStatus,
    ProgressState,
    ProgressStep,
    StepSpec,
    StepStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_S = 3600.0


class DuplicateOperationError(KeyError):
    """An operation with this id is already being tracked."""


@dataclass
class ProgressCallbacks:
    """Optional observers for one operation."""

    on_progress: Callable[[ProgressState], None] | None = None
    on_step_start: Callable[[ProgressStep, ProgressState], None] | None = None
    on_step_complete: Callable[[ProgressStep, ProgressState], None] | None = None
    on_step_failed: Callable[[ProgressStep, str, ProgressState], None] | None = None
    on_complete: Callable[[ProgressState], None] | None = None
    on_failed: Callable[[str, ProgressState], None] | None = None
    on_cancelled: Callable[[ProgressState], None] | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_overall_progress(steps: Iterable[ProgressStep]) -> int:
    """Round 100 x sum(contribution) / sum(weight), half up.

    Returns 100 only when every step is completed or skipped.
    """
    steps = list(steps)
    total_weight = sum(s.weight for s in steps)
    if total_weight <= 0:
        return 0
    done = sum(s.contribution() for s in steps)
    pct = int(math.floor(done / total_weight * 100.0 + 0.5))
    if all(s.status in DONE_STEP_STATUSES for s in steps):
        return 100
    return max(0, min(pct, 99))


class WeightedProgressTracker:
    """Track weighted steps for any number of concurrent operations.

    Args:
        now: Wall clock used for step timestamps and cleanup.
        monotonic: Clock used for elapsed time and ETA.
    """

    def __init__(
        self,
        now: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._now = now
        self._monotonic = monotonic
        self._lock = threading.RLock()
        self._states: dict[str, ProgressState] = {}
        self._callbacks: dict[str, ProgressCallbacks] = {}
        self._started_at: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Operation lifecycle
    # ------------------------------------------------------------------

    def start_operation(
        self,
        operation_id: str,
        operation_name: str,
        steps: list[StepSpec],
        callbacks: ProgressCallbacks | None = None,
    ) -> ProgressState:
        """Begin tracking an operation; all steps start pending.

        Raises:
            DuplicateOperationError: If operation_id is already tracked.
            ValueError: If no steps are given.
        """
        if not steps:
            raise ValueError("An operation needs at least one step")

        with self._lock:
            if operation_id in self._states:
                raise DuplicateOperationError(operation_id)
            state = ProgressState(
                operation_id=operation_id,
                operation_name=operation_name,
                steps=[
                    ProgressStep(
                        id=s.id, name=s.name, description=s.description, weight=s.weight
                    )
                    for s in steps
                ],
                total_steps=len(steps),
                start_time=self._now(),
            )
            self._states[operation_id] = state
            self._started_at[operation_id] = self._monotonic()
            if callbacks is not None:
                self._callbacks[operation_id] = callbacks
            snapshot = state.model_copy(deep=True)

        logger.debug("Tracking '%s' (%s) with %d steps", operation_name, operation_id, len(steps))
        self._emit(operation_id, "on_progress", snapshot)
        return snapshot

    def complete_operation(self, operation_id: str) -> None:
        """Force the operation to completed at 100%."""
        with self._lock:
            state = self._live(operation_id)
            if state is None:
                return
            self._finish(state, OperationStatus.COMPLETED)
            state.overall_progress = 100
            state.estimated_time_remaining_s = 0.0
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_complete", snapshot)

    def fail_operation(self, operation_id: str, error: BaseException | str) -> None:
        with self._lock:
            state = self._live(operation_id)
            if state is None:
                return
            self._finish(state, OperationStatus.FAILED)
            state.error = str(error)
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_failed", str(error), snapshot)

    def cancel_operation(self, operation_id: str) -> None:
        """Cancel; every unfinished step is marked skipped."""
        with self._lock:
            state = self._live(operation_id)
            if state is None:
                return
            now = self._now()
            for step in state.steps:
                if step.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
                    step.status = StepStatus.SKIPPED
                    step.end_time = now
                    step.metadata["skip_reason"] = "Operation cancelled"
            self._finish(state, OperationStatus.CANCELLED)
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_cancelled", snapshot)

    # ------------------------------------------------------------------
    # Step lifecycle
    # ------------------------------------------------------------------

    def start_step(self, operation_id: str, step_id: str) -> None:
        with self._lock:
            found = self._live_step(operation_id, step_id)
            if found is None:
                return
            state, step = found
            step.status = StepStatus.IN_PROGRESS
            step.start_time = self._now()
            state.current_step_id = step.id
            self._recompute(state)
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_progress", snapshot)
        self._emit(operation_id, "on_step_start", snapshot.step(step_id), snapshot)

    def complete_step(
        self,
        operation_id: str,
        step_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._finish_step(operation_id, step_id, StepStatus.COMPLETED, metadata)

    def skip_step(self, operation_id: str, step_id: str, reason: str | None = None) -> None:
        metadata = {"skip_reason": reason} if reason else None
        self._finish_step(operation_id, step_id, StepStatus.SKIPPED, metadata)

    def fail_step(self, operation_id: str, step_id: str, error: BaseException | str) -> None:
        """Mark a step failed. The operation itself keeps running."""
        with self._lock:
            found = self._live_step(operation_id, step_id)
            if found is None:
                return
            state, step = found
            step.status = StepStatus.FAILED
            step.end_time = self._now()
            step.error = str(error)
            self._recompute(state)
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_progress", snapshot)
        self._emit(operation_id, "on_step_failed", snapshot.step(step_id), str(error), snapshot)

    def update_step_progress(
        self,
        operation_id: str,
        step_id: str,
        progress: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record partial completion (0-100) of an in-progress step."""
        with self._lock:
            found = self._live_step(operation_id, step_id)
            if found is None:
                return
            state, step = found
            step.progress = max(0.0, min(100.0, float(progress)))
            if metadata:
                step.metadata.update(metadata)
            self._recompute(state)
            snapshot = state.model_copy(deep=True)
        self._emit(operation_id, "on_progress", snapshot)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_progress(self, operation_id: str) -> ProgressState | None:
        with self._lock:
            state = self._states.get(operation_id)
            return state.model_copy(deep=True) if state else None

    def get_active_operations(self) -> list[ProgressState]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._states.values()
                if s.status == OperationStatus.IN_PROGRESS
            ]

    def __contains__(self, operation_id: object) -> bool:
        with self._lock:
            return operation_id in self._states

    def cleanup(
        self,
        operation_id: str | None = None,
        retention_s: float = DEFAULT_RETENTION_S,
    ) -> list[str]:
        """Drop one operation, or sweep terminal ones older than retention.

        Returns:
            Ids of removed operations.
        """
        with self._lock:
            if operation_id is not None:
                removed = [operation_id] if operation_id in self._states else []
            else:
                cutoff = self._now() - timedelta(seconds=retention_s)
                removed = [
                    op_id
                    for op_id, s in self._states.items()
                    if s.is_terminal and s.end_time is not None and s.end_time < cutoff
                ]
            for op_id in removed:
                self._states.pop(op_id, None)
                self._callbacks.pop(op_id, None)
                self._started_at.pop(op_id, None)
        if removed:
            logger.debug("Removed %d tracked operation(s)", len(removed))
        return removed

    # ------------------------------------------------------------------
    # Internals (call with lock held)
    # ------------------------------------------------------------------

    def _live(self, operation_id: str) -> ProgressState | None:
        state = self._states.get(operation_id)
        if state is None:
            logger.debug("Unknown operation %s", operation_id)
            return None
        if state.is_terminal:
            return None
        return state

    def _live_step(
        self, operation_id: str, step_id: str
    ) -> tuple[ProgressState, ProgressStep] | None:
        state = self._live(operation_id)
        if state is None:
            return None
        step = state.step(step_id)
        if step is None:
            logger.debug("Unknown step %s in operation %s", step_id, operation_id)
            return None
        return state, step

    def _finish_step(
        self,
        operation_id: str,
        step_id: str,
        status: StepStatus,
        metadata: dict[str, Any] | None,
    ) -> None:
        with self._lock:
            found = self._live_step(operation_id, step_id)
            if found is None:
                return
            state, step = found
            if step.status not in DONE_STEP_STATUSES:
                state.completed_steps += 1
            step.status = status
            step.end_time = self._now()
            if metadata:
                step.metadata.update(metadata)
            self._recompute(state)
            all_done = all(s.status in DONE_STEP_STATUSES for s in state.steps)
            if all_done:
                self._finish(state, OperationStatus.COMPLETED)
                state.estimated_time_remaining_s = 0.0
            snapshot = state.model_copy(deep=True)

        self._emit(operation_id, "on_progress", snapshot)
        self._emit(operation_id, "on_step_complete", snapshot.step(step_id), snapshot)
        if all_done:
            self._emit(operation_id, "on_complete", snapshot)

    def _recompute(self, state: ProgressState) -> None:
        pct = max(state.overall_progress, compute_overall_progress(state.steps))
        state.overall_progress = pct
        if pct > 0:
            elapsed = self._monotonic() - self._started_at.get(
                state.operation_id, self._monotonic()
            )
            state.estimated_time_remaining_s = max(0.0, elapsed / (pct / 100.0) - elapsed)
        else:
            state.estimated_time_remaining_s = None

    def _finish(self, state: ProgressState, status: OperationStatus) -> None:
        state.status = status
        state.end_time = self._now()
        state.current_step_id = None

    def _emit(self, operation_id: str, event: str, *args: Any) -> None:
        with self._lock:
            callbacks = self._callbacks.get(operation_id)
        handler = getattr(callbacks, event, None) if callbacks else None
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.exception("Progress callback %s failed for %s", event, operation_id)
