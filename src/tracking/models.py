# src/tracking/models.py - v2
"""Progress tracking models: StepSpec, ProgressStep, ProgressState.

Weighted steps describe one long-running operation; overall progress is
the weight-normalised sum of step contributions.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class OperationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


DONE_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
TERMINAL_OPERATION_STATUSES = frozenset(
    {OperationStatus.COMPLETED, OperationStatus.FAILED, OperationStatus.CANCELLED}
)


class StepSpec(BaseModel):
    """Declaration of a step before tracking starts."""

    id: str
    name: str
    description: str = ""
    weight: float = Field(default=1.0, gt=0)


class ProgressStep(BaseModel):
    """A tracked step with its lifecycle state."""

    id: str
    name: str
    description: str = ""
    weight: float = Field(gt=0)
    status: StepStatus = StepStatus.PENDING
    progress: float | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def contribution(self) -> float:
        """Weight units this step contributes to overall progress."""
        if self.status in DONE_STEP_STATUSES:
            return self.weight
        if self.status == StepStatus.IN_PROGRESS and self.progress is not None:
            return self.weight * (self.progress / 100.0)
        return 0.0


class ProgressState(BaseModel):
    """Snapshot of one tracked operation."""

    operation_id: str
    operation_name: str
    steps: list[ProgressStep]
    total_steps: int
    completed_steps: int = 0
    current_step_id: str | None = None
    overall_progress: int = 0
    estimated_time_remaining_s: float | None = None
    start_time: datetime
    end_time: datetime | None = None
    status: OperationStatus = OperationStatus.IN_PROGRESS
    error: str | None = None

    @property
    def current_step(self) -> ProgressStep | None:
        if self.current_step_id is None:
            return None
        return self.step(self.current_step_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OPERATION_STATUSES

    def step(self, step_id: str) -> ProgressStep | None:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None
