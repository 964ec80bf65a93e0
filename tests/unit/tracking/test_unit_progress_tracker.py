# tests/unit/tracking/test_unit_progress_tracker.py - v1
"""Tests for tracking/progress_tracker.py - weighted steps, ETA, callbacks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from quextractor.tracking.models import OperationStatus, StepSpec, StepStatus
from quextractor.tracking.progress_tracker import (
    DuplicateOperationError,
    ProgressCallbacks,
    WeightedProgressTracker,
    compute_overall_progress,
)


class FakeClock:
    def __init__(self) -> None:
        self.wall = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.mono = 0.0

    def now(self) -> datetime:
        return self.wall

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.wall += timedelta(seconds=seconds)
        self.mono += seconds


def _steps(*weights: float) -> list[StepSpec]:
    return [StepSpec(id=f"s{i}", name=f"Step {i}", weight=w) for i, w in enumerate(weights)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> WeightedProgressTracker:
    return WeightedProgressTracker(now=clock.now, monotonic=clock.monotonic)


class TestStartOperation:
    def test_all_steps_pending(self, tracker):
        state = tracker.start_operation("op", "Op", _steps(1, 1))
        assert state.total_steps == 2
        assert state.completed_steps == 0
        assert state.overall_progress == 0
        assert all(s.status == StepStatus.PENDING for s in state.steps)

    def test_empty_steps_rejected(self, tracker):
        with pytest.raises(ValueError, match="at least one step"):
            tracker.start_operation("op", "Op", [])

    def test_duplicate_id_rejected(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        with pytest.raises(DuplicateOperationError):
            tracker.start_operation("op", "Again", _steps(1))

    def test_contains(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        assert "op" in tracker
        assert "other" not in tracker


class TestWeightedProgress:
    def test_completed_step_contributes_its_weight(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 3))
        tracker.start_step("op", "s0")
        tracker.complete_step("op", "s0")
        assert tracker.get_progress("op").overall_progress == 25

    def test_partial_progress_rounds_half_up(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 3))
        tracker.complete_step("op", "s0")
        tracker.start_step("op", "s1")
        tracker.update_step_progress("op", "s1", 50)
        # 25 + 37.5 = 62.5
        assert tracker.get_progress("op").overall_progress == 63

    def test_capped_at_99_until_all_done(self, tracker):
        tracker.start_operation("op", "Op", _steps(999, 1))
        tracker.complete_step("op", "s0")
        state = tracker.get_progress("op")
        assert state.overall_progress == 99
        assert state.status == OperationStatus.IN_PROGRESS

    def test_all_steps_done_gives_100_and_completes(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.complete_step("op", "s0")
        tracker.skip_step("op", "s1", "not needed")
        state = tracker.get_progress("op")
        assert state.overall_progress == 100
        assert state.status == OperationStatus.COMPLETED
        assert state.completed_steps == 2
        assert state.end_time is not None

    @pytest.mark.parametrize(
        "order",
        [
            [0, 1, 2, 3, 4, 5, 6],
            [6, 5, 4, 3, 2, 1, 0],
            [4, 0, 6, 2, 5, 1, 3],
        ],
        ids=["forward", "reverse", "shuffled"],
    )
    def test_uneven_weights_total_100_in_any_order(self, tracker, order):
        tracker.start_operation("op", "Op", _steps(5, 5, 10, 70 / 3, 70 / 3, 70 / 3, 10))
        seen = []
        for i in order:
            tracker.start_step("op", f"s{i}")
            tracker.complete_step("op", f"s{i}")
            seen.append(tracker.get_progress("op").overall_progress)
        assert seen == sorted(seen)
        assert max(seen[:-1]) <= 99
        assert seen[-1] == 100
        assert tracker.get_progress("op").status == OperationStatus.COMPLETED

    def test_never_decreases(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.start_step("op", "s0")
        tracker.update_step_progress("op", "s0", 80)
        before = tracker.get_progress("op").overall_progress
        tracker.update_step_progress("op", "s0", 20)
        tracker.fail_step("op", "s0", "boom")
        assert tracker.get_progress("op").overall_progress == before == 40

    def test_update_clamps_range(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        tracker.start_step("op", "s0")
        tracker.update_step_progress("op", "s0", 250)
        assert tracker.get_progress("op").step("s0").progress == 100.0
        assert tracker.get_progress("op").overall_progress == 99

    def test_compute_overall_progress_zero_weight_total(self):
        assert compute_overall_progress([]) == 0


class TestStepLifecycle:
    def test_start_step_sets_current(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.start_step("op", "s1")
        state = tracker.get_progress("op")
        assert state.current_step_id == "s1"
        assert state.current_step.status == StepStatus.IN_PROGRESS

    def test_skip_records_reason(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.skip_step("op", "s0", "cached")
        step = tracker.get_progress("op").step("s0")
        assert step.status == StepStatus.SKIPPED
        assert step.metadata["skip_reason"] == "cached"

    def test_fail_step_keeps_operation_running(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.fail_step("op", "s0", RuntimeError("bad"))
        state = tracker.get_progress("op")
        assert state.step("s0").status == StepStatus.FAILED
        assert state.step("s0").error == "bad"
        assert state.status == OperationStatus.IN_PROGRESS

    def test_completing_twice_counts_once(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.complete_step("op", "s0")
        tracker.complete_step("op", "s0")
        assert tracker.get_progress("op").completed_steps == 1

    def test_unknown_ids_are_ignored(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        tracker.start_step("missing", "s0")
        tracker.complete_step("op", "missing")
        assert tracker.get_progress("op").completed_steps == 0

    def test_metadata_merged(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.start_step("op", "s0")
        tracker.update_step_progress("op", "s0", 10, {"settled": 1})
        tracker.complete_step("op", "s0", {"documents": 3})
        assert tracker.get_progress("op").step("s0").metadata == {"settled": 1, "documents": 3}


class TestOperationLifecycle:
    def test_cancel_skips_unfinished_steps(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1, 1))
        tracker.complete_step("op", "s0")
        tracker.start_step("op", "s1")
        tracker.cancel_operation("op")
        state = tracker.get_progress("op")
        assert state.status == OperationStatus.CANCELLED
        assert state.step("s0").status == StepStatus.COMPLETED
        for step_id in ("s1", "s2"):
            step = state.step(step_id)
            assert step.status == StepStatus.SKIPPED
            assert step.metadata["skip_reason"] == "Operation cancelled"

    def test_terminal_operation_ignores_updates(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.fail_operation("op", "fatal")
        tracker.complete_step("op", "s0")
        state = tracker.get_progress("op")
        assert state.status == OperationStatus.FAILED
        assert state.error == "fatal"
        assert state.completed_steps == 0

    def test_complete_operation_forces_100(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.complete_operation("op")
        state = tracker.get_progress("op")
        assert state.overall_progress == 100
        assert state.estimated_time_remaining_s == 0.0

    def test_active_operations(self, tracker):
        tracker.start_operation("a", "A", _steps(1))
        tracker.start_operation("b", "B", _steps(1))
        tracker.cancel_operation("b")
        assert [s.operation_id for s in tracker.get_active_operations()] == ["a"]

    def test_snapshots_are_copies(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        snapshot = tracker.get_progress("op")
        snapshot.steps[0].status = StepStatus.COMPLETED
        assert tracker.get_progress("op").steps[0].status == StepStatus.PENDING


class TestEta:
    def test_unknown_before_any_progress(self, tracker):
        tracker.start_operation("op", "Op", _steps(1, 1))
        tracker.start_step("op", "s0")
        assert tracker.get_progress("op").estimated_time_remaining_s is None

    def test_extrapolates_from_elapsed(self, tracker, clock):
        tracker.start_operation("op", "Op", _steps(1, 1))
        clock.advance(10)
        tracker.complete_step("op", "s0")
        assert tracker.get_progress("op").estimated_time_remaining_s == pytest.approx(10.0)


class TestCallbacks:
    def test_events_fire(self, tracker):
        callbacks = ProgressCallbacks(
            on_progress=MagicMock(),
            on_step_start=MagicMock(),
            on_step_complete=MagicMock(),
            on_complete=MagicMock(),
        )
        tracker.start_operation("op", "Op", _steps(1), callbacks)
        tracker.start_step("op", "s0")
        tracker.complete_step("op", "s0")

        assert callbacks.on_step_start.call_count == 1
        assert callbacks.on_step_complete.call_count == 1
        callbacks.on_complete.assert_called_once()
        final = callbacks.on_progress.call_args_list[-1].args[0]
        assert final.overall_progress == 100

    def test_failed_callbacks_receive_message(self, tracker):
        callbacks = ProgressCallbacks(on_step_failed=MagicMock(), on_failed=MagicMock())
        tracker.start_operation("op", "Op", _steps(1), callbacks)
        tracker.fail_step("op", "s0", "bad step")
        tracker.fail_operation("op", "bad op")
        step, message, _state = callbacks.on_step_failed.call_args.args
        assert step.id == "s0"
        assert message == "bad step"
        assert callbacks.on_failed.call_args.args[0] == "bad op"

    def test_cancel_callback(self, tracker):
        callbacks = ProgressCallbacks(on_cancelled=MagicMock())
        tracker.start_operation("op", "Op", _steps(1), callbacks)
        tracker.cancel_operation("op")
        callbacks.on_cancelled.assert_called_once()

    def test_callback_error_does_not_propagate(self, tracker, caplog):
        def _boom(_state):
            raise RuntimeError("observer broke")

        tracker.start_operation("op", "Op", _steps(1), ProgressCallbacks(on_progress=_boom))
        tracker.start_step("op", "s0")
        assert tracker.get_progress("op").current_step_id == "s0"
        assert "observer broke" in caplog.text


class TestCleanup:
    def test_single_operation(self, tracker):
        tracker.start_operation("op", "Op", _steps(1))
        assert tracker.cleanup("op") == ["op"]
        assert tracker.get_progress("op") is None
        assert tracker.cleanup("op") == []

    def test_sweeps_only_old_terminal_operations(self, tracker, clock):
        tracker.start_operation("old", "Old", _steps(1))
        tracker.start_operation("live", "Live", _steps(1))
        tracker.complete_operation("old")
        clock.advance(7200)
        tracker.start_operation("recent", "Recent", _steps(1))
        tracker.complete_operation("recent")

        assert tracker.cleanup(retention_s=3600) == ["old"]
        assert "live" in tracker
        assert "recent" in tracker
