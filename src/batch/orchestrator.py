# src/batch/orchestrator.py - v1
"""Batch orchestrator: drives a set of documents through the extraction pipeline.

Each session runs as one background asyncio task through four phases:
  1. Initialize: consult the storage migration collaborator
  2. Validate: format and size checks; invalid files fail individually
  3. Process: fixed-size groups, sequential across groups, concurrent within
  4. Finalize: mark the session completed and persist its state

Per-file failures are recorded on the session, never raised. Progress is
tracked with weighted steps and mirrored into ``Session.progress``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from quextractor.batch.models import (
    FileEntry,
    FileStatus,
    OrchestrationConfig,
    OrchestrationResult,
    Session,
    SessionProgress,
    SessionStatus,
)
from quextractor.batch.registry import ProgressSubscriber, SessionRegistry
from quextractor.batch.retry import RetryExhausted, RetryPolicy
from quextractor.batch.validator import validate_document
from quextractor.config.settings import Settings
from quextractor.core.errors import (
    ErrorKind,
    FatalOrchestrationError,
    SessionExistsError,
    SessionValidationError,
)
from quextractor.core.models import DocumentInput, PipelineResult
from quextractor.logging.context import set_file_context, set_phase_context, set_session_context
from quextractor.storage.base_migration import BaseMigrationManager, NoopMigrationManager
from quextractor.tracking.models import OperationStatus, ProgressState, StepSpec
from quextractor.tracking.progress_tracker import ProgressCallbacks, WeightedProgressTracker
from quextractor.tracking.result_aggregator import summarize

if TYPE_CHECKING:
    from quextractor.pipeline.base_processor import BaseDocumentProcessor
    from quextractor.storage.base_session_store import BaseSessionStore

logger = logging.getLogger(__name__)

# Relative step weights. The batch phase weight is shared equally by its groups.
INITIALIZE_WEIGHT = 5.0
MIGRATE_WEIGHT = 5.0
VALIDATE_WEIGHT = 10.0
BATCH_PHASE_WEIGHT = 70.0
FINALIZE_WEIGHT = 10.0

IndexedDocument = tuple[int, DocumentInput]


def plan_steps(document_count: int, batch_size: int) -> list[StepSpec]:
    """Weighted steps for a run over ``document_count`` documents."""
    groups = math.ceil(document_count / batch_size) if document_count else 0
    steps = [
        StepSpec(id="initialize", name="Initializing system", weight=INITIALIZE_WEIGHT),
        StepSpec(id="migrate", name="Updating database", weight=MIGRATE_WEIGHT),
        StepSpec(id="validate", name="Validating files", weight=VALIDATE_WEIGHT),
    ]
    steps.extend(
        StepSpec(
            id=f"batch-{i}",
            name=f"Processing batch {i}",
            weight=BATCH_PHASE_WEIGHT / groups,
        )
        for i in range(1, groups + 1)
    )
    steps.append(StepSpec(id="finalize", name="Finalizing results", weight=FINALIZE_WEIGHT))
    return steps


class _PhaseProgress:
    """Step reporting for one session; a no-op when tracking is disabled."""

    def __init__(
        self,
        tracker: WeightedProgressTracker,
        session_id: str,
        steps: list[StepSpec],
        enabled: bool,
    ) -> None:
        self._tracker = tracker
        self._id = session_id
        self._enabled = enabled
        self.batch_steps = [s.id for s in steps if s.id.startswith("batch-")]

    def start(self, step_id: str) -> None:
        if self._enabled:
            self._tracker.start_step(self._id, step_id)

    def complete(self, step_id: str, metadata: dict[str, Any] | None = None) -> None:
        if self._enabled:
            self._tracker.complete_step(self._id, step_id, metadata)

    def skip(self, step_id: str, reason: str) -> None:
        if self._enabled:
            self._tracker.skip_step(self._id, step_id, reason)

    def fail(self, step_id: str, error: BaseException) -> None:
        if self._enabled:
            self._tracker.fail_step(self._id, step_id, error)

    def partial(self, step_id: str, fraction: float, metadata: dict[str, Any] | None = None) -> None:
        if self._enabled:
            self._tracker.update_step_progress(self._id, step_id, fraction, metadata)


class BatchOrchestrator:
    """Coordinates concurrent, resumable processing of document batches.

    Args:
        processor: External per-document extraction pipeline.
        settings: Application settings (defaults loaded from .env).
        migration_manager: Storage migration collaborator.
        session_store: Persistence backend; required for resume.
        tracker: Progress tracker (one per orchestrator by default).
        registry: Session registry (one per orchestrator by default).
        sleep: Coroutine used for backoff and inter-batch pauses.
    """

    def __init__(
        self,
        processor: BaseDocumentProcessor,
        settings: Settings | None = None,
        migration_manager: BaseMigrationManager | None = None,
        session_store: BaseSessionStore | None = None,
        tracker: WeightedProgressTracker | None = None,
        registry: SessionRegistry | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._processor = processor
        self._settings = settings or Settings()
        self._migrations = migration_manager or NoopMigrationManager()
        self._store = session_store
        self._tracker = tracker or WeightedProgressTracker()
        self._registry = registry or SessionRegistry()
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def tracker(self) -> WeightedProgressTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_session(
        self,
        documents: Iterable[DocumentInput],
        config: OrchestrationConfig | None = None,
        *,
        session_id: str | None = None,
        on_progress: ProgressSubscriber | None = None,
    ) -> str:
        """Register a session and start processing it in the background.

        Returns:
            The new session id. Processing continues after return.

        Raises:
            SessionValidationError: If ``documents`` is empty.
            SessionExistsError: If ``session_id`` is already registered or
                still has a running task.
        """
        docs = list(documents)
        if not docs:
            raise SessionValidationError("At least one document is required")

        cfg = config or OrchestrationConfig.from_settings(self._settings)
        sid = session_id or self._generate_session_id()
        running = self._tasks.get(sid)
        if running is not None and not running.done():
            raise SessionExistsError(sid)
        steps = plan_steps(len(docs), cfg.batch_size)

        session = Session(
            id=sid,
            files=[
                FileEntry(
                    name=d.name,
                    size=d.size or 0,
                    source_path=str(d.path) if d.path else None,
                )
                for d in docs
            ],
            progress=SessionProgress(total_steps=len(steps)),
            config=cfg,
        )
        self._registry.create(session)
        if on_progress is not None:
            self._registry.subscribe(sid, on_progress)

        # A reused id may still have a finished operation in the tracker.
        self._tracker.cleanup(sid)
        progress = self._begin_tracking(sid, steps, cfg)
        self._launch(sid, list(enumerate(docs)), cfg, progress)

        logger.info(
            "Started session %s: %d document(s), batch_size=%d, max_retries=%d",
            sid, len(docs), cfg.batch_size, cfg.effective_max_retries,
        )
        return sid

    def get_session_status(self, session_id: str) -> Session | None:
        """Point-in-time snapshot of a session."""
        return self._registry.get(session_id)

    def cancel_session(self, session_id: str) -> bool:
        """Stop dispatching further batches for a session.

        In-flight documents finish normally; undispatched ones stay pending.

        Returns:
            False if the session is unknown or already terminal.
        """
        cancelled = False

        def _cancel(s: Session) -> None:
            nonlocal cancelled
            cancelled = s.transition(SessionStatus.CANCELLED)
            if cancelled:
                s.progress.current_step = "Cancelled"

        if self._registry.update(session_id, _cancel) is None or not cancelled:
            return False

        self._tracker.cancel_operation(session_id)
        logger.info("Session %s cancelled", session_id)
        return True

    def get_orchestration_result(self, session_id: str) -> OrchestrationResult | None:
        """Aggregated outcome of a completed session, else None.

        ``success`` reflects the business outcome: it is False whenever any
        error was recorded, even though the session itself completed.
        """
        session = self._registry.get(session_id)
        if session is None or session.status != SessionStatus.COMPLETED:
            return None

        results = [
            f.result
            for f in session.files
            if f.status == FileStatus.COMPLETED and f.result is not None
        ]
        return OrchestrationResult(
            session_id=session.id,
            status=session.status,
            success=not session.errors,
            results=results,
            summary=summarize(results, total_files=len(session.files)),
            errors=session.errors,
            warnings=session.warnings,
        )

    async def resume_session(
        self,
        session_id: str,
        documents: Iterable[DocumentInput] | None = None,
        *,
        on_progress: ProgressSubscriber | None = None,
    ) -> bool:
        """Reload a persisted session and process its unfinished documents.

        Sources are taken from ``documents`` (matched by name), falling back
        to each entry's recorded ``source_path``.

        Returns:
            False if no persisted state exists or the session is still running.
        """
        if self._store is None:
            logger.warning("Cannot resume %s: no session store configured", session_id)
            return False
        if session_id in self._tasks:
            logger.warning("Cannot resume %s: session is still running", session_id)
            return False

        snapshot = await self._store.load(session_id)
        if snapshot is None:
            return False

        incomplete = [
            i
            for i, entry in enumerate(snapshot.files)
            if entry.status in (FileStatus.PENDING, FileStatus.PROCESSING)
        ]
        if not incomplete and snapshot.status == SessionStatus.COMPLETED:
            self._registry.replace(snapshot)
            logger.info("Session %s has nothing left to resume", session_id)
            return True

        provided = {d.name: d for d in documents or []}
        pairs: list[IndexedDocument] = []
        for index in incomplete:
            entry = snapshot.files[index]
            doc = provided.get(entry.name) or _document_from_source(entry)
            if doc is None:
                reason = "Source unavailable for resume"
                entry.mark_failed(reason)
                snapshot.add_error(ErrorKind.PROCESSING, f"{entry.name}: {reason}", entry.name)
                continue
            pairs.append((index, doc))

        # A resume starts a new lifecycle for the restored record.
        snapshot.status = SessionStatus.PENDING
        snapshot.end_time = None
        snapshot.warnings.append(f"Resumed with {len(pairs)} document(s) to process")

        cfg = snapshot.config
        steps = plan_steps(len(pairs), cfg.batch_size)
        snapshot.progress = SessionProgress(total_steps=len(steps))

        self._registry.replace(snapshot)
        if on_progress is not None:
            self._registry.subscribe(session_id, on_progress)

        self._tracker.cleanup(session_id)
        progress = self._begin_tracking(session_id, steps, cfg)
        self._launch(session_id, pairs, cfg, progress)

        logger.info("Resumed session %s with %d document(s)", session_id, len(pairs))
        return True

    async def wait_for_session(
        self, session_id: str, timeout: float | None = None
    ) -> Session | None:
        """Await the background task of a session, then return its snapshot."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return self._registry.get(session_id)

    def cleanup_sessions(self, older_than_hours: float | None = None) -> int:
        """Evict terminal sessions and finished progress operations.

        Returns:
            Number of sessions removed.
        """
        hours = (
            self._settings.session_retention_hours
            if older_than_hours is None
            else older_than_hours
        )
        removed = self._registry.sweep(hours * 3600)
        for sid in removed:
            self._tracker.cleanup(sid)
        self._tracker.cleanup(retention_s=self._settings.progress_retention_hours * 3600)
        return len(removed)

    def start_sweeper(self, interval_s: float = 300.0) -> asyncio.Task[None]:
        """Run ``cleanup_sessions`` periodically until ``aclose``."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_s))
        return self._sweeper

    async def aclose(self) -> None:
        """Stop the sweeper and cancel running sessions."""
        pending = list(self._tasks.values())
        if self._sweeper is not None:
            pending.append(self._sweeper)
            self._sweeper = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Session task
    # ------------------------------------------------------------------

    def _launch(
        self,
        session_id: str,
        documents: list[IndexedDocument],
        config: OrchestrationConfig,
        progress: _PhaseProgress,
    ) -> None:
        task = asyncio.create_task(
            self._run_session(session_id, documents, config, progress),
            name=f"session:{session_id}",
        )
        self._tasks[session_id] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._tasks.get(session_id) is done:
                del self._tasks[session_id]

        task.add_done_callback(_forget)

    async def _run_session(
        self,
        session_id: str,
        documents: list[IndexedDocument],
        config: OrchestrationConfig,
        progress: _PhaseProgress,
    ) -> None:
        set_session_context(session_id)

        def _begin(s: Session) -> None:
            if s.status == SessionStatus.PENDING:
                s.transition(SessionStatus.PROCESSING)

        started = self._registry.update(session_id, _begin)
        if started is None or started.status != SessionStatus.PROCESSING:
            logger.info("Session %s ended before processing started", session_id)
            await self._persist(session_id, config)
            return

        try:
            set_phase_context("initialize")
            await self._initialize(session_id, progress)

            set_phase_context("validate")
            valid = self._validate(session_id, documents, config, progress)

            set_phase_context("process")
            await self._process_batches(session_id, valid, config, progress)

            set_phase_context("finalize")
            await self._finalize(session_id, config, progress)
        except FatalOrchestrationError as e:
            logger.error("Session %s failed: %s", session_id, e)
            await self._fail(session_id, config, e)
        except asyncio.CancelledError:
            self._registry.update(session_id, lambda s: s.transition(SessionStatus.CANCELLED))
            self._tracker.cancel_operation(session_id)
            raise
        except Exception as e:
            logger.exception("Session %s processing failed unexpectedly", session_id)
            await self._fail(session_id, config, e)
        finally:
            set_phase_context(None)

    async def _initialize(self, session_id: str, progress: _PhaseProgress) -> None:
        step = "initialize"
        try:
            progress.start(step)
            needed = await self._migrations.check_migration_needed()
            progress.complete(step)

            step = "migrate"
            if needed:
                logger.info("Storage migration required before session %s", session_id)
                progress.start(step)
                await self._migrations.run_migration()
                progress.complete(step)
            else:
                progress.skip(step, "Storage schema is up to date")
        except Exception as e:
            progress.fail(step, e)
            raise FatalOrchestrationError(step, e) from e

    def _validate(
        self,
        session_id: str,
        documents: list[IndexedDocument],
        config: OrchestrationConfig,
        progress: _PhaseProgress,
    ) -> list[IndexedDocument]:
        progress.start("validate")
        valid: list[IndexedDocument] = []
        try:
            for index, doc in documents:
                outcome = validate_document(doc, config.supported_formats, config.max_file_size_mb)
                if outcome.valid:
                    valid.append((index, doc))
                    continue

                reason = outcome.reason or "Invalid document"
                logger.info("Rejected %s: %s", doc.name, reason)

                def _reject(s: Session, i: int = index, r: str = reason) -> None:
                    entry = s.files[i]
                    entry.mark_failed(r)
                    s.add_error(ErrorKind.VALIDATION, f"{entry.name}: {r}", entry.name)

                self._registry.update(session_id, _reject)
        except Exception as e:
            progress.fail("validate", e)
            raise FatalOrchestrationError("validate", e) from e

        progress.complete(
            "validate", {"valid": len(valid), "rejected": len(documents) - len(valid)}
        )
        return valid

    async def _process_batches(
        self,
        session_id: str,
        documents: list[IndexedDocument],
        config: OrchestrationConfig,
        progress: _PhaseProgress,
    ) -> None:
        size = config.batch_size
        groups = [documents[i : i + size] for i in range(0, len(documents), size)]
        step_ids = progress.batch_steps
        policy = RetryPolicy(
            max_retries=config.effective_max_retries,
            base_delay_s=config.retry_delay_s,
            max_delay_s=config.max_retry_delay_s,
            sleep=self._sleep,
        )

        for number, step_id in enumerate(step_ids, start=1):
            if number > len(groups):
                progress.skip(step_id, "No documents left for this batch")
                continue
            if self._is_cancelled(session_id):
                logger.info("Session %s cancelled before batch %d", session_id, number)
                return

            group = groups[number - 1]
            progress.start(step_id)
            await self._process_group(session_id, group, step_id, policy, progress)
            progress.complete(step_id, {"documents": len(group)})

            if number < len(groups) and config.inter_batch_delay_s > 0:
                await self._sleep(config.inter_batch_delay_s)

    async def _process_group(
        self,
        session_id: str,
        group: list[IndexedDocument],
        step_id: str,
        policy: RetryPolicy,
        progress: _PhaseProgress,
    ) -> None:
        settled = 0

        async def _one(index: int, doc: DocumentInput) -> None:
            nonlocal settled
            set_file_context(doc.name)
            try:
                await self._process_document(session_id, index, doc, policy)
            finally:
                settled += 1
                progress.partial(step_id, settled / len(group) * 100.0, {"settled": settled})

        outcomes = await asyncio.gather(
            *(_one(index, doc) for index, doc in group), return_exceptions=True
        )
        for (index, doc), outcome in zip(group, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Unexpected error while processing %s: %s", doc.name, outcome)
                self._registry.update(
                    session_id, lambda s, i=index, e=outcome: _fail_entry(s, i, str(e))
                )

    async def _process_document(
        self,
        session_id: str,
        index: int,
        doc: DocumentInput,
        policy: RetryPolicy,
    ) -> None:
        self._registry.update(
            session_id, lambda s: s.files[index].transition(FileStatus.PROCESSING)
        )

        async def _attempt() -> PipelineResult:
            self._registry.update(session_id, lambda s: _count_attempt(s.files[index]))
            return await self._processor.process_document(doc)

        def _warn(message: str) -> None:
            self._registry.update(session_id, lambda s: s.warnings.append(message))

        try:
            result = await policy.execute(_attempt, label=doc.name, on_retry=_warn)
        except RetryExhausted as e:
            logger.warning("Giving up on %s after %d attempt(s)", doc.name, e.attempts)
            self._registry.update(session_id, lambda s: _fail_entry(s, index, str(e.last_error)))
            return

        def _record(s: Session) -> None:
            entry = s.files[index]
            s.warnings.extend(result.warnings)
            if result.success:
                entry.mark_completed(result)
                quality = result.metadata.quality_score
                if quality < s.config.quality_threshold:
                    s.warnings.append(
                        f"Low quality score for {entry.name}: "
                        f"{quality:.2f} < {s.config.quality_threshold:.2f}"
                    )
                return
            messages = result.errors or ["Pipeline reported an unsuccessful result"]
            entry.mark_failed("; ".join(messages))
            for message in messages:
                s.add_error(ErrorKind.PROCESSING, f"{entry.name}: {message}", entry.name)

        self._registry.update(session_id, _record)

    async def _finalize(
        self, session_id: str, config: OrchestrationConfig, progress: _PhaseProgress
    ) -> None:
        if self._is_cancelled(session_id):
            await self._persist(session_id, config)
            return

        progress.start("finalize")
        progress.complete("finalize")
        snapshot = self._registry.update(
            session_id, lambda s: s.transition(SessionStatus.COMPLETED)
        )
        await self._persist(session_id, config)

        if snapshot is not None:
            done = sum(1 for f in snapshot.files if f.status == FileStatus.COMPLETED)
            logger.info(
                "Session %s finished with status %s: %d/%d document(s) completed, %d error(s)",
                session_id, snapshot.status.value, done, len(snapshot.files), len(snapshot.errors),
            )

    async def _fail(
        self, session_id: str, config: OrchestrationConfig, error: BaseException
    ) -> None:
        def _mark(s: Session) -> None:
            s.add_error(ErrorKind.FATAL, f"Session processing failed: {error}")
            s.transition(SessionStatus.FAILED)

        self._registry.update(session_id, _mark)
        self._tracker.fail_operation(session_id, error)
        await self._persist(session_id, config)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _begin_tracking(
        self, session_id: str, steps: list[StepSpec], config: OrchestrationConfig
    ) -> _PhaseProgress:
        enabled = config.enable_progress_tracking
        if enabled:
            self._tracker.start_operation(
                session_id,
                f"Batch session {session_id}",
                steps,
                ProgressCallbacks(
                    on_progress=lambda state: self._mirror(session_id, state),
                    on_cancelled=lambda state: self._mirror(session_id, state),
                ),
            )
        return _PhaseProgress(self._tracker, session_id, steps, enabled)

    def _mirror(self, session_id: str, state: ProgressState) -> None:
        current = state.current_step
        cancelled = state.status == OperationStatus.CANCELLED

        def _apply(s: Session) -> None:
            if cancelled:
                label = "Cancelled"
            else:
                label = current.name if current else s.progress.current_step
            s.progress = SessionProgress(
                current_step=label,
                completed_steps=state.completed_steps,
                total_steps=state.total_steps,
                percentage=state.overall_progress,
                estimated_time_remaining_s=(
                    None if cancelled else state.estimated_time_remaining_s
                ),
            )

        self._registry.update(session_id, _apply)

    def _is_cancelled(self, session_id: str) -> bool:
        session = self._registry.get(session_id)
        return session is None or session.status == SessionStatus.CANCELLED

    async def _persist(self, session_id: str, config: OrchestrationConfig) -> None:
        if not config.enable_state_persistence or self._store is None:
            return
        snapshot = self._registry.get(session_id)
        if snapshot is None:
            return
        try:
            await self._store.save(snapshot)
        except OSError as e:
            logger.warning("Could not persist session %s: %s", session_id, e)
            self._registry.update(
                session_id, lambda s: s.warnings.append(f"State persistence failed: {e}")
            )

    async def _sweep_forever(self, interval_s: float) -> None:
        while True:
            await self._sleep(interval_s)
            self.cleanup_sessions()

    def _generate_session_id(self) -> str:
        """session_{yyyymmdd_hhmmss}_{9 hex chars}, unique within the registry."""
        while True:
            ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            sid = f"session_{ts}_{uuid.uuid4().hex[:9]}"
            if sid not in self._registry:
                return sid


def _count_attempt(entry: FileEntry) -> None:
    entry.attempts += 1


def _fail_entry(session: Session, index: int, message: str) -> None:
    entry = session.files[index]
    if not entry.is_terminal:
        entry.mark_failed(message)
    session.add_error(
        ErrorKind.PROCESSING, f"Failed to process {entry.name}: {message}", entry.name
    )


def _document_from_source(entry: FileEntry) -> DocumentInput | None:
    if not entry.source_path:
        return None
    path = Path(entry.source_path)
    if not path.is_file():
        return None
    return DocumentInput.from_path(path)


def create_orchestrator(
    processor: BaseDocumentProcessor,
    settings: Settings | None = None,
    migration_manager: BaseMigrationManager | None = None,
) -> BatchOrchestrator:
    """Build an orchestrator with a JSON session store under ``settings.state_dir``."""
    settings = settings or Settings()
    store = None
    if settings.enable_state_persistence:
        from quextractor.storage.json_session_store import JsonSessionStore

        store = JsonSessionStore(settings.state_dir)
    return BatchOrchestrator(
        processor,
        settings=settings,
        migration_manager=migration_manager,
        session_store=store,
    )
