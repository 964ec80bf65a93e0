# src/batch/registry.py - v1
"""Thread-safe in-memory store of sessions and their progress subscribers.

Every mutation goes through ``update``, which runs the mutator inside a
single critical section and hands subscribers a deep copy afterwards.
Subscribers run synchronously on the updating task: a slow subscriber
delays the orchestrator, never concurrent readers.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from quextractor.batch.models import Session
from quextractor.core.errors import SessionExistsError

logger = logging.getLogger(__name__)

ProgressSubscriber = Callable[[Session], None]


class SessionRegistry:
    """Keyed store of Session records."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, Session] = {}
        self._subscribers: dict[str, list[ProgressSubscriber]] = {}

    def create(self, session: Session) -> Session:
        """Register a new session.

        Raises:
            SessionExistsError: If the id is already registered.
        """
        with self._lock:
            if session.id in self._sessions:
                raise SessionExistsError(session.id)
            self._sessions[session.id] = session.model_copy(deep=True)
            snapshot = session.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def replace(self, session: Session) -> Session:
        """Insert or overwrite a session (used when restoring persisted state)."""
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)
            snapshot = session.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def update(
        self, session_id: str, mutator: Callable[[Session], object]
    ) -> Session | None:
        """Atomically apply ``mutator`` to the stored session.

        Returns:
            Snapshot after the update, or None for an unknown id.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            mutator(session)
            snapshot = session.model_copy(deep=True)
        self._notify(snapshot)
        return snapshot

    def delete(self, session_id: str) -> bool:
        with self._lock:
            self._subscribers.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    def list_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, session_id: str, callback: ProgressSubscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(session_id, []).append(callback)

    def unsubscribe(
        self, session_id: str, callback: ProgressSubscriber | None = None
    ) -> None:
        """Remove one callback, or all callbacks when none is given."""
        with self._lock:
            if callback is None:
                self._subscribers.pop(session_id, None)
                return
            callbacks = self._subscribers.get(session_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(session_id, None)

    def _notify(self, snapshot: Session) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(snapshot.id, []))
            if snapshot.is_terminal:
                self._subscribers.pop(snapshot.id, None)
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Progress subscriber failed for session %s", snapshot.id)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep(self, retention_s: float, now: datetime | None = None) -> list[str]:
        """Evict terminal sessions that ended more than ``retention_s`` ago."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=retention_s)
        with self._lock:
            expired = [
                sid
                for sid, s in self._sessions.items()
                if s.is_terminal and s.end_time is not None and s.end_time < cutoff
            ]
            for sid in expired:
                self._sessions.pop(sid, None)
                self._subscribers.pop(sid, None)
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return expired
