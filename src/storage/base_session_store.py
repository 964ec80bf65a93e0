# src/storage/base_session_store.py - v1
"""Abstract persistence for session snapshots (used by resume)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from quextractor.batch.models import Session


class BaseSessionStore(ABC):
    """Unified interface for session persistence backends."""

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Persist a snapshot, overwriting any previous one."""

    @abstractmethod
    async def load(self, session_id: str) -> Session | None:
        """Load a snapshot, or None if nothing is stored."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Remove a stored snapshot."""

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Ids of all stored sessions."""
