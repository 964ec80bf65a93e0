# src/storage/base_migration.py - v1
"""Storage migration collaborator consulted once per session."""

from __future__ import annotations

from abc import ABC, abstractmethod


class BaseMigrationManager(ABC):
    """Brings the question store schema up to date before a run."""

    @abstractmethod
    async def check_migration_needed(self) -> bool:
        """Return True if the store is behind the current schema."""

    @abstractmethod
    async def run_migration(self) -> None:
        """Migrate the store. Raises on failure."""


class NoopMigrationManager(BaseMigrationManager):
    """Default manager for deployments without a versioned store."""

    async def check_migration_needed(self) -> bool:
        return False

    async def run_migration(self) -> None:
        return None
