# src/storage/json_session_store.py - v1
"""JSON file-based session store (one file per session under state_dir)."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from quextractor.batch.models import Session
from quextractor.storage.base_session_store import BaseSessionStore

logger = logging.getLogger(__name__)


class JsonSessionStore(BaseSessionStore):
    """File-based session store using JSON files."""

    def __init__(self, state_dir: Path) -> None:
        self._root = Path(state_dir).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    async def save(self, session: Session) -> None:
        path = self._session_path(session.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Saved session state %s", session.id)

    async def load(self, session_id: str) -> Session | None:
        path = self._session_path(session_id)
        if not path.exists():
            return None
        try:
            return Session.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.warning("Failed to read session state %s: %s", session_id, e)
            return None

    async def delete(self, session_id: str) -> None:
        path = self._session_path(session_id)
        if path.exists():
            path.unlink()

    async def list_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        return sorted(p.stem for p in self._root.glob("*.json"))

    def _session_path(self, session_id: str) -> Path:
        safe_id = session_id.replace("/", "_").replace("\\", "_")
        return self._root / f"{safe_id}.json"
