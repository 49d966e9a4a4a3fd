"""Durable per-repository analysis state stores."""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from app.config.database import SessionLocal, init_db
from app.models.analysis import OrchestratorState
from app.models.analysis_state import AnalysisStateSnapshot

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    async def load(self, key: str) -> OrchestratorState: ...

    async def save(self, key: str, state: OrchestratorState) -> None: ...


class InMemoryStateStore:
    """Keeps serialized snapshots in a dict; survives actor restarts within one process."""

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}

    async def load(self, key: str) -> OrchestratorState:
        return OrchestratorState.from_dict(copy.deepcopy(self._snapshots.get(key)))

    async def save(self, key: str, state: OrchestratorState) -> None:
        self._snapshots[key] = state.to_dict()

    def keys(self) -> list[str]:
        return list(self._snapshots)


class SQLAlchemyStateStore:
    """Stores JSON snapshots in `analysis_state_snapshots`."""

    def __init__(self, session_factory: Callable[[], Any] = SessionLocal) -> None:
        self._session_factory = session_factory

    async def load(self, key: str) -> OrchestratorState:
        db = self._session_factory()
        try:
            row: Optional[AnalysisStateSnapshot] = db.get(AnalysisStateSnapshot, key)
            if row is None:
                return OrchestratorState()
            return OrchestratorState.from_dict(json.loads(row.payload))
        finally:
            db.close()

    async def save(self, key: str, state: OrchestratorState) -> None:
        payload = json.dumps(state.to_dict())
        db = self._session_factory()
        try:
            row = db.get(AnalysisStateSnapshot, key)
            if row is None:
                db.add(AnalysisStateSnapshot(repository_key=key, payload=payload))
            else:
                row.payload = payload
                row.updated_at = datetime.utcnow()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def build_state_store(backend: str) -> StateStore:
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "database":
        init_db()
        return SQLAlchemyStateStore()
    raise ValueError(f"Unsupported state store backend: {backend}")
