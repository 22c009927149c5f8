"""durablegraph.storage.in_memory

In-memory durability backends (testing/dev).

Snapshots are deep-copied on the way in and on the way out, so a caller holding a
snapshot can never mutate what the store persisted.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from .base import CheckpointStore, LedgerStore
from ..core.errors import CheckpointConflictError
from ..core.models import RunSnapshot, RunStatus, StepRecord


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, RunSnapshot] = {}

    def load(self, run_id: str) -> Optional[RunSnapshot]:
        with self._lock:
            snap = self._runs.get(run_id)
            return snap.copy() if snap is not None else None

    def save(self, snapshot: RunSnapshot, *, expected_version: int) -> None:
        with self._lock:
            current = self._runs.get(snapshot.run_id)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise CheckpointConflictError(
                    snapshot.run_id, expected_version, current.version if current is not None else None
                )
            self._runs[snapshot.run_id] = snapshot.copy()

    def delete(self, run_id: str) -> bool:
        with self._lock:
            return self._runs.pop(run_id, None) is not None

    def list_runs(self, *, status: Optional[RunStatus] = None, limit: int = 100) -> List[RunSnapshot]:
        with self._lock:
            snaps = [s for s in self._runs.values() if status is None or s.status == status]
            snaps.sort(key=lambda s: s.updated_at, reverse=True)
            return [s.copy() for s in snaps[: max(1, int(limit))]]


class InMemoryLedgerStore(LedgerStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, List[Dict[str, Any]]] = {}

    def append(self, record: StepRecord) -> None:
        with self._lock:
            self._records.setdefault(record.run_id, []).append(record.to_dict())

    def list(self, run_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._records.get(run_id, []))
