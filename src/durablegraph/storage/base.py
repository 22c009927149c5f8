"""durablegraph.storage.base

Storage interfaces (durability backends).

`CheckpointStore` holds the latest snapshot per run id. Writes are optimistic:
`save(snapshot, expected_version=v)` succeeds only if the persisted version is `v`
(`0` meaning "no snapshot yet") and raises `CheckpointConflictError` otherwise. This
makes read-modify-write of one run atomic with respect to other writers of the same
run, while distinct runs never contend.

`LedgerStore` is an append-only journal of step executions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.models import RunSnapshot, RunStatus, StepRecord


class CheckpointStore(ABC):
    @abstractmethod
    def load(self, run_id: str) -> Optional[RunSnapshot]:
        """Latest snapshot for `run_id`, or None. Returned objects are private copies."""

    @abstractmethod
    def save(self, snapshot: RunSnapshot, *, expected_version: int) -> None:
        """Persist `snapshot` if the stored version equals `expected_version`."""

    @abstractmethod
    def delete(self, run_id: str) -> bool:
        """Administrative removal; returns True if a snapshot existed."""

    @abstractmethod
    def list_runs(self, *, status: Optional[RunStatus] = None, limit: int = 100) -> List[RunSnapshot]:
        """Snapshots ordered by most recently updated first."""


class LedgerStore(ABC):
    """Append-only journal store."""

    @abstractmethod
    def append(self, record: StepRecord) -> None: ...

    @abstractmethod
    def list(self, run_id: str) -> List[Dict[str, Any]]: ...
