"""durablegraph.storage.json_files

Simple file-based persistence:
- snapshots as JSON (one file per run, replaced atomically)
- ledger as JSONL (append-only)

Version checks are serialised per run id within one process. Several processes
sharing a directory should use the SQLite backend instead.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

from .base import CheckpointStore, LedgerStore
from ..core.errors import CheckpointConflictError
from ..core.models import RunSnapshot, RunStatus, StepRecord
from ..logging import get_logger

logger = get_logger(__name__)


def _file_key(run_id: str) -> str:
    # Run ids are opaque; percent-encode so "/" or ".." can never leave base_dir.
    return quote(str(run_id), safe="")


class JsonFileCheckpointStore(CheckpointStore):
    def __init__(self, base_dir: str | Path):
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _path(self, run_id: str) -> Path:
        return self._base / f"run_{_file_key(run_id)}.json"

    def _lock_for(self, run_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(run_id)
            if lock is None:
                lock = self._locks[run_id] = threading.Lock()
            return lock

    def _read(self, p: Path) -> Optional[RunSnapshot]:
        if not p.exists():
            return None
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return RunSnapshot.from_dict(data)

    def load(self, run_id: str) -> Optional[RunSnapshot]:
        with self._lock_for(run_id):
            return self._read(self._path(run_id))

    def save(self, snapshot: RunSnapshot, *, expected_version: int) -> None:
        p = self._path(snapshot.run_id)
        with self._lock_for(snapshot.run_id):
            current = self._read(p)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise CheckpointConflictError(
                    snapshot.run_id, expected_version, current.version if current is not None else None
                )
            payload = json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)
            fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", dir=str(self._base))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, p)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    def delete(self, run_id: str) -> bool:
        with self._lock_for(run_id):
            p = self._path(run_id)
            if not p.exists():
                return False
            p.unlink()
            return True

    def _iter_all_runs(self) -> Iterator[RunSnapshot]:
        for p in sorted(self._base.glob("run_*.json")):
            try:
                snap = self._read(p)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("skipping unreadable snapshot", path=str(p), error=str(e))
                continue
            if snap is not None:
                yield snap

    def list_runs(self, *, status: Optional[RunStatus] = None, limit: int = 100) -> List[RunSnapshot]:
        snaps = [s for s in self._iter_all_runs() if status is None or s.status == status]
        snaps.sort(key=lambda s: s.updated_at, reverse=True)
        return snaps[: max(1, int(limit))]


class JsonlLedgerStore(LedgerStore):
    def __init__(self, base_dir: str | Path):
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, run_id: str) -> Path:
        return self._base / f"ledger_{_file_key(run_id)}.jsonl"

    def append(self, record: StepRecord) -> None:
        p = self._path(record.run_id)
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock, p.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")

    def list(self, run_id: str) -> List[Dict[str, Any]]:
        p = self._path(run_id)
        if not p.exists():
            return []
        out: List[Dict[str, Any]] = []
        with p.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                out.append(json.loads(line))
        return out
