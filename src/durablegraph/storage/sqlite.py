"""durablegraph.storage.sqlite

SQLite-backed durability stores for single-host deployments.

Design goals:
- Keep the durable execution substrate dependency-light (stdlib `sqlite3`).
- Restart-safe storage with real indexing (no directory scans).
- Optimistic concurrency enforced by the database: snapshot writes are
  compare-and-swap on the `version` column, so several processes can share one file.

Tables:
- runs: latest snapshot per run id (+ status/graph columns for queries)
- ledger / ledger_heads: append-only StepRecord JSON with per-run seq
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import CheckpointStore, LedgerStore
from ..core.errors import CheckpointConflictError
from ..core.models import RunSnapshot, RunStatus, StepRecord
from ..logging import get_logger

logger = get_logger(__name__)


class SqliteDatabase:
    """Small helper around a SQLite file with per-thread connections."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._path

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self._path), timeout=30.0)
            conn.row_factory = sqlite3.Row
            self._apply_pragmas(conn)
            self._local.conn = conn
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        # WAL improves writer/reader concurrency when API and runners share the file.
        for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000"):
            try:
                conn.execute(f"PRAGMA {pragma};")
            except sqlite3.DatabaseError as e:
                logger.debug("sqlite pragma not applied", pragma=pragma, error=str(e))

    def _ensure_schema(self) -> None:
        with self._init_lock:
            if self._initialized:
                return
            conn = sqlite3.connect(str(self._path), timeout=30.0)
            try:
                self._apply_pragmas(conn)

                # --- Runs ---
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS runs (
                      run_id TEXT PRIMARY KEY,
                      graph_id TEXT NOT NULL,
                      status TEXT NOT NULL,
                      cursor TEXT NOT NULL,
                      version INTEGER NOT NULL,
                      created_at TEXT,
                      updated_at TEXT,
                      snapshot_json TEXT NOT NULL
                    );
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status_updated ON runs(status, updated_at DESC);")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_graph_updated ON runs(graph_id, updated_at DESC);")

                # --- Ledger ---
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ledger (
                      run_id TEXT NOT NULL,
                      seq INTEGER NOT NULL,
                      record_json TEXT NOT NULL,
                      PRIMARY KEY (run_id, seq)
                    );
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ledger_heads (
                      run_id TEXT PRIMARY KEY,
                      last_seq INTEGER NOT NULL
                    );
                    """
                )
                conn.commit()
                self._initialized = True
            finally:
                conn.close()


def _snapshot_from_row(row: sqlite3.Row) -> Optional[RunSnapshot]:
    try:
        data = json.loads(str(row["snapshot_json"] or "{}"))
        return RunSnapshot.from_dict(data)
    except (ValueError, KeyError) as e:
        logger.warning("skipping unreadable snapshot row", error=str(e))
        return None


class SqliteCheckpointStore(CheckpointStore):
    """SQLite-backed CheckpointStore with version compare-and-swap."""

    def __init__(self, db: SqliteDatabase) -> None:
        self._db = db

    def load(self, run_id: str) -> Optional[RunSnapshot]:
        rid = str(run_id or "")
        if not rid:
            return None
        conn = self._db.connection()
        row = conn.execute("SELECT snapshot_json FROM runs WHERE run_id = ?;", (rid,)).fetchone()
        if row is None:
            return None
        return _snapshot_from_row(row)

    def _current_version(self, conn: sqlite3.Connection, run_id: str) -> Optional[int]:
        row = conn.execute("SELECT version FROM runs WHERE run_id = ?;", (run_id,)).fetchone()
        return int(row["version"]) if row is not None else None

    def save(self, snapshot: RunSnapshot, *, expected_version: int) -> None:
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        params = (
            str(snapshot.graph_id),
            snapshot.status.value,
            str(snapshot.cursor),
            int(snapshot.version),
            str(snapshot.created_at),
            str(snapshot.updated_at),
            payload,
        )
        conn = self._db.connection()
        with conn:
            if expected_version == 0:
                try:
                    conn.execute(
                        """
                        INSERT INTO runs (graph_id, status, cursor, version, created_at, updated_at, snapshot_json, run_id)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (*params, str(snapshot.run_id)),
                    )
                except sqlite3.IntegrityError:
                    actual = self._current_version(conn, snapshot.run_id)
                    raise CheckpointConflictError(snapshot.run_id, expected_version, actual) from None
                return

            cur = conn.execute(
                """
                UPDATE runs
                SET graph_id = ?, status = ?, cursor = ?, version = ?, created_at = ?, updated_at = ?, snapshot_json = ?
                WHERE run_id = ? AND version = ?;
                """,
                (*params, str(snapshot.run_id), int(expected_version)),
            )
            if cur.rowcount != 1:
                actual = self._current_version(conn, snapshot.run_id)
                raise CheckpointConflictError(snapshot.run_id, expected_version, actual)

    def delete(self, run_id: str) -> bool:
        conn = self._db.connection()
        with conn:
            cur = conn.execute("DELETE FROM runs WHERE run_id = ?;", (str(run_id),))
        return cur.rowcount > 0

    def list_runs(self, *, status: Optional[RunStatus] = None, limit: int = 100) -> List[RunSnapshot]:
        clauses: list[str] = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = "WHERE " + " AND ".join(clauses) if clauses else ""
        lim = max(1, int(limit or 100))

        conn = self._db.connection()
        rows = conn.execute(
            f"SELECT snapshot_json FROM runs {where} ORDER BY updated_at DESC LIMIT ?;",
            (*params, lim),
        ).fetchall()
        out: List[RunSnapshot] = []
        for row in rows or []:
            snap = _snapshot_from_row(row)
            if snap is not None:
                out.append(snap)
        return out


class SqliteLedgerStore(LedgerStore):
    """SQLite-backed append-only ledger store with per-run seq."""

    def __init__(self, db: SqliteDatabase) -> None:
        self._db = db

    def append(self, record: StepRecord) -> None:
        run_id = str(record.run_id or "")
        if not run_id:
            raise ValueError("StepRecord.run_id must be non-empty")

        payload = json.dumps(record.to_dict(), ensure_ascii=False)
        conn = self._db.connection()
        with conn:
            # Take the write lock before reading the head so concurrent appenders serialise.
            conn.execute("BEGIN IMMEDIATE;")
            row = conn.execute("SELECT last_seq FROM ledger_heads WHERE run_id = ?;", (run_id,)).fetchone()
            seq = (int(row["last_seq"]) if row is not None else 0) + 1
            conn.execute(
                "INSERT INTO ledger (run_id, seq, record_json) VALUES (?, ?, ?);",
                (run_id, seq, payload),
            )
            conn.execute(
                """
                INSERT INTO ledger_heads (run_id, last_seq)
                VALUES (?, ?)
                ON CONFLICT(run_id) DO UPDATE SET last_seq=excluded.last_seq;
                """,
                (run_id, seq),
            )

    def list(self, run_id: str) -> List[Dict[str, Any]]:
        rid = str(run_id or "")
        if not rid:
            return []
        conn = self._db.connection()
        rows = conn.execute(
            "SELECT record_json FROM ledger WHERE run_id = ? ORDER BY seq ASC;",
            (rid,),
        ).fetchall()
        out: List[Dict[str, Any]] = []
        for row in rows or []:
            obj = json.loads(str(row["record_json"] or "{}"))
            if isinstance(obj, dict):
                out.append(obj)
        return out

    def count(self, run_id: str) -> int:
        conn = self._db.connection()
        row = conn.execute("SELECT last_seq FROM ledger_heads WHERE run_id = ?;", (str(run_id),)).fetchone()
        return int(row["last_seq"]) if row is not None else 0
