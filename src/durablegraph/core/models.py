"""durablegraph.core.models

Core data model:
- `RunStatus`: run lifecycle
- `Update` / `Redirect` / `Suspend`: the tagged step outcome variant
- `RunSnapshot`: the durable record of a run (owned by a CheckpointStore)
- `StepRecord`: one ledger entry per step execution
- `RunResult`: what `Runtime.start()` / `resume()` hand back to callers

Snapshots and ledger records are JSON-safe by construction (`to_dict()` / `from_dict()`),
as long as the state values themselves are.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

START = "__start__"
END = "__end__"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


# ---------------------------------------------------------------------------
# Step outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Update:
    """Partial state update; the run follows the step's edge."""

    values: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    """Partial state update plus an explicit next step, bypassing the step's edge."""

    goto: str
    values: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Suspend:
    """Pause the run; `payload` is surfaced to the caller of start()/resume()."""

    payload: Any = None
    values: Mapping[str, Any] = field(default_factory=dict)


StepOutcome = Union[Update, Redirect, Suspend]


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass
class RunSnapshot:
    """Durable state of one run.

    `version` is bumped on every write and doubles as the optimistic concurrency
    token for `CheckpointStore.save(snapshot, expected_version=...)`.
    `suspend_payload` / `suspended_step` are only meaningful while SUSPENDED.
    `resume_value` is held while a resumed step re-executes (`resuming=True`) so
    that a crash during re-entry can still deliver it on recovery.
    """

    run_id: str
    graph_id: str
    status: RunStatus
    cursor: str
    state: Dict[str, Any]
    version: int = 0
    step_count: int = 0
    suspend_payload: Any = None
    suspended_step: Optional[str] = None
    resuming: bool = False
    resume_value: Any = None
    error: Optional[Dict[str, str]] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def new(
        cls,
        *,
        graph_id: str,
        state: Dict[str, Any],
        run_id: Optional[str] = None,
    ) -> "RunSnapshot":
        now = utc_now_iso()
        return cls(
            run_id=run_id or uuid.uuid4().hex,
            graph_id=graph_id,
            status=RunStatus.PENDING,
            cursor=START,
            state=state,
            created_at=now,
            updated_at=now,
        )

    def copy(self) -> "RunSnapshot":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunSnapshot":
        raw_status = data.get("status")
        status = raw_status if isinstance(raw_status, RunStatus) else RunStatus(str(raw_status))
        raw_error = data.get("error")
        return cls(
            run_id=str(data["run_id"]),
            graph_id=str(data.get("graph_id") or ""),
            status=status,
            cursor=str(data.get("cursor") or START),
            state=dict(data.get("state") or {}),
            version=int(data.get("version") or 0),
            step_count=int(data.get("step_count") or 0),
            suspend_payload=data.get("suspend_payload"),
            suspended_step=data.get("suspended_step"),
            resuming=bool(data.get("resuming", False)),
            resume_value=data.get("resume_value"),
            error=dict(raw_error) if isinstance(raw_error, Mapping) else None,
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
        )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class StepStatus(str, Enum):
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    FAILED = "failed"


@dataclass
class StepRecord:
    """One journal entry: a single step execution and where it sent the run."""

    run_id: str
    step: str
    status: StepStatus
    outcome: Optional[str] = None  # "update" | "redirect" | "suspend" | "parallel"
    next_cursor: Optional[str] = None
    version: int = 0
    resumed: bool = False
    branches: Optional[list] = None
    error: Optional[Dict[str, str]] = None
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    recorded_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunResult:
    """Outcome of a start()/resume()/recover() call."""

    run_id: str
    status: RunStatus
    state: Dict[str, Any]
    cursor: str
    version: int
    payload: Any = None
    error: Optional[BaseException] = None

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def suspended(self) -> bool:
        return self.status == RunStatus.SUSPENDED

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED

    def raise_for_error(self) -> "RunResult":
        if self.error is not None:
            raise self.error
        return self

    def to_dict(self) -> Dict[str, Any]:
        """External result shape (e.g. for an HTTP layer)."""
        out: Dict[str, Any] = {"run_id": self.run_id, "status": self.status.value}
        if self.status == RunStatus.COMPLETED:
            out["final_state"] = self.state
        elif self.status == RunStatus.SUSPENDED:
            out["payload"] = self.payload
        elif self.status == RunStatus.FAILED:
            out["error"] = {"type": type(self.error).__name__, "message": str(self.error)}
        return out
