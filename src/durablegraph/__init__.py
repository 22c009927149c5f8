"""
durablegraph

Durable graph executor (suspend → checkpoint → resume).

This package provides a small execution substrate:
- typed state with per-field reducers
- validated, immutable workflow graphs (static, conditional and parallel edges,
  explicit redirects)
- durable run snapshots with SUSPENDED / RESUME semantics
- append-only step journal (ledger)

LLM calls, tools and HTTP surfaces live in the steps and hosts built on top.
"""

from .core.config import RuntimeConfig
from .core.errors import (
    CheckpointConflictError,
    DuplicateRunError,
    FieldValidationError,
    GraphEngineError,
    GraphMismatchError,
    GraphValidationError,
    InvalidOutcomeError,
    InvalidRedirectError,
    MultipleSuspendError,
    NotRecoverableError,
    NotSuspendedError,
    RoutingError,
    RunNotFoundError,
    StepLimitError,
    UnknownFieldError,
)
from .core.graph import Graph, GraphBuilder
from .core.models import (
    END,
    START,
    Redirect,
    RunResult,
    RunSnapshot,
    RunStatus,
    StepRecord,
    StepStatus,
    Suspend,
    Update,
)
from .core.runtime import Runtime
from .core.state import (
    Field,
    State,
    StateSchema,
    append,
    keep_if_none,
    merge_dict,
    replace,
    replace_if_truthy,
)
from .core.suspend import StepContext, current_step, suspend
from .storage.base import CheckpointStore, LedgerStore
from .storage.in_memory import InMemoryCheckpointStore, InMemoryLedgerStore
from .storage.json_files import JsonFileCheckpointStore, JsonlLedgerStore
from .storage.sqlite import SqliteCheckpointStore, SqliteDatabase, SqliteLedgerStore

__all__ = [
    # State
    "Field",
    "State",
    "StateSchema",
    "append",
    "keep_if_none",
    "merge_dict",
    "replace",
    "replace_if_truthy",
    # Graph
    "START",
    "END",
    "Graph",
    "GraphBuilder",
    # Outcomes + models
    "Update",
    "Redirect",
    "Suspend",
    "RunResult",
    "RunSnapshot",
    "RunStatus",
    "StepRecord",
    "StepStatus",
    # Runtime
    "Runtime",
    "RuntimeConfig",
    "StepContext",
    "current_step",
    "suspend",
    # Storage backends
    "CheckpointStore",
    "LedgerStore",
    "InMemoryCheckpointStore",
    "InMemoryLedgerStore",
    "JsonFileCheckpointStore",
    "JsonlLedgerStore",
    "SqliteDatabase",
    "SqliteCheckpointStore",
    "SqliteLedgerStore",
    # Errors
    "GraphEngineError",
    "GraphValidationError",
    "DuplicateRunError",
    "RunNotFoundError",
    "NotSuspendedError",
    "NotRecoverableError",
    "GraphMismatchError",
    "UnknownFieldError",
    "FieldValidationError",
    "RoutingError",
    "InvalidRedirectError",
    "MultipleSuspendError",
    "InvalidOutcomeError",
    "StepLimitError",
    "CheckpointConflictError",
]
