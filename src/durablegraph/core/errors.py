"""durablegraph.core.errors

Exception taxonomy.

Three families:
- construction errors (`GraphValidationError`): a graph never gets built;
- caller misuse (`DuplicateRunError`, `RunNotFoundError`, `NotSuspendedError`, ...):
  raised synchronously, no run state changes;
- run failures (`UnknownFieldError`, `RoutingError`, ...): the run is persisted as
  FAILED and the error is returned in the `RunResult`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional


class GraphEngineError(Exception):
    """Base class for every error raised by durablegraph."""


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class GraphValidationError(GraphEngineError):
    """Raised by `GraphBuilder.build()`; `errors` lists every violation found."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Invalid graph ({len(self.errors)} error(s)):\n{lines}")


# ---------------------------------------------------------------------------
# Caller misuse
# ---------------------------------------------------------------------------


class DuplicateRunError(GraphEngineError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run already exists: {run_id}")


class RunNotFoundError(GraphEngineError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Unknown run_id: {run_id}")


class NotSuspendedError(GraphEngineError):
    def __init__(self, run_id: str, status: Any):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is not suspended (status={getattr(status, 'value', status)})")


class NotRecoverableError(GraphEngineError):
    def __init__(self, run_id: str, status: Any):
        self.run_id = run_id
        self.status = status
        super().__init__(
            f"Run {run_id} cannot be recovered (status={getattr(status, 'value', status)}); "
            "only RUNNING or PENDING snapshots are recoverable"
        )


class GraphMismatchError(GraphEngineError):
    def __init__(self, run_id: str, expected: str, actual: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} belongs to graph '{actual}', not '{expected}'")


class CheckpointConflictError(GraphEngineError):
    """Optimistic concurrency failure: another writer saved the same run first."""

    def __init__(self, run_id: str, expected_version: int, actual_version: Optional[int]):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Checkpoint conflict for run {run_id}: expected version {expected_version}, "
            f"found {actual_version if actual_version is not None else 'none'}"
        )


# ---------------------------------------------------------------------------
# Run failures (step or graph authoring bugs)
# ---------------------------------------------------------------------------


class UnknownFieldError(GraphEngineError):
    def __init__(self, fields: Iterable[str]):
        self.fields = sorted(str(f) for f in fields)
        super().__init__(f"Unknown state field(s): {', '.join(self.fields)}")


class FieldValidationError(GraphEngineError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid value for state field '{field}': {message}")


class RoutingError(GraphEngineError):
    pass


class InvalidRedirectError(GraphEngineError):
    def __init__(self, step: str, target: str, reason: str):
        self.step = step
        self.target = target
        super().__init__(f"Step '{step}' cannot redirect to '{target}': {reason}")


class MultipleSuspendError(GraphEngineError):
    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Step '{step}' suspended more than once in a single execution")


class InvalidOutcomeError(GraphEngineError):
    def __init__(self, step: str, value: Any):
        self.step = step
        super().__init__(
            f"Step '{step}' returned {type(value).__name__}; "
            "expected Update, Redirect, Suspend, a mapping or None"
        )


class StepLimitError(GraphEngineError):
    def __init__(self, run_id: str, max_steps: int):
        self.run_id = run_id
        self.max_steps = max_steps
        super().__init__(f"Run {run_id} exceeded the step limit of {max_steps} without reaching END")


def error_record(error: BaseException) -> Dict[str, str]:
    """JSON-safe description of an error, persisted on FAILED snapshots."""
    return {"type": type(error).__name__, "message": str(error)}
