"""durablegraph.core.runtime

Durable graph executor.

Key semantics:
- `start()` creates a run and drives it until it completes, suspends or fails.
- A step suspends by calling `suspend(payload)` (or returning `Suspend(...)`); the run
  is persisted as SUSPENDED with its cursor still on that step.
- `resume()` claims a suspended run and re-executes the suspended step, whose
  `suspend()` call now returns the resume value.
- Every completed iteration is checkpointed before the next step starts. A crash
  between two checkpoints re-runs the step that was in flight (at-least-once), so
  steps with external side effects must be idempotent.

Failures raised by step code, routers, reducers or engine checks never escape as
exceptions: the run is persisted as FAILED (state and cursor from before the failing
iteration) and the error is returned in `RunResult.error`. Caller misuse
(`DuplicateRunError`, `RunNotFoundError`, `NotSuspendedError`, ...) and checkpoint
conflicts are raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..logging import get_logger
from ..storage.base import CheckpointStore, LedgerStore
from ..storage.in_memory import InMemoryLedgerStore
from .config import RuntimeConfig
from .errors import (
    CheckpointConflictError,
    DuplicateRunError,
    GraphMismatchError,
    InvalidOutcomeError,
    MultipleSuspendError,
    NotRecoverableError,
    NotSuspendedError,
    RoutingError,
    RunNotFoundError,
    StepLimitError,
    error_record,
)
from .graph import EdgeKind, Graph, Node
from .models import (
    END,
    START,
    Redirect,
    RunResult,
    RunSnapshot,
    RunStatus,
    StepOutcome,
    StepRecord,
    StepStatus,
    Suspend,
    Update,
    utc_now_iso,
)
from .state import State, jsonable
from .suspend import StepContext, SuspendSignal, step_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Advance:
    """Result of one successful, non-suspending iteration."""

    state: State
    next_cursor: str
    outcome: str
    branches: Optional[List[str]] = None


class Runtime:
    """Durable graph executor bound to one graph and one checkpoint store."""

    def __init__(
        self,
        *,
        graph: Graph,
        checkpoint_store: CheckpointStore,
        ledger_store: Optional[LedgerStore] = None,
        config: Optional[RuntimeConfig] = None,
    ):
        self._graph = graph
        self._store = checkpoint_store
        self._ledger = ledger_store if ledger_store is not None else InMemoryLedgerStore()
        self._config: RuntimeConfig = config or RuntimeConfig()

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def checkpoint_store(self) -> CheckpointStore:
        return self._store

    @property
    def ledger_store(self) -> LedgerStore:
        return self._ledger

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    def start(self, *, run_id: Optional[str] = None, overrides: Optional[Mapping[str, Any]] = None) -> RunResult:
        """Create a run and drive it to completion, suspension or failure.

        Args:
            run_id: Caller-supplied identity (a uuid hex is generated when omitted).
            overrides: Initial field values, merged into the defaults through reducers.

        Raises:
            DuplicateRunError: `run_id` already has a snapshot.
            UnknownFieldError / FieldValidationError: invalid `overrides` (no run is created).
        """
        if run_id is not None and not str(run_id).strip():
            raise ValueError("run_id must be a non-empty string")
        if run_id is not None and self._store.load(run_id) is not None:
            raise DuplicateRunError(run_id)

        schema = self._graph.schema
        state = schema.apply(schema.new_state(), overrides)
        snap = RunSnapshot.new(graph_id=self._graph.name, state=schema.dump(state), run_id=run_id)
        try:
            self._write(snap, expected_version=0)
        except CheckpointConflictError:
            raise DuplicateRunError(snap.run_id) from None

        logger.info("run started", run_id=snap.run_id, graph=self._graph.name)
        return self._drive(snap)

    def resume(self, *, run_id: str, value: Any = None) -> RunResult:
        """Continue a suspended run; the suspended step's `suspend()` call returns `value`.

        Raises:
            RunNotFoundError: no snapshot for `run_id`.
            NotSuspendedError: the run is not SUSPENDED (including losing a race against a
                concurrent resume of the same run).
            ValueError: `value` cannot be serialised to JSON.
        """
        value = jsonable(value)
        snap = self.get_snapshot(run_id)
        if snap.status != RunStatus.SUSPENDED:
            raise NotSuspendedError(run_id, snap.status)

        expected = snap.version
        snap.status = RunStatus.RUNNING
        snap.resuming = True
        snap.resume_value = value
        snap.suspend_payload = None
        snap.suspended_step = None
        try:
            self._write(snap, expected_version=expected)
        except CheckpointConflictError:
            latest = self._store.load(run_id)
            if latest is None or latest.status != RunStatus.SUSPENDED:
                raise NotSuspendedError(run_id, latest.status if latest else None) from None
            raise

        logger.info("run resumed", run_id=run_id, step=snap.cursor)
        return self._drive(snap)

    def recover(self, *, run_id: str) -> RunResult:
        """Re-drive a run whose owning process died while it was RUNNING (or PENDING).

        The caller is responsible for knowing the previous owner is gone; the version
        check only guarantees that two concurrent recoveries cannot both proceed.
        """
        snap = self.get_snapshot(run_id)
        if snap.status not in (RunStatus.RUNNING, RunStatus.PENDING):
            raise NotRecoverableError(run_id, snap.status)
        self._write(snap, expected_version=snap.version)
        logger.warning("recovering run", run_id=run_id, step=snap.cursor, status=snap.status.value)
        return self._drive(snap)

    def get_snapshot(self, run_id: str) -> RunSnapshot:
        snap = self._store.load(run_id)
        if snap is None:
            raise RunNotFoundError(run_id)
        if snap.graph_id != self._graph.name:
            raise GraphMismatchError(run_id, self._graph.name, snap.graph_id)
        return snap

    def get_ledger(self, run_id: str) -> List[Dict[str, Any]]:
        return self._ledger.list(run_id)

    # ---------------------------------------------------------------------
    # Step loop
    # ---------------------------------------------------------------------

    def _drive(self, snap: RunSnapshot) -> RunResult:
        schema = self._graph.schema
        try:
            state = schema.restore(snap.state)
        except Exception as e:
            return self._fail(snap, snap.cursor, e)

        if snap.cursor == START:
            try:
                entry = self._graph.resolve_next(START, state)
            except Exception as e:
                return self._fail(snap, START, e)
            snap.cursor = entry
            snap.status = RunStatus.COMPLETED if entry == END else RunStatus.RUNNING
            self._write(snap, expected_version=snap.version)

        steps = 0
        while snap.cursor != END:
            if steps >= self._config.max_steps:
                return self._fail(snap, snap.cursor, StepLimitError(snap.run_id, self._config.max_steps))
            steps += 1

            step = snap.cursor
            resumed = snap.resuming
            advance: Optional[_Advance] = None
            payload: Any = None
            try:
                node = self._graph.get_node(step)
                outcome = self._execute_step(snap.run_id, node, state, resumed, snap.resume_value)
                if isinstance(outcome, Suspend):
                    next_state = schema.apply(state, outcome.values)
                    payload = jsonable(outcome.payload)
                else:
                    advance = self._advance(snap.run_id, step, state, outcome)
                    next_state = advance.state
                # An unpersistable value fails the run here, before anything is written.
                persisted = schema.dump(next_state)
                next_state = schema.restore(persisted)
            except Exception as e:
                return self._fail(snap, step, e, resumed=resumed)

            if advance is None:
                return self._suspend(snap, step, persisted, payload, resumed=resumed)

            state = next_state
            snap.state = persisted
            snap.cursor = advance.next_cursor
            snap.step_count += 1
            snap.resuming = False
            snap.resume_value = None
            snap.status = RunStatus.COMPLETED if advance.next_cursor == END else RunStatus.RUNNING
            self._write(snap, expected_version=snap.version)
            self._record(
                StepRecord(
                    run_id=snap.run_id,
                    step=step,
                    status=StepStatus.COMPLETED,
                    outcome=advance.outcome,
                    next_cursor=advance.next_cursor,
                    version=snap.version,
                    resumed=resumed,
                    branches=advance.branches,
                )
            )
            logger.debug("step completed", run_id=snap.run_id, step=step, next=advance.next_cursor)

        logger.info("run completed", run_id=snap.run_id, steps=snap.step_count)
        return self._result(snap)

    def _execute_step(
        self,
        run_id: str,
        node: Node,
        state: State,
        resuming: bool = False,
        resume_value: Any = None,
    ) -> StepOutcome:
        ctx = StepContext(run_id=run_id, step=node.name, resuming=resuming, resume_value=resume_value)
        # Each execution gets its own deep copy: in-place mutation by a step cannot leak
        # into the persisted state or into sibling branches.
        view = State(state.to_dict())
        with step_context(ctx):
            try:
                raw = node.fn(view)
            except SuspendSignal as sig:
                return Suspend(payload=sig.payload)

        if raw is None:
            return Update()
        if isinstance(raw, Suspend):
            if ctx.suspend_calls > 0:
                raise MultipleSuspendError(node.name)
            return raw
        if isinstance(raw, (Update, Redirect)):
            return raw
        if isinstance(raw, Mapping):
            return Update(values=dict(raw))
        raise InvalidOutcomeError(node.name, raw)

    def _advance(self, run_id: str, step: str, state: State, outcome: StepOutcome) -> _Advance:
        schema = self._graph.schema
        if isinstance(outcome, Redirect):
            self._graph.check_redirect(step, outcome.goto)
            return _Advance(state=schema.apply(state, outcome.values), next_cursor=outcome.goto, outcome="redirect")

        merged = schema.apply(state, outcome.values)
        edge = self._graph.get_edge(step)
        if edge is not None and edge.kind == EdgeKind.PARALLEL and edge.join is not None:
            merged = self._run_branches(run_id, step, edge.branches, merged)
            return _Advance(state=merged, next_cursor=edge.join, outcome="parallel", branches=list(edge.branches))
        return _Advance(state=merged, next_cursor=self._graph.resolve_next(step, merged), outcome="update")

    def _run_branches(self, run_id: str, source: str, branches: Tuple[str, ...], state: State) -> State:
        """Run fan-out branches against the same input state; apply updates in declaration order."""
        updates: List[Mapping[str, Any]] = []
        for branch in branches:
            outcome = self._execute_step(run_id, self._graph.get_node(branch), state)
            if not isinstance(outcome, Update):
                raise RoutingError(
                    f"parallel branch '{branch}' of '{source}' returned {type(outcome).__name__}; "
                    "branches may only return plain updates"
                )
            updates.append(outcome.values)
        merged = state
        for values in updates:
            merged = self._graph.schema.apply(merged, values)
        return merged

    # ---------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------

    def _suspend(
        self, snap: RunSnapshot, step: str, state: Dict[str, Any], payload: Any, *, resumed: bool
    ) -> RunResult:
        snap.state = state
        snap.status = RunStatus.SUSPENDED
        snap.suspend_payload = payload
        snap.suspended_step = step
        snap.resuming = False
        snap.resume_value = None
        self._write(snap, expected_version=snap.version)
        self._record(
            StepRecord(
                run_id=snap.run_id,
                step=step,
                status=StepStatus.SUSPENDED,
                outcome="suspend",
                next_cursor=step,
                version=snap.version,
                resumed=resumed,
            )
        )
        logger.info("run suspended", run_id=snap.run_id, step=step)
        return self._result(snap)

    def _fail(self, snap: RunSnapshot, step: str, error: BaseException, *, resumed: bool = False) -> RunResult:
        snap.status = RunStatus.FAILED
        snap.error = error_record(error)
        self._write(snap, expected_version=snap.version)
        self._record(
            StepRecord(
                run_id=snap.run_id,
                step=step,
                status=StepStatus.FAILED,
                next_cursor=snap.cursor,
                version=snap.version,
                resumed=resumed,
                error=snap.error,
            )
        )
        logger.error("run failed", run_id=snap.run_id, step=step, error=snap.error["message"], type=snap.error["type"])
        return self._result(snap, error=error)

    def _write(self, snap: RunSnapshot, *, expected_version: int) -> None:
        snap.version = expected_version + 1
        snap.updated_at = utc_now_iso()
        self._store.save(snap, expected_version=expected_version)

    def _record(self, record: StepRecord) -> None:
        if self._config.record_ledger:
            self._ledger.append(record)

    @staticmethod
    def _result(snap: RunSnapshot, *, error: Optional[BaseException] = None) -> RunResult:
        return RunResult(
            run_id=snap.run_id,
            status=snap.status,
            state=snap.copy().state,
            cursor=snap.cursor,
            version=snap.version,
            payload=snap.suspend_payload if snap.status == RunStatus.SUSPENDED else None,
            error=error,
        )
