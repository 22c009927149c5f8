from __future__ import annotations

import threading
from pathlib import Path
from typing import List

import pytest

from durablegraph import (
    END,
    START,
    DuplicateRunError,
    Field,
    GraphBuilder,
    InMemoryCheckpointStore,
    JsonFileCheckpointStore,
    NotSuspendedError,
    RunResult,
    Runtime,
    SqliteCheckpointStore,
    SqliteDatabase,
    SqliteLedgerStore,
    StateSchema,
    suspend,
)


def _approval_graph():
    schema = StateSchema({"decision": Field(str, default=""), "applied": Field(int, default=0)})

    def review(state):
        return {"decision": suspend("approve?")}

    def apply_decision(state):
        return {"applied": state["applied"] + 1}

    b = GraphBuilder(schema, name="approval")
    b.add_node("review", review)
    b.add_node("apply_decision", apply_decision)
    b.add_edge(START, "review")
    b.add_edge("review", "apply_decision")
    b.add_edge("apply_decision", END)
    return b.build()


def _make_runtime(backend: str, tmp_path: Path) -> Runtime:
    graph = _approval_graph()
    if backend == "memory":
        return Runtime(graph=graph, checkpoint_store=InMemoryCheckpointStore())
    if backend == "json":
        return Runtime(graph=graph, checkpoint_store=JsonFileCheckpointStore(tmp_path))
    db = SqliteDatabase(tmp_path / "runs.sqlite3")
    return Runtime(graph=graph, checkpoint_store=SqliteCheckpointStore(db), ledger_store=SqliteLedgerStore(db))


@pytest.mark.integration
@pytest.mark.parametrize("backend", ["memory", "json", "sqlite"])
def test_concurrent_resume_has_exactly_one_winner(tmp_path: Path, backend: str) -> None:
    rt = _make_runtime(backend, tmp_path)
    assert rt.start(run_id="r1").suspended

    workers = 8
    barrier = threading.Barrier(workers)
    results: List[RunResult] = []
    rejected: List[BaseException] = []
    errors: List[BaseException] = []
    lock = threading.Lock()

    def _worker(i: int) -> None:
        try:
            barrier.wait(timeout=5.0)
            res = rt.resume(run_id="r1", value=f"decision-{i}")
            with lock:
                results.append(res)
        except NotSuspendedError as e:
            with lock:
                rejected.append(e)
        except BaseException as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == 1
    assert len(rejected) == workers - 1

    final = rt.get_snapshot("r1")
    assert final.status.value == "completed"
    assert final.state["applied"] == 1
    assert final.state["decision"] == results[0].state["decision"]


@pytest.mark.integration
def test_concurrent_start_with_same_run_id(tmp_path: Path) -> None:
    rt = _make_runtime("memory", tmp_path)
    workers = 6
    barrier = threading.Barrier(workers)
    outcomes: List[str] = []
    lock = threading.Lock()

    def _worker() -> None:
        barrier.wait(timeout=5.0)
        try:
            rt.start(run_id="shared")
            outcome = "started"
        except DuplicateRunError:
            outcome = "duplicate"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["duplicate"] * (workers - 1) + ["started"]


@pytest.mark.integration
def test_independent_runs_progress_in_parallel(tmp_path: Path) -> None:
    rt = _make_runtime("sqlite", tmp_path)
    run_ids = [f"run-{i}" for i in range(10)]
    errors: List[BaseException] = []

    def _worker(run_id: str) -> None:
        try:
            assert rt.start(run_id=run_id).suspended
            assert rt.resume(run_id=run_id, value=run_id).completed
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=_worker, args=(rid,)) for rid in run_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for rid in run_ids:
        assert rt.get_snapshot(rid).state == {"decision": rid, "applied": 1}
