from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from pydantic import BaseModel

from durablegraph import (
    END,
    START,
    Field,
    FieldValidationError,
    GraphBuilder,
    JsonFileCheckpointStore,
    JsonlLedgerStore,
    RunStatus,
    Runtime,
    SqliteCheckpointStore,
    SqliteDatabase,
    SqliteLedgerStore,
    StateSchema,
    Suspend,
    suspend,
)


class Email(BaseModel):
    subject: str
    sender: str


def _json(tmp_path: Path):
    return JsonFileCheckpointStore(tmp_path / "runs"), JsonlLedgerStore(tmp_path / "runs")


def _sqlite(tmp_path: Path):
    db = SqliteDatabase(tmp_path / "durablegraph.sqlite3")
    return SqliteCheckpointStore(db), SqliteLedgerStore(db)


BACKENDS = {"json": _json, "sqlite": _sqlite}


def _typed_graph():
    schema = StateSchema(
        {
            "email": Field(Optional[Email]),
            "received_at": Field(Optional[datetime]),
            "due_at": Field(Optional[datetime]),
            "decision": Field(str, default=""),
            "typed_after_restart": Field(bool, default=False),
        }
    )

    def read_email(state):
        return {"email": Email(subject="Charged twice", sender="a@example.com")}

    def schedule(state):
        assert isinstance(state["email"], Email)
        return {"due_at": state["received_at"] + timedelta(days=1)}

    def review(state):
        return {"decision": suspend({"subject": state["email"].subject, "due_at": state["due_at"]})}

    def finalize(state):
        return {
            "typed_after_restart": isinstance(state["email"], Email) and isinstance(state["due_at"], datetime)
        }

    b = GraphBuilder(schema, name="typed")
    b.add_node("read_email", read_email)
    b.add_node("schedule", schedule)
    b.add_node("review", review)
    b.add_node("finalize", finalize)
    b.add_edge(START, "read_email")
    b.add_edge("read_email", "schedule")
    b.add_edge("schedule", "review")
    b.add_edge("review", "finalize")
    b.add_edge("finalize", END)
    return b.build()


@pytest.mark.integration
@pytest.mark.parametrize("backend", sorted(BACKENDS))
def test_model_and_datetime_fields_survive_restart(tmp_path: Path, backend: str) -> None:
    graph = _typed_graph()
    store, ledger = BACKENDS[backend](tmp_path)
    received = datetime(2026, 1, 2, tzinfo=timezone.utc)
    res = Runtime(graph=graph, checkpoint_store=store, ledger_store=ledger).start(
        run_id="typed-1", overrides={"received_at": received}
    )
    assert res.suspended, res.error
    assert res.payload["subject"] == "Charged twice"
    assert res.payload["due_at"].startswith("2026-01-03T00:00:00")

    snap = store.load("typed-1")
    assert snap.status == RunStatus.SUSPENDED
    assert snap.state["email"] == {"subject": "Charged twice", "sender": "a@example.com"}
    assert snap.state["received_at"].startswith("2026-01-02T00:00:00")
    del store, ledger

    store2, ledger2 = BACKENDS[backend](tmp_path)
    rt2 = Runtime(graph=graph, checkpoint_store=store2, ledger_store=ledger2)
    done = rt2.resume(run_id="typed-1", value="approved")
    assert done.completed, done.error
    assert done.state["typed_after_restart"] is True
    assert done.state["decision"] == "approved"
    assert done.state["email"]["sender"] == "a@example.com"


def test_json_snapshot_holds_model_as_plain_object(tmp_path: Path) -> None:
    graph = _typed_graph()
    rt = Runtime(graph=graph, checkpoint_store=JsonFileCheckpointStore(tmp_path))
    rt.start(run_id="r1", overrides={"received_at": datetime(2026, 1, 2, tzinfo=timezone.utc)})

    data = json.loads((tmp_path / "run_r1.json").read_text(encoding="utf-8"))
    assert data["status"] == "suspended"
    assert data["state"]["email"] == {"subject": "Charged twice", "sender": "a@example.com"}


def _single_step_graph(fn):
    schema = StateSchema({"blob": Field(), "x": Field(int, default=0)})
    b = GraphBuilder(schema, name="single")
    b.add_node("work", fn)
    b.add_edge(START, "work")
    b.add_edge("work", END)
    return b.build()


@pytest.mark.parametrize("backend", sorted(BACKENDS))
def test_unserialisable_update_fails_the_run(tmp_path: Path, backend: str) -> None:
    store, ledger = BACKENDS[backend](tmp_path)
    rt = Runtime(
        graph=_single_step_graph(lambda state: {"x": 5, "blob": object()}),
        checkpoint_store=store,
        ledger_store=ledger,
    )

    res = rt.start(run_id="r1")
    assert res.failed
    assert isinstance(res.error, FieldValidationError)
    assert res.error.field == "blob"
    # Nothing from the failed iteration is persisted.
    assert res.state == {"blob": None, "x": 0}

    snap = store.load("r1")
    assert snap.status == RunStatus.FAILED
    assert snap.cursor == "work"
    assert snap.error["type"] == "FieldValidationError"
    assert [r["status"] for r in rt.get_ledger("r1")] == ["failed"]


def test_unserialisable_suspend_payload_fails_the_run(tmp_path: Path) -> None:
    store, ledger = _json(tmp_path)
    rt = Runtime(
        graph=_single_step_graph(lambda state: Suspend(payload={"handle": object()})),
        checkpoint_store=store,
        ledger_store=ledger,
    )

    res = rt.start(run_id="r1")
    assert res.failed
    assert isinstance(res.error, ValueError)
    assert store.load("r1").status == RunStatus.FAILED


def test_unserialisable_resume_value_is_rejected(tmp_path: Path) -> None:
    store, ledger = _sqlite(tmp_path)
    rt = Runtime(
        graph=_single_step_graph(lambda state: {"blob": suspend("need input")}),
        checkpoint_store=store,
        ledger_store=ledger,
    )
    assert rt.start(run_id="r1").suspended
    version = store.load("r1").version

    with pytest.raises(ValueError):
        rt.resume(run_id="r1", value=object())

    snap = store.load("r1")
    assert snap.status == RunStatus.SUSPENDED
    assert snap.version == version
    assert rt.resume(run_id="r1", value={"ok": True}).state["blob"] == {"ok": True}
