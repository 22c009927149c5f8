from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

from durablegraph import InMemoryCheckpointStore, Runtime

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "01_email_triage.py"


@pytest.fixture(scope="module")
def triage():
    spec = importlib.util.spec_from_file_location("email_triage_example", EXAMPLE)
    module = importlib.util.module_from_spec(spec)
    assert spec.loader is not None
    spec.loader.exec_module(module)
    return module


def test_urgent_bug_report_waits_for_review(triage) -> None:
    rt = Runtime(graph=triage.build_graph(), checkpoint_store=InMemoryCheckpointStore())
    res = rt.start(
        run_id="email-1",
        overrides={"email_id": "1", "sender": "a@example.com", "email_content": "URGENT: login error"},
    )
    assert res.suspended
    assert res.cursor == "human_review"
    assert res.payload["urgency"] == "critical"
    assert res.state["ticket_id"] == "BUG-1"
    assert res.state["search_results"]
    assert res.state["classification"] == {"intent": "bug", "urgency": "critical", "topic": "urgent: login error"}

    done = rt.resume(run_id="email-1", value="approved")
    assert done.completed
    assert done.state["sent"] is True
    assert done.state["decision"] == "approved"


def test_rejected_draft_is_not_sent(triage) -> None:
    rt = Runtime(graph=triage.build_graph(), checkpoint_store=InMemoryCheckpointStore())
    rt.start(run_id="email-2", overrides={"email_id": "2", "email_content": "urgent refund please"})
    done = rt.resume(run_id="email-2", value="rejected")
    assert done.completed
    assert done.state["sent"] is False
    assert done.state["ticket_id"] is None


def test_low_urgency_question_is_answered_directly(triage) -> None:
    rt = Runtime(graph=triage.build_graph(), checkpoint_store=InMemoryCheckpointStore())
    res = rt.start(run_id="email-3", overrides={"email_id": "3", "email_content": "How do I export data?"})
    assert res.completed
    assert res.state["sent"] is True
    assert [r["step"] for r in rt.get_ledger("email-3")] == [
        "read_email",
        "classify_email",
        "write_response",
        "send_reply",
    ]


def test_main_runs_end_to_end(triage, capsys: pytest.CaptureFixture[str]) -> None:
    assert triage.main(["01_email_triage.py", "URGENT: charged twice", "approved"]) == 0
    out = capsys.readouterr().out
    assert "status: suspended" in out
    assert "status after review: completed" in out
