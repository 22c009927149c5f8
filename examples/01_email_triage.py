#!/usr/bin/env python3
"""
01_email_triage.py - Email triage with human review

Demonstrates:
- Typed state (a pydantic model field) with reducers (keep_if_none, replace_if_truthy)
- Parallel fan-out (knowledge-base search + bug ticket) joining on one step
- Explicit redirects with allow-lists (write_response -> human_review | send_reply)
- suspend() for human approval, persisted to JSON files
- Resuming from a *new* Runtime instance (simulated process restart)

The classifier and the drafting step are deterministic stand-ins for LLM calls.

Usage:
    python examples/01_email_triage.py "URGENT: customers are charged twice" approved
"""

import sys
import tempfile
from typing import Any, List, Optional

from pydantic import BaseModel

from durablegraph import (
    END,
    START,
    Field,
    GraphBuilder,
    JsonFileCheckpointStore,
    JsonlLedgerStore,
    Redirect,
    Runtime,
    StateSchema,
    keep_if_none,
    replace_if_truthy,
    suspend,
)


class Classification(BaseModel):
    intent: str
    urgency: str
    topic: str


schema = StateSchema(
    {
        "email_id": Field(str, default=""),
        "sender": Field(str, default=""),
        "email_content": Field(str, default=""),
        "classification": Field(Optional[Classification], reducer=keep_if_none),
        "search_results": Field(List[str], default_factory=list, reducer=replace_if_truthy),
        "ticket_id": Field(Optional[str], reducer=keep_if_none),
        "draft_response": Field(Optional[str], reducer=keep_if_none),
        "decision": Field(Optional[str], reducer=keep_if_none),
        "sent": Field(bool, default=False),
    }
)


def read_email(state):
    return {}


def classify_email(state):
    text = state["email_content"].lower()
    if "bug" in text or "charged twice" in text or "error" in text:
        intent = "bug"
    elif "invoice" in text or "refund" in text:
        intent = "billing"
    else:
        intent = "question"
    urgency = "critical" if "urgent" in text else "low"
    return {"classification": Classification(intent=intent, urgency=urgency, topic=text[:40])}


def search_documents(state):
    c = state["classification"]
    return {"search_results": [f"Runbook for {c.topic}", f"FAQ: {c.intent} issues"]}


def bug_tracking(state):
    if state["classification"].intent != "bug":
        return {}
    return {"ticket_id": f"BUG-{state['email_id']}"}


def write_response(state):
    c = state["classification"]
    context = "; ".join(state["search_results"])
    draft = f"Thanks for reaching out about {c.topic!r}. See: {context}."
    needs_review = c.urgency in ("high", "critical") or c.intent == "complex"
    return Redirect(goto="human_review" if needs_review else "send_reply", values={"draft_response": draft})


def human_review(state):
    decision = suspend(
        {
            "email_id": state["email_id"],
            "draft": state["draft_response"],
            "urgency": state["classification"].urgency,
            "instruction": "Reply 'approved' to send, anything else to drop the draft.",
        }
    )
    if decision == "approved":
        return Redirect(goto="send_reply", values={"decision": decision})
    return Redirect(goto=END, values={"decision": decision})


def send_reply(state):
    print(f"--- sending to {state['sender']}: {state['draft_response']}")
    return {"sent": True}


def build_graph():
    builder = GraphBuilder(schema, name="email_triage")
    builder.add_node("read_email", read_email)
    builder.add_node("classify_email", classify_email)
    builder.add_node("search_documents", search_documents)
    builder.add_node("bug_tracking", bug_tracking)
    builder.add_node("write_response", write_response, ends=["human_review", "send_reply"])
    builder.add_node("human_review", human_review, ends=["send_reply", END])
    builder.add_node("send_reply", send_reply)
    builder.add_edge(START, "read_email")
    builder.add_edge("read_email", "classify_email")
    builder.add_edge("classify_email", "search_documents")
    builder.add_edge("classify_email", "bug_tracking")
    builder.add_edge("search_documents", "write_response")
    builder.add_edge("bug_tracking", "write_response")
    builder.add_edge("send_reply", END)
    return builder.build()


def main(argv: List[str]) -> int:
    content = argv[1] if len(argv) > 1 else "URGENT: customers are charged twice for one subscription"
    decision: Any = argv[2] if len(argv) > 2 else "approved"

    graph = build_graph()
    with tempfile.TemporaryDirectory() as base:
        runtime = Runtime(
            graph=graph,
            checkpoint_store=JsonFileCheckpointStore(base),
            ledger_store=JsonlLedgerStore(base),
        )
        result = runtime.start(
            run_id="email-123",
            overrides={"email_id": "123", "sender": "customer@example.com", "email_content": content},
        )
        print(f"status: {result.status.value}")
        if result.suspended:
            print(f"waiting for review: {result.payload}")

            # A fresh Runtime over the same directory stands in for a restarted process.
            restarted = Runtime(
                graph=graph,
                checkpoint_store=JsonFileCheckpointStore(base),
                ledger_store=JsonlLedgerStore(base),
            )
            result = restarted.resume(run_id="email-123", value=decision)
            print(f"status after review: {result.status.value}")

        if result.failed:
            print(f"failed: {result.error}")
            return 1
        print(f"final state: {result.state}")
        print("steps:", [r["step"] for r in runtime.get_ledger("email-123")])
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
