from __future__ import annotations

import logging

import pytest

from durablegraph import END, START, Field, GraphBuilder, GraphValidationError, RoutingError, StateSchema
from durablegraph.core.graph import EdgeKind


def _schema() -> StateSchema:
    return StateSchema({"x": Field(int, default=0)})


def _noop(state):
    return {}


def _errors(builder: GraphBuilder) -> list[str]:
    with pytest.raises(GraphValidationError) as exc:
        builder.build()
    return exc.value.errors


def test_minimal_graph_builds() -> None:
    b = GraphBuilder(_schema(), name="one")
    b.add_node("a", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", END)
    graph = b.build()
    assert graph.name == "one"
    assert graph.get_edge(START).target == "a"
    assert graph.has_step(END)


def test_set_entry_point_is_a_start_edge() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.set_entry_point("a")
    b.add_edge("a", END)
    assert b.build().get_edge(START).target == "a"


def test_missing_start_edge() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_edge("a", END)
    assert any("missing START edge" in e for e in _errors(b))


def test_every_violation_is_reported() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_node("a", _noop)
    b.add_node(END, _noop)
    b.add_node("lonely", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", "missing")
    b.add_edge("ghost", "a")
    errors = _errors(b)

    assert any("duplicate step name 'a'" in e for e in errors)
    assert any("reserved" in e for e in errors)
    assert any("'missing'" in e and "does not exist" in e for e in errors)
    assert any("edge source 'ghost'" in e for e in errors)
    assert any("'lonely' has no outgoing edge" in e for e in errors)
    assert len(errors) >= 5


def test_start_with_two_edges_is_rejected() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_node("b", _noop)
    b.add_edge(START, "a")
    b.add_edge(START, "b")
    b.add_edge("a", END)
    b.add_edge("b", END)
    assert any("START must have exactly one outgoing edge" in e for e in _errors(b))


def test_end_cannot_be_an_edge_source_and_start_cannot_be_a_target() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", START)
    b.add_edge(END, "a")
    errors = _errors(b)
    assert any("END cannot be the source" in e for e in errors)
    assert any("cannot be START" in e for e in errors)


def test_conditional_targets_must_exist() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_edge(START, "a")
    b.add_conditional_edges("a", lambda s: "x", {"x": "nowhere", "done": END})
    assert any("outcome 'x'" in e and "'nowhere'" in e for e in _errors(b))


def test_step_with_edge_and_conditional_edge_is_rejected() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", END)
    b.add_conditional_edges("a", lambda s: "done", {"done": END})
    assert any("more than one outgoing edge" in e for e in _errors(b))


def test_non_callable_step() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", "not callable")  # type: ignore[arg-type]
    b.add_edge(START, END)
    assert any("not callable" in e for e in _errors(b))


def test_redirect_targets_must_exist() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop, ends=["b", "nope"])
    b.add_node("b", _noop)
    b.add_edge(START, "a")
    b.add_edge("b", END)
    assert any("redirect target 'nope'" in e for e in _errors(b))


def test_empty_redirect_allow_list_is_rejected() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop, ends=[])
    b.add_edge(START, "a")
    b.add_edge("a", END)
    assert any("'a' declares an empty redirect allow-list" in e for e in _errors(b))


def test_step_with_only_redirect_targets_is_valid() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop, ends=["b", END])
    b.add_node("b", _noop)
    b.add_edge(START, "a")
    b.add_edge("b", END)
    graph = b.build()
    assert graph.get_edge("a") is None
    assert graph.nodes["a"].ends == frozenset({"b", END})


def test_multiple_static_edges_infer_parallel_fan_out() -> None:
    b = GraphBuilder(_schema())
    for name in ("split", "left", "right", "join"):
        b.add_node(name, _noop)
    b.add_edge(START, "split")
    b.add_edge("split", "left")
    b.add_edge("split", "right")
    b.add_edge("left", "join")
    b.add_edge("right", "join")
    b.add_edge("join", END)
    edge = b.build().get_edge("split")
    assert edge.kind == EdgeKind.PARALLEL
    assert edge.branches == ("left", "right")
    assert edge.join == "join"


def test_fan_out_branches_must_converge() -> None:
    b = GraphBuilder(_schema())
    for name in ("split", "left", "right", "j1", "j2"):
        b.add_node(name, _noop)
    b.add_edge(START, "split")
    b.add_edge("split", "left")
    b.add_edge("split", "right")
    b.add_edge("left", "j1")
    b.add_edge("right", "j2")
    b.add_edge("j1", END)
    b.add_edge("j2", END)
    assert any("do not converge" in e for e in _errors(b))


def test_explicit_parallel_edges_check_branch_edges() -> None:
    b = GraphBuilder(_schema())
    for name in ("split", "left", "right", "join", "other"):
        b.add_node(name, _noop)
    b.add_edge(START, "split")
    b.add_parallel_edges("split", ["left", "right"], join="join")
    b.add_edge("left", "join")
    b.add_edge("right", "other")
    b.add_edge("other", END)
    b.add_edge("join", END)
    assert any("'right' may only have a static edge to join 'join'" in e for e in _errors(b))


def test_unreachable_steps_only_warn(caplog: pytest.LogCaptureFixture) -> None:
    b = GraphBuilder(_schema(), name="warny")
    b.add_node("a", _noop)
    b.add_node("island", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", END)
    b.add_edge("island", END)
    with caplog.at_level(logging.WARNING, logger="durablegraph.core.graph"):
        graph = b.build()
    assert "island" in graph.nodes
    assert any("unreachable" in r.getMessage() and "island" in r.getMessage() for r in caplog.records)


def test_graph_tables_are_read_only() -> None:
    b = GraphBuilder(_schema())
    b.add_node("a", _noop)
    b.add_edge(START, "a")
    b.add_edge("a", END)
    graph = b.build()
    with pytest.raises(TypeError):
        graph.nodes["b"] = graph.nodes["a"]  # type: ignore[index]


def test_resolve_next_refuses_parallel_and_missing_edges() -> None:
    b = GraphBuilder(_schema())
    for name in ("split", "left", "right", "join"):
        b.add_node(name, _noop, ends=[END] if name == "join" else None)
    b.add_edge(START, "split")
    b.add_parallel_edges("split", ["left", "right"], join="join")
    b.add_edge("left", "join")
    b.add_edge("right", "join")
    graph = b.build()
    state = _schema().new_state()

    assert graph.resolve_next("left", state) == "join"
    with pytest.raises(RoutingError, match="no single successor"):
        graph.resolve_next("split", state)
    with pytest.raises(RoutingError, match="must redirect explicitly"):
        graph.resolve_next("join", state)
