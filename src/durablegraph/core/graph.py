"""durablegraph.core.graph

Graph definition: named steps, a START edge, static / conditional / parallel edges
and per-step redirect allow-lists.

`GraphBuilder` is mutable and collects declarations; `build()` validates everything
in one pass (reporting every violation) and returns an immutable `Graph` that can be
shared by any number of concurrently executing runs.

Example:
    builder = GraphBuilder(schema, name="counter")
    builder.add_node("check_x", check_x)
    builder.add_node("increment", increment)
    builder.add_node("done_node", done_node)
    builder.add_edge(START, "check_x")
    builder.add_conditional_edges("check_x", is_even, ["increment", "done_node"])
    builder.add_edge("increment", "check_x")
    builder.add_edge("done_node", END)
    graph = builder.build()
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..logging import get_logger
from .errors import GraphValidationError, InvalidRedirectError, RoutingError
from .models import END, START
from .state import State, StateSchema

logger = get_logger(__name__)

StepFn = Callable[[State], Any]
RouterFn = Callable[[State], str]


class EdgeKind(str, Enum):
    STATIC = "static"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class Node:
    name: str
    fn: StepFn
    ends: Optional[FrozenSet[str]] = None  # None = any existing step may be a redirect target


@dataclass(frozen=True)
class Edge:
    source: str
    kind: EdgeKind
    target: Optional[str] = None
    router: Optional[RouterFn] = None
    path_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    branches: Tuple[str, ...] = ()
    join: Optional[str] = None

    def possible_targets(self) -> Tuple[str, ...]:
        if self.kind == EdgeKind.STATIC:
            return (self.target,) if self.target else ()
        if self.kind == EdgeKind.CONDITIONAL:
            return tuple(dict.fromkeys(self.path_map.values()))
        return tuple(self.branches) + ((self.join,) if self.join else ())


class Graph:
    """Immutable, validated graph. Build it with `GraphBuilder.build()`."""

    def __init__(self, *, name: str, schema: StateSchema, nodes: Dict[str, Node], edges: Dict[str, Edge]):
        self._name = name
        self._schema = schema
        self._nodes: Mapping[str, Node] = MappingProxyType(dict(nodes))
        self._edges: Mapping[str, Edge] = MappingProxyType(dict(edges))

    @property
    def name(self) -> str:
        return self._name

    @property
    def schema(self) -> StateSchema:
        return self._schema

    @property
    def nodes(self) -> Mapping[str, Node]:
        return self._nodes

    @property
    def edges(self) -> Mapping[str, Edge]:
        return self._edges

    def get_node(self, name: str) -> Node:
        try:
            return self._nodes[name]
        except KeyError:
            raise RoutingError(f"Unknown step '{name}' in graph '{self._name}'") from None

    def get_edge(self, source: str) -> Optional[Edge]:
        return self._edges.get(source)

    def has_step(self, name: str) -> bool:
        return name == END or name in self._nodes

    def resolve_next(self, source: str, state: State) -> str:
        """Next cursor for a static or conditional edge (parallel edges are executor-driven)."""
        edge = self._edges.get(source)
        if edge is None:
            raise RoutingError(f"Step '{source}' has no outgoing edge; it must redirect explicitly")
        if edge.kind == EdgeKind.STATIC and edge.target is not None:
            return edge.target
        if edge.kind == EdgeKind.CONDITIONAL and edge.router is not None:
            label = edge.router(state)
            try:
                return edge.path_map[label]
            except (KeyError, TypeError):
                raise RoutingError(
                    f"Router for '{source}' returned {label!r}; declared outcomes: {sorted(edge.path_map)}"
                ) from None
        raise RoutingError(f"Step '{source}' has no single successor ({edge.kind.value} edge)")

    def check_redirect(self, step: str, target: str) -> None:
        if not self.has_step(target):
            raise InvalidRedirectError(step, target, "no such step")
        node = self._nodes.get(step)
        if node is not None and node.ends is not None and target not in node.ends:
            raise InvalidRedirectError(step, target, f"allowed targets are {sorted(node.ends)}")


class GraphBuilder:
    """Collects nodes and edges; `build()` validates and freezes them."""

    def __init__(self, schema: StateSchema, *, name: str = "graph"):
        self._schema = schema
        self._name = str(name)
        self._nodes: Dict[str, Node] = {}
        self._static: Dict[str, List[str]] = {}
        self._conditional: Dict[str, List[Edge]] = {}
        self._parallel: Dict[str, List[Edge]] = {}
        self._errors: List[str] = []

    def add_node(self, name: str, fn: StepFn, *, ends: Optional[Iterable[str]] = None) -> "GraphBuilder":
        if name in (START, END):
            self._errors.append(f"'{name}' is reserved and cannot be used as a step name")
            return self
        if name in self._nodes:
            self._errors.append(f"duplicate step name '{name}'")
            return self
        if not callable(fn):
            self._errors.append(f"step '{name}' is not callable")
            return self
        allowed = frozenset(ends) if ends is not None else None
        if allowed is not None and not allowed:
            self._errors.append(f"step '{name}' declares an empty redirect allow-list; omit ends to allow any target")
            allowed = None
        self._nodes[name] = Node(name=name, fn=fn, ends=allowed)
        return self

    def add_edge(self, source: str, target: str) -> "GraphBuilder":
        self._static.setdefault(source, []).append(target)
        return self

    def set_entry_point(self, name: str) -> "GraphBuilder":
        return self.add_edge(START, name)

    def add_conditional_edges(
        self,
        source: str,
        router: RouterFn,
        path_map: Union[Mapping[str, str], Sequence[str]],
    ) -> "GraphBuilder":
        if isinstance(path_map, Mapping):
            mapping = {str(k): str(v) for k, v in path_map.items()}
        else:
            mapping = {str(v): str(v) for v in path_map}
        edge = Edge(
            source=source,
            kind=EdgeKind.CONDITIONAL,
            router=router,
            path_map=MappingProxyType(mapping),
        )
        self._conditional.setdefault(source, []).append(edge)
        return self

    def add_parallel_edges(self, source: str, branches: Sequence[str], join: str) -> "GraphBuilder":
        edge = Edge(source=source, kind=EdgeKind.PARALLEL, branches=tuple(branches), join=join)
        self._parallel.setdefault(source, []).append(edge)
        return self

    # ------------------------------------------------------------------

    def build(self) -> Graph:
        errors: List[str] = list(self._errors)
        edges: Dict[str, Edge] = {}
        start_declared = START in self._static or START in self._conditional or START in self._parallel

        sources = set(self._static) | set(self._conditional) | set(self._parallel)
        for source in sorted(sources):
            if source == END:
                errors.append("END cannot be the source of an edge")
                continue
            if source != START and source not in self._nodes:
                errors.append(f"edge source '{source}' is not a declared step")
                continue
            statics = self._static.get(source, [])
            conditionals = self._conditional.get(source, [])
            parallels = self._parallel.get(source, [])
            kinds = (1 if statics else 0) + len(conditionals) + len(parallels)
            if kinds > 1:
                errors.append(f"step '{source}' declares more than one outgoing edge")
                continue
            if conditionals:
                edges[source] = conditionals[0]
            elif parallels:
                if source == START:
                    errors.append("START must have exactly one outgoing edge")
                    continue
                edges[source] = parallels[0]
            elif len(statics) == 1:
                edges[source] = Edge(source=source, kind=EdgeKind.STATIC, target=statics[0])
            elif source == START:
                errors.append("START must have exactly one outgoing edge")
            else:
                fan_out = self._infer_fan_out(source, statics, errors)
                if fan_out is not None:
                    edges[source] = fan_out

        if not start_declared:
            errors.append("missing START edge (use add_edge(START, ...) or set_entry_point())")

        for source, edge in edges.items():
            errors.extend(self._check_edge(edge, edges))

        for node in self._nodes.values():
            if node.ends is not None:
                for target in sorted(node.ends):
                    if target != END and target not in self._nodes:
                        errors.append(f"redirect target '{target}' of step '{node.name}' does not exist")
            if node.name not in sources and not node.ends and node.name not in self._branch_steps(edges):
                errors.append(f"step '{node.name}' has no outgoing edge and no redirect targets")

        if errors:
            raise GraphValidationError(errors)

        graph = Graph(name=self._name, schema=self._schema, nodes=self._nodes, edges=edges)
        unreachable = sorted(set(self._nodes) - _reachable(graph))
        if unreachable:
            logger.warning("graph has unreachable steps", graph=self._name, steps=unreachable)
        return graph

    def _infer_fan_out(self, source: str, branches: List[str], errors: List[str]) -> Optional[Edge]:
        """Several static edges from one step: parallel branches joining on their common successor."""
        joins = set()
        for branch in branches:
            targets = self._static.get(branch, [])
            if len(targets) != 1 or branch in self._conditional or branch in self._parallel:
                errors.append(
                    f"parallel branch '{branch}' of '{source}' must have exactly one static edge to a join step"
                )
                return None
            joins.add(targets[0])
        if len(joins) != 1:
            errors.append(f"parallel branches of '{source}' do not converge on a single join step: {sorted(joins)}")
            return None
        return Edge(source=source, kind=EdgeKind.PARALLEL, branches=tuple(branches), join=joins.pop())

    def _check_edge(self, edge: Edge, edges: Mapping[str, Edge]) -> List[str]:
        errors: List[str] = []

        def _exists(target: Optional[str], what: str) -> None:
            if target == START:
                errors.append(f"{what} of '{edge.source}' cannot be START")
            elif target is None or (target != END and target not in self._nodes):
                errors.append(f"{what} '{target}' of '{edge.source}' does not exist")

        if edge.kind == EdgeKind.STATIC:
            _exists(edge.target, "edge target")
        elif edge.kind == EdgeKind.CONDITIONAL:
            if not edge.path_map:
                errors.append(f"conditional edge of '{edge.source}' declares no outcomes")
            for label, target in edge.path_map.items():
                _exists(target, f"conditional target for outcome '{label}'")
        else:
            if not edge.branches:
                errors.append(f"parallel edge of '{edge.source}' declares no branches")
            for branch in edge.branches:
                if branch == END:
                    errors.append(f"parallel branch of '{edge.source}' cannot be END")
                    continue
                _exists(branch, "parallel branch")
                own = edges.get(branch)
                if own is not None and not (own.kind == EdgeKind.STATIC and own.target == edge.join):
                    errors.append(f"parallel branch '{branch}' may only have a static edge to join '{edge.join}'")
            _exists(edge.join, "parallel join")
        return errors

    @staticmethod
    def _branch_steps(edges: Mapping[str, Edge]) -> set:
        out = set()
        for edge in edges.values():
            if edge.kind == EdgeKind.PARALLEL:
                out.update(edge.branches)
        return out


def _reachable(graph: Graph) -> set:
    seen: set = set()
    queue = deque([START])
    while queue:
        cur = queue.popleft()
        edge = graph.get_edge(cur)
        nexts: List[str] = list(edge.possible_targets()) if edge is not None else []
        node = graph.nodes.get(cur)
        if node is not None and node.ends:
            nexts.extend(node.ends)
        for nxt in nexts:
            if nxt in graph.nodes and nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return seen
