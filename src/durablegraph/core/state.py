"""durablegraph.core.state

State model: a fixed set of named fields, each with a reducer and a default.

A `StateSchema` is the per-field configuration table. `State` is the value a step
sees: a read-only mapping. Applying a partial update never mutates the input state;
it returns a new `State` sharing the untouched field values.

Reducers receive `(old, new)` and return the merged value. They are applied once per
update, in the order updates are applied by the executor.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from pydantic import TypeAdapter, ValidationError

from .errors import FieldValidationError, UnknownFieldError

Reducer = Callable[[Any, Any], Any]

_ANY = TypeAdapter(Any)


def jsonable(value: Any) -> Any:
    """JSON-safe form of `value` (models, datetimes, UUIDs... become plain JSON types).

    Raises ValueError for values pydantic cannot serialise.
    """
    return _ANY.dump_python(value, mode="json")


# ---------------------------------------------------------------------------
# Built-in reducers
# ---------------------------------------------------------------------------


def replace(old: Any, new: Any) -> Any:
    """Override: the update wins."""
    return new


def append(old: Any, new: Any) -> list:
    """List concatenation. A non-list update is appended as a single item."""
    base = list(old) if old is not None else []
    if isinstance(new, (list, tuple)):
        return base + list(new)
    return base + [new]


def keep_if_none(old: Any, new: Any) -> Any:
    """Override unless the update is None."""
    return old if new is None else new


def replace_if_truthy(old: Any, new: Any) -> Any:
    """Override unless the update is falsy (empty list, empty string, None...)."""
    return new if new else old


def merge_dict(old: Any, new: Any) -> Dict[str, Any]:
    """Shallow dict merge; keys from the update win."""
    merged = dict(old or {})
    merged.update(new or {})
    return merged


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Field:
    """Configuration for one state field.

    Attributes:
        type: Optional annotation; when set, values are validated with pydantic.
        default: Default value (deep-copied for every new run).
        default_factory: Callable producing the default; takes precedence over `default`.
        reducer: Merge function `(old, new) -> merged` (default: `replace`).
    """

    type: Any = None
    default: Any = None
    default_factory: Optional[Callable[[], Any]] = None
    reducer: Reducer = replace

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return copy.deepcopy(self.default)


@dataclass(frozen=True)
class _BoundField:
    name: str
    declared: Field
    adapter: Optional[TypeAdapter] = field(default=None, compare=False)

    def validate(self, value: Any) -> Any:
        if self.adapter is None:
            return value
        try:
            return self.adapter.validate_python(value)
        except ValidationError as e:
            raise FieldValidationError(self.name, str(e)) from e

    def dump(self, value: Any) -> Any:
        adapter = self.adapter if self.adapter is not None else _ANY
        try:
            return adapter.dump_python(value, mode="json")
        except ValueError as e:
            raise FieldValidationError(self.name, f"value is not JSON serialisable: {e}") from e


class StateSchema:
    """Fixed field set with per-field reducers and defaults.

    Example:
        >>> schema = StateSchema({
        ...     "x": Field(int, default=0),
        ...     "messages": Field(list, default_factory=list, reducer=append),
        ... })
        >>> state = schema.new_state()
        >>> schema.apply(state, {"messages": ["hi"]})["messages"]
        ['hi']
    """

    def __init__(self, fields: Mapping[str, Field]):
        bound: Dict[str, _BoundField] = {}
        for name, declared in fields.items():
            if not isinstance(name, str) or not name:
                raise ValueError(f"State field names must be non-empty strings, got {name!r}")
            if not isinstance(declared, Field):
                raise TypeError(f"State field '{name}' must be declared with Field(...)")
            adapter = TypeAdapter(declared.type) if declared.type is not None else None
            bound[name] = _BoundField(name=name, declared=declared, adapter=adapter)
            # Fail at declaration time rather than on the first run.
            bound[name].validate(declared.make_default())
        self._fields = bound

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def new_state(self) -> "State":
        values = {name: f.validate(f.declared.make_default()) for name, f in self._fields.items()}
        return State(values)

    def check_fields(self, partial: Mapping[str, Any]) -> None:
        unknown = [k for k in partial if k not in self._fields]
        if unknown:
            raise UnknownFieldError(unknown)

    def apply(self, state: "State", partial: Optional[Mapping[str, Any]]) -> "State":
        """Merge a partial update into `state` through each field's reducer."""
        if not partial:
            return state
        self.check_fields(partial)
        values = dict(state._values)
        for name, incoming in partial.items():
            f = self._fields[name]
            values[name] = f.validate(f.declared.reducer(values.get(name), incoming))
        return State(values)

    def dump(self, state: "State") -> Dict[str, Any]:
        """JSON-safe copy of `state` for persistence, serialised through each field's type."""
        return {name: f.dump(state[name]) for name, f in self._fields.items()}

    def restore(self, values: Mapping[str, Any]) -> "State":
        """Rebuild a State from persisted values (no reducers applied).

        Values are validated again, so typed fields come back as their declared types
        (a model persisted as a dict is a model again). Fields missing from `values`
        (e.g. added to the schema after the snapshot was written) get their defaults.
        """
        self.check_fields(values)
        restored: Dict[str, Any] = {}
        for name, f in self._fields.items():
            restored[name] = f.validate(values[name] if name in values else f.declared.make_default())
        return State(restored)


class State(Mapping[str, Any]):
    """Read-only view of a run's field values."""

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any]):
        self._values: Dict[str, Any] = dict(values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, State):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"State({self._values!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the values, safe to persist or hand to callers."""
        return copy.deepcopy(self._values)
