"""durablegraph.core.suspend

The `suspend()` primitive.

A step that needs external input calls `value = suspend(payload)`:
- first execution: `suspend` unwinds back to the executor, which persists the run as
  SUSPENDED with the cursor still on this step and surfaces `payload`;
- execution after `Runtime.resume(run_id, value)`: the step runs again from the top
  and `suspend` returns `value`.

Everything the step does before calling `suspend` therefore runs twice and must be
safe to repeat. A step may call `suspend` at most once per execution.

The executor publishes a `StepContext` in a context variable for the duration of a
step call, so steps keep the plain `(state) -> outcome` signature. Steps that return a
`Suspend(...)` outcome instead of calling `suspend()` read the value on re-entry from
`current_step().resume_value`.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from .errors import MultipleSuspendError


class SuspendSignal(BaseException):
    """Raised by `suspend()` to unwind a step. Never escapes the executor.

    Derives from BaseException so that broad `except Exception` blocks inside step
    code do not swallow it.
    """

    def __init__(self, payload: Any):
        super().__init__("step suspended")
        self.payload = payload


@dataclass
class StepContext:
    run_id: str
    step: str
    resuming: bool = False
    resume_value: Any = None
    suspend_calls: int = 0


_current: contextvars.ContextVar[Optional[StepContext]] = contextvars.ContextVar(
    "durablegraph_step_context", default=None
)


def current_step() -> Optional[StepContext]:
    """Context of the step currently executing on this thread (None outside steps)."""
    return _current.get()


@contextmanager
def step_context(ctx: StepContext) -> Iterator[StepContext]:
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def suspend(payload: Any = None) -> Any:
    """Pause the run and surface `payload`; returns the resume value on re-entry."""
    ctx = _current.get()
    if ctx is None:
        raise RuntimeError("suspend() can only be called from inside a running step")
    ctx.suspend_calls += 1
    if ctx.suspend_calls > 1:
        raise MultipleSuspendError(ctx.step)
    if ctx.resuming:
        return ctx.resume_value
    raise SuspendSignal(payload)
