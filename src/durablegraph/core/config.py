"""durablegraph.core.config

Runtime configuration.

`RuntimeConfig` is passed to `Runtime(...)`. Defaults can be overridden from the
environment with `RuntimeConfig.from_env()`:

- `DURABLEGRAPH_MAX_STEPS`: step budget per start()/resume()/recover() call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

DEFAULT_MAX_STEPS = 100

ENV_MAX_STEPS = "DURABLEGRAPH_MAX_STEPS"


def _int_from_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = str(env.get(key, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class RuntimeConfig:
    """Configuration for the executor.

    Attributes:
        max_steps: Maximum number of step iterations a single start()/resume()/recover()
            call may execute before the run fails with `StepLimitError` (guards against
            graphs that cycle forever). A parallel fan-out counts as one iteration.
        record_ledger: Append a StepRecord to the ledger store for every step execution.

    Example:
        >>> RuntimeConfig(max_steps=25).max_steps
        25
    """

    max_steps: int = DEFAULT_MAX_STEPS
    record_ledger: bool = True

    def __post_init__(self) -> None:
        if int(self.max_steps) < 1:
            raise ValueError("max_steps must be >= 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        source = os.environ if env is None else env
        return cls(max_steps=_int_from_env(source, ENV_MAX_STEPS, DEFAULT_MAX_STEPS))

    def with_max_steps(self, max_steps: int) -> "RuntimeConfig":
        return replace(self, max_steps=max_steps)
