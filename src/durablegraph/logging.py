"""durablegraph.logging

Structured logging facade over the stdlib `logging` module.

Call sites pass context as keyword fields:

    logger = get_logger(__name__)
    logger.info("step completed", run_id=run_id, step="triage")

Fields are appended to the message as `key=value` pairs and also exposed on the
LogRecord as `record.fields` for handlers that emit JSON. The library never installs
handlers; that is the host's job.
"""

from __future__ import annotations

import logging
from typing import Any, Dict


def _render(fields: Dict[str, Any]) -> str:
    return " ".join(f"{k}={v!r}" if isinstance(v, str) else f"{k}={v}" for k, v in fields.items())


class StructuredLogger:
    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def _log(self, level: int, msg: str, fields: Dict[str, Any], exc_info: Any = None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        text = f"{msg} {_render(fields)}" if fields else msg
        self._logger.log(level, text, exc_info=exc_info, extra={"fields": dict(fields)}, stacklevel=3)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, fields)

    def warning(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, fields)

    def exception(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, fields, exc_info=True)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name))
