"""Process-wide logging setup for usagewatch.

:func:`configure_logging` is called once by ``__main__`` before anything
else runs.  Modules log through their own module-level logger::

    logger = logging.getLogger(__name__)

Every record carries a ``cycle_id`` attribute: the identifier of the refresh
cycle that emitted it, or ``"-"`` outside a cycle.  Structured fields are
passed through ``extra={"event": ...}`` and end up in the ``extra`` object
of JSON output.

``LOG_LEVEL`` and ``LOG_FORMAT`` in the environment are used when the caller
passes no explicit value.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Final

__all__ = ["configure_logging", "JsonFormatter", "CYCLE_ID_CTX", "CycleContextFilter"]

#: Identifier of the refresh cycle currently running in this context.
CYCLE_ID_CTX: ContextVar[str] = ContextVar("cycle_id", default="-")

LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS: Final[tuple[str, ...]] = ("text", "json")

_TEXT_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s [%(cycle_id)s] %(name)s: %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# Chatty below WARNING; raised unless DEBUG is requested.
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "asyncio", "aiosqlite")

# Attributes every LogRecord has; anything else was supplied via ``extra``.
_STANDARD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName"}


class CycleContextFilter(logging.Filter):
    """Stamp ``record.cycle_id`` from :data:`CYCLE_ID_CTX`.

    Attached to the handler so records from third-party loggers get it too.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.cycle_id = CYCLE_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: ``ts`` (UTC, millisecond precision), ``level``, ``logger``,
    ``message`` and ``extra``; plus ``exc_info``/``stack_info`` when set.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "extra": {
                key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str)


def _resolve(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    resolved = value or os.environ.get(env_var, default)
    resolved = resolved.upper() if allowed is LEVELS else resolved.lower()
    if resolved not in allowed:
        raise ValueError(f"Unknown {env_var} {resolved!r}. Must be one of: {', '.join(allowed)}")
    return resolved


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: One of :data:`LEVELS`; defaults to ``$LOG_LEVEL`` or INFO.
        fmt: ``"text"`` or ``"json"``; defaults to ``$LOG_FORMAT`` or text.
        force: Replace existing root handlers.  Without it, an already
            configured root logger (pytest's, for instance) only gets its
            level changed.

    Raises:
        ValueError: On an unknown level or format.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", FORMATS)

    root = logging.getLogger()
    if root.handlers and not force:
        root.setLevel(resolved_level)
        return

    quiet_level = "DEBUG" if resolved_level == "DEBUG" else "WARNING"
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"cycle": {"()": CycleContextFilter}},
            "formatters": {
                "text": {"format": _TEXT_FORMAT, "datefmt": _DATE_FORMAT},
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "level": resolved_level,
                    "filters": ["cycle"],
                    "formatter": resolved_fmt,
                }
            },
            "loggers": {name: {"level": quiet_level} for name in _QUIET_LOGGERS},
            "root": {"level": resolved_level, "handlers": ["stderr"]},
        }
    )
