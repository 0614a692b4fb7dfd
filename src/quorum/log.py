"""Structured logging for quorum, on top of stdlib ``logging``.

Provides a compact ANSI text formatter, a JSON formatter, ``quorum.``
namespace management and ``LogContext`` for binding key-value pairs (job
id, model) to every record emitted inside a scope.

Usage::

    from quorum.log import LogContext, configure_logging, get_logger

    log = get_logger("research")       # -> quorum.research
    configure_logging(level="INFO")    # idempotent
    with LogContext(job_id="resp_123"):
        log.info("polling")
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_PREFIX = "quorum"

_log_context: ContextVar[dict[str, Any] | None] = ContextVar("_quorum_log_context", default=None)

# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_RESET = "\033[0m"
_DIM = "\033[2m"

# level -> (one-letter tag, colour)
_LEVEL_STYLE: dict[int, tuple[str, str]] = {
    logging.DEBUG: ("D", "\033[2m"),
    logging.INFO: ("I", "\033[36m"),
    logging.WARNING: ("W", "\033[33m"),
    logging.ERROR: ("E", "\033[31m"),
    logging.CRITICAL: ("C", "\033[1;31m"),
}


def _bound_fields() -> dict[str, Any]:
    return dict(_log_context.get() or {})


class TextFormatter(logging.Formatter):
    """Single-line coloured formatter: ``12:00:01 I research job_id=x ▸ msg``."""

    def format(self, record: logging.LogRecord) -> str:
        tag, color = _LEVEL_STYLE.get(record.levelno, ("?", ""))
        name = record.name.removeprefix(f"{_PREFIX}.")
        fields = _bound_fields()
        bound = "".join(f" {k}={v}" for k, v in fields.items())
        line = (
            f"{_DIM}{self.formatTime(record, '%H:%M:%S')}{_RESET} "
            f"{color}{tag} {name}{_RESET}{bound} ▸ {record.getMessage()}"
        )
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line += f"\n{color}{record.exc_text}{_RESET}"
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for machine consumption."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = _bound_fields()
        if fields:
            entry["context"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Return a logger in the ``quorum.`` namespace, prefixing *name* if needed."""
    if name != _PREFIX and not name.startswith(f"{_PREFIX}."):
        name = f"{_PREFIX}.{name}"
    return logging.getLogger(name)


_configure_lock = threading.Lock()
_configured = False


def configure_logging(level: str | int = "WARNING", fmt: str = "text", *, force: bool = False) -> None:
    """Attach a stderr handler to the ``quorum`` root logger.

    A second call is a no-op unless *force* is set.

    Args:
        level: Level name or number.
        fmt: ``"text"`` or ``"json"``.
        force: Replace an existing handler.
    """
    global _configured

    with _configure_lock:
        if _configured and not force:
            return
        root = logging.getLogger(_PREFIX)
        root.handlers.clear()
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter() if fmt == "json" else TextFormatter())
        root.addHandler(handler)
        if isinstance(level, str):
            level = getattr(logging, level.upper(), logging.WARNING)
        root.setLevel(level)
        _configured = True


def reset_logging() -> None:
    """Drop handlers and restore the default level (tests only)."""
    global _configured
    with _configure_lock:
        _configured = False
        root = logging.getLogger(_PREFIX)
        root.handlers.clear()
        root.setLevel(logging.WARNING)


def configure_from_env(environ: Mapping[str, str] | None = None) -> None:
    """Apply ``QUORUM_DEBUG`` / ``QUORUM_LOG_LEVEL``.

    ``QUORUM_DEBUG=1`` forces DEBUG. ``QUORUM_LOG_LEVEL`` accepts DEBUG,
    INFO, WARNING or ERROR; anything else means WARNING. With neither
    variable set the ``quorum`` logger is left exactly as the host
    application configured it.
    """
    env = os.environ if environ is None else environ
    debug = env.get("QUORUM_DEBUG", "") == "1"
    if not debug and "QUORUM_LOG_LEVEL" not in env:
        return
    level = env.get("QUORUM_LOG_LEVEL", "WARNING").upper()
    if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
        level = "WARNING"
    if debug:
        level = "DEBUG"
    logging.getLogger(_PREFIX).setLevel(level)
    configure_logging(level)


configure_from_env()


class LogContext:
    """Bind key-value pairs to every record logged inside the ``with`` block.

    Backed by ``contextvars``, so concurrent asyncio tasks keep separate
    bindings::

        with LogContext(job_id="resp_1", model="o3-deep-research"):
            log.info("stream opened")
    """

    def __init__(self, **bindings: Any) -> None:
        self._bindings = bindings
        self._token: Any = None

    def __enter__(self) -> LogContext:
        merged = _bound_fields()
        merged.update(self._bindings)
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, *_: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    def bind(self, **bindings: Any) -> None:
        """Add *bindings* to the open scope, e.g. a job id learned mid-request.

        Call from the task that entered the block; they are dropped on exit.
        """
        self._bindings.update(bindings)
        if self._token is not None:
            merged = _bound_fields()
            merged.update(bindings)
            _log_context.set(merged)
