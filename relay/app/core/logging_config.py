"""
Logging setup for the relay.

Provides:
    • One-line JSON records in production
    • Coloured console lines in development, tagged with chain/strategy
    • Scoped context (request_id, delivery_id) attached to every line
    • The observability sink used by the delivery orchestrator

Usage:
    from relay.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Transport failed", extra={"strategy": "bot_api"})

Observability sink
==================
The orchestrator does not log directly; it reports through a sink that
accepts ``(severity, message)`` pairs. ``logger_sink(logger)`` adapts a
standard logger. A custom sink may be injected (tests, metrics shims).
``emit()`` guarantees the sink never raises into the delivery path.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from relay.app.core.config import settings

# (severity, message) -> None
LogSink = Callable[[int, str], None]

# ── Context variable for request/delivery-scoped data ──
_log_context: ContextVar[Dict[str, Any]] = ContextVar(
    "log_context", default={}
)


def set_log_context(**kwargs: Any) -> None:
    """Replace the scoped log context (call from middleware)."""
    _log_context.set(kwargs)


def bind_log_context(**kwargs: Any) -> Token:
    """Merge keys into the current scoped log context.

    Returns the token that ``reset_log_context`` needs to undo the merge.
    """
    return _log_context.set({**_log_context.get(), **kwargs})


def reset_log_context(token: Token) -> None:
    """Restore the context as it was before the matching bind."""
    _log_context.reset(token)


def get_log_context() -> Dict[str, Any]:
    """Get current scoped context."""
    return _log_context.get()


# ── Shared helpers ──

def _exception_summary(record: logging.LogRecord) -> Optional[Dict[str, str]]:
    exc = record.exc_info[1] if record.exc_info else None
    if exc is None:
        return None
    return {"type": type(exc).__name__, "message": str(exc)}


def _pipeline_tags(record: logging.LogRecord) -> str:
    """``chain/strategy`` tag for records emitted from a fallback chain."""
    chain = getattr(record, "chain", None)
    strategy = getattr(record, "strategy", None)
    if chain and strategy:
        return f" <{chain}/{strategy}>"
    if chain:
        return f" <{chain}>"
    return ""


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line; pipeline extras become top-level keys."""

    EXTRA_KEYS = (
        "chain", "strategy", "attempt", "duration_ms", "delivery_id",
        "field", "status_code", "endpoint",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(get_log_context())
        entry.update(
            (key, getattr(record, key))
            for key in self.EXTRA_KEYS if hasattr(record, key)
        )

        exc = _exception_summary(record)
        if exc:
            entry["exception"] = exc
        return json.dumps(entry, default=str, ensure_ascii=False)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):
    """Coloured single-line output scoped by delivery or request id."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        scope = ctx.get("delivery_id") or ctx.get("request_id")
        line = "{color}{time} {level:<8}{reset}{scope}{tags} {name}: {msg}".format(
            color=self.LEVEL_COLORS.get(record.levelno, ""),
            time=self.formatTime(record, "%H:%M:%S"),
            level=record.levelname,
            reset=self.RESET,
            scope=f" [{str(scope)[:8]}]" if scope else "",
            tags=_pipeline_tags(record),
            name=record.name,
            msg=record.getMessage(),
        )

        exc = _exception_summary(record)
        if exc:
            line += f"\n    ↳ {exc['type']}: {exc['message']}"
        return line


# ── Setup ──

def setup_logging() -> None:
    """Install one stdout handler on the root logger (JSON in production)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    # Per-request client chatter drowns out the chain logs
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ── Observability sink ──

def logger_sink(target: logging.Logger) -> LogSink:
    """Adapt a standard logger to the ``(severity, message)`` sink shape."""

    def _sink(level: int, message: str) -> None:
        target.log(level, message)

    return _sink


_fallback_logger = logging.getLogger(__name__)


def emit(sink: LogSink, level: int, message: str) -> None:
    """
    Report through ``sink`` without ever raising into the caller.

    A broken custom sink is reported on this module's logger instead.
    """
    try:
        sink(level, message)
    except Exception:
        _fallback_logger.exception(
            "Observability sink raised; original message: %s", message
        )
