# PUBLIC_INTERFACE
"""
Structured logging for the integration framework.

- One JSON line per entry: {timestamp, level, logger, message, context}.
- Request context (request_id, tenant_id) is injected by observability.ContextFilter.
- IntegrationLogger binds a context map (provider, integration, tenant) and redacts secrets.
"""
from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from .models import LogEntry
from .observability import get_structured_logger, redact

_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
_LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()  # 'json' or 'plain'

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def level_name(levelno: int) -> str:
    if levelno in _LEVEL_NAMES:
        return _LEVEL_NAMES[levelno]
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    return "info" if levelno >= logging.INFO else "debug"


class JsonFormatter(logging.Formatter):
    """Emit log entries as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        context: Dict[str, Any] = {
            "request_id": getattr(record, "request_id", "-"),
            "tenant_id": getattr(record, "tenant_id", "public"),
        }
        context.update(redact(getattr(record, "context", None) or {}))
        entry = LogEntry(
            level=level_name(record.levelno),
            message=record.getMessage(),
            context=context,
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
        ).model_dump()
        entry["timestamp"] = entry["timestamp"].isoformat()
        entry["logger"] = record.name
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, separators=(",", ":"))


def _configure_root_logger(level: str) -> logging.Logger:
    logger = logging.getLogger()
    if not logger.handlers:
        handler = logging.StreamHandler()
        if _LOG_FORMAT == "json":
            handler.setFormatter(JsonFormatter())
        else:
            fmt = "%(asctime)s | %(levelname)s | %(name)s | [%(request_id)s %(tenant_id)s] %(message)s %(context)s"
            handler.setFormatter(logging.Formatter(fmt, defaults={"request_id": "-", "tenant_id": "-", "context": {}}))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


root_logger = _configure_root_logger(_LOG_LEVEL)


# PUBLIC_INTERFACE
def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a module logger configured with the global format and level."""
    return get_structured_logger(name or __name__)


class IntegrationLogger:
    """Contextual logger bound to {service, provider, integration, tenant, ...}.

    Every call merges the bound context with per-call fields, masks secret-looking
    values and hands the entry to the stdlib logger as ``extra={"context": ...}``.
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None, name: str = "hr_integrations"):
        self.context: Dict[str, Any] = {k: v for k, v in (context or {}).items() if v is not None}
        self._logger = get_logger(name)

    # PUBLIC_INTERFACE
    @classmethod
    def create(cls, **context: Any) -> "IntegrationLogger":
        """Build a logger bound to the given context."""
        return cls(context)

    # PUBLIC_INTERFACE
    def child(self, **context: Any) -> "IntegrationLogger":
        """Return a logger whose context extends this one."""
        return IntegrationLogger({**self.context, **context}, name=self._logger.name)

    def _log(self, levelno: int, message: str, context: Dict[str, Any], exc: Optional[BaseException] = None) -> None:
        if not self._logger.isEnabledFor(levelno):
            return
        merged = redact({**self.context, **context})
        exc_info = (type(exc), exc, exc.__traceback__) if exc is not None else None
        self._logger.log(levelno, message, extra={"context": merged}, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warn(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    warning = warn

    def error(self, message: str, exc: Optional[BaseException] = None, **context: Any) -> None:
        if exc is not None:
            to_dict = getattr(exc, "to_dict", None)
            context["error"] = to_dict() if callable(to_dict) else {"name": type(exc).__name__, "message": str(exc)}
        self._log(logging.ERROR, message, context, exc)

    # PUBLIC_INTERFACE
    @contextmanager
    def measure(self, operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
        """Time a block and log its outcome with duration_ms.

        The yielded dict can be filled with extra fields for the completion entry.
        Exceptions are logged and re-raised.
        """
        extra: Dict[str, Any] = {}
        start = time.perf_counter()
        self.debug(f"{operation} started", **context)
        try:
            yield extra
        except Exception as exc:
            duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
            self.error(f"{operation} failed", exc, duration_ms=duration_ms, **context)
            raise
        duration_ms = round((time.perf_counter() - start) * 1000.0, 2)
        self.info(f"{operation} completed", duration_ms=duration_ms, **{**context, **extra})
