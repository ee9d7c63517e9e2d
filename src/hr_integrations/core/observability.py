from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Context variables to carry across the request lifecycle
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
tenant_id_ctx: ContextVar[str] = ContextVar("tenant_id", default="public")

SENSITIVE_KEYS = frozenset(
    {
        "token",
        "access_token",
        "refresh_token",
        "id_token",
        "api_key",
        "apikey",
        "api_secret",
        "client_secret",
        "secret",
        "password",
        "authorization",
        "authorization_code",
        "code_verifier",
        "oauth_state",
    }
)


def mask_secret_value(value: Optional[str], keep: int = 4) -> Optional[str]:
    """Mask a secret for safe logging. Keep last N chars."""
    if value is None:
        return None
    v = str(value)
    if len(v) <= keep * 3:
        return "*" * len(v)
    return "*" * (len(v) - keep) + v[-keep:]


def is_sensitive_key(key: str) -> bool:
    k = key.lower().replace("-", "_")
    return k in SENSITIVE_KEYS or k.endswith(("_token", "_secret", "password"))


# PUBLIC_INTERFACE
def redact(context: Any) -> Any:
    """Return a copy of context with secret-looking string values masked.

    Walks nested dicts and lists. Non-string values under sensitive keys (flags
    such as has_refresh_token) are kept as they carry no secret.
    """
    if isinstance(context, dict):
        out: Dict[str, Any] = {}
        for key, value in context.items():
            if isinstance(value, (str, bytes)) and is_sensitive_key(str(key)):
                out[key] = mask_secret_value(value.decode("utf-8", "replace") if isinstance(value, bytes) else value)
            else:
                out[key] = redact(value)
        return out
    if isinstance(context, (list, tuple)):
        return [redact(v) for v in context]
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to attach a correlation/request ID and tenant id and emit structured request logs."""

    def __init__(self, app, tenant_header_name: str = "X-Tenant-ID", logger: Optional[logging.Logger] = None):
        super().__init__(app)
        self.tenant_header_name = tenant_header_name
        self.logger = logger or logging.getLogger(__name__)

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        rid_token = request_id_ctx.set(rid)
        tid = request.headers.get(self.tenant_header_name) or tenant_id_ctx.get()
        tid_token = tenant_id_ctx.set(tid)

        self.logger.info(
            "request_start",
            extra={"context": {"method": request.method, "path": request.url.path}},
        )
        try:
            response: Response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        except Exception as ex:
            self.logger.exception("request_error", extra={"context": {"path": request.url.path, "error": str(ex)}})
            raise
        finally:
            dur_ms = (time.perf_counter() - start) * 1000.0
            self.logger.info("request_end", extra={"context": {"path": request.url.path, "duration_ms": round(dur_ms, 2)}})
            request_id_ctx.reset(rid_token)
            tenant_id_ctx.reset(tid_token)


class ContextFilter(logging.Filter):
    """Inject request context (request_id, tenant_id) into records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get()
        record.tenant_id = tenant_id_ctx.get()
        return True


# PUBLIC_INTERFACE
def get_structured_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger that adds correlation attributes through logging Filters."""
    logger = logging.getLogger(name or __name__)
    if not any(isinstance(f, ContextFilter) for f in logger.filters):
        logger.addFilter(ContextFilter())
    return logger
