from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from .errors import IntegrationError, RateLimitError, get_user_friendly_message


# PUBLIC_INTERFACE
def ok(data: Dict[str, Any] | List[Any] | Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Produce a standardized success payload.
    Use "status": "ok" and include a top-level "data" wrapper to align with a unified interface.
    """
    return {
        "status": "ok",
        "data": data,
        "meta": meta or {},
    }


# PUBLIC_INTERFACE
def error_payload(
    code: str,
    message: str,
    retry_after: Optional[Union[int, float]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Produce a standardized error payload.

    - status: always "error"
    - code: machine-readable ErrorCode (e.g., AUTH_FAILED, RATE_LIMITED, PROVIDER_NOT_FOUND)
    - message: user-facing message, never provider internals
    - retry_after: optional seconds to wait (if rate limited)
    - details: optional structured extra info (safe; should not include secrets)
    """
    payload: Dict[str, Any] = {
        "status": "error",
        "code": code,
        "message": message,
    }
    if retry_after is not None:
        payload["retry_after"] = retry_after
    if details:
        payload["details"] = details
    return payload


# PUBLIC_INTERFACE
def integration_error_payload(error: IntegrationError) -> Dict[str, Any]:
    """Render an IntegrationError for API clients using its friendly message."""
    retry_after = error.retry_after if isinstance(error, RateLimitError) else None
    details = {"provider_id": error.provider_id} if error.provider_id else None
    return error_payload(error.code, get_user_friendly_message(error), retry_after=retry_after, details=details)
