from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope."""
    status: str = Field("ok", description="Always 'ok'")
    data: T
    meta: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standardized error payload for all endpoints."""
    status: str = Field("error", description="Error status, always 'error'")
    code: str = Field(..., description="Machine-readable error code (e.g., AUTH_FAILED, RATE_LIMITED, PROVIDER_NOT_FOUND)")
    message: str = Field(..., description="User-facing description of the error")
    retry_after: Optional[float] = Field(default=None, description="Seconds to wait before retrying (for rate limiting)")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional structured, safe-to-log error details")


class HealthData(BaseModel):
    message: str = Field(..., description="Health status message")
    env: str = Field(..., description="Environment name")


class AuthorizeData(BaseModel):
    auth_url: str = Field(..., description="URL to redirect the user to start the OAuth flow")


class IntegrationData(BaseModel):
    id: str = Field(..., description="Integration id")
    provider_id: str = Field(..., description="Provider id")
    company_id: str = Field(..., description="Tenant id")
    user_id: Optional[str] = Field(default=None)
    status: str = Field(..., description="connected | error | disconnected")


class TokenStatusData(BaseModel):
    """Token metadata after a refresh. Token values are never returned."""
    integration_id: str
    token_type: str
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)


class RevokeData(BaseModel):
    integration_id: str
    revoked: bool = True


class RateLimitStatusData(BaseModel):
    provider_id: str
    tokens: float = Field(..., description="Tokens currently available")
    capacity: float = Field(..., description="Bucket capacity (burst)")
    refill_rate: float = Field(..., description="Tokens added per second")
    blocked_for: float = Field(..., description="Seconds until refills resume after a server rate limit")
