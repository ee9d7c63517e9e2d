from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthType(str, Enum):
    """Mutually exclusive credential kinds a provider can use."""
    OAUTH2 = "oauth2"
    API_KEY = "api_key"
    BASIC = "basic"


class ProviderCategory(str, Enum):
    COMMUNICATION = "communication"
    CALENDAR = "calendar"
    STORAGE = "storage"
    PAYROLL = "payroll"
    HR = "hr"
    EMAIL = "email"


class IntegrationState(str, Enum):
    """Lifecycle of one tenant's installed integration."""
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class ProviderMetadata(BaseModel):
    """Immutable descriptor of a provider type."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Provider id (e.g., 'slack', 'google_calendar')")
    name: str = Field(..., description="Human readable name")
    category: ProviderCategory = Field(..., description="Provider category")
    description: str = Field(default="", description="Short description")
    auth_type: AuthType = Field(..., description="Credential kind")
    scopes: List[str] = Field(default_factory=list, description="Default OAuth scopes")
    rate_limit: Optional[float] = Field(default=None, description="Requests per second hint")
    docs_url: Optional[str] = Field(default=None)
    supports_oauth: bool = Field(default=False)
    supports_webhooks: bool = Field(default=False)
    supports_sync: bool = Field(default=False)


class IntegrationConfig(BaseModel):
    """Per-tenant installed integration."""
    id: str = Field(..., description="Integration id")
    provider_id: str = Field(..., description="Provider id")
    company_id: str = Field(..., description="Tenant (company) id")
    user_id: Optional[str] = Field(default=None, description="Owning user for personal integrations")
    status: IntegrationState = Field(default=IntegrationState.CONNECTED)
    settings: Dict[str, Any] = Field(default_factory=dict, description="Provider-specific settings")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Arbitrary metadata (e.g., last_sync)")


class IntegrationStatus(BaseModel):
    """Result of a connection check."""
    is_connected: bool
    state: IntegrationState
    last_sync: Optional[datetime] = None
    last_error: Optional[str] = None
    tokens_expire_at: Optional[datetime] = None
    health_status: Literal["healthy", "warning", "error"] = "error"


class OAuth2Config(BaseModel):
    auth_url: str
    token_url: str
    client_id: str
    client_secret: str
    scopes: List[str] = Field(default_factory=list)
    redirect_uri: str
    pkce: bool = False
    revoke_url: Optional[str] = None
    extra_authorize_params: Dict[str, str] = Field(default_factory=dict)


class OAuth2Tokens(BaseModel):
    """Decrypted OAuth2 token set. Replaced wholesale on refresh."""
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)

    def expires_in(self, now: Optional[datetime] = None) -> float:
        """Seconds until expiry (negative when already expired)."""
        return (self.expires_at - (now or utcnow())).total_seconds()


class ApiKeyCredentials(BaseModel):
    api_key: str
    api_secret: Optional[str] = None


class BasicCredentials(BaseModel):
    username: str
    password: str


class TokenRecord(BaseModel):
    """Persisted token row. Secrets are stored encrypted."""
    integration_id: str = Field(..., description="Owning integration id")
    access_token: str = Field(..., description="Encrypted access token")
    refresh_token: Optional[str] = Field(default=None, description="Encrypted refresh token")
    token_type: str = Field(default="Bearer")
    expires_at: datetime = Field(..., description="Access token expiry")
    scopes: List[str] = Field(default_factory=list)
    last_refreshed: datetime = Field(default_factory=utcnow)
    refresh_count: int = Field(default=0)


class RetryOptions(BaseModel):
    """Backoff tuning. Delays are in seconds."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retryable_errors: Optional[List[str]] = None


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class RequestOptions(BaseModel):
    method: HttpMethod = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    body: Any = None
    timeout: Optional[float] = Field(default=None, description="Seconds; falls back to the default timeout")


class RateLimitInfo(BaseModel):
    limit: int
    remaining: int
    reset: datetime


class ApiResponse(BaseModel):
    success: bool
    status_code: int
    data: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)
    rate_limit: Optional[RateLimitInfo] = None


class LogEntry(BaseModel):
    level: Literal["debug", "info", "warn", "error"]
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
