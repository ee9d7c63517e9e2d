"""
Provider catalog, endpoints, rate limits, retry defaults and error codes.

Everything here is static data resolved at import time; per-tenant values
(client ids, redirect URIs) come from settings.
"""
from __future__ import annotations

from typing import Dict, List

from .models import AuthType, ProviderCategory, ProviderMetadata, RetryOptions


class ErrorCode:
    # Authentication
    AUTH_FAILED = "AUTH_FAILED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"

    # API
    API_ERROR = "API_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Sync
    SYNC_FAILED = "SYNC_FAILED"
    SYNC_PARTIAL = "SYNC_PARTIAL"

    # Webhook
    WEBHOOK_VALIDATION_FAILED = "WEBHOOK_VALIDATION_FAILED"
    WEBHOOK_REGISTRATION_FAILED = "WEBHOOK_REGISTRATION_FAILED"

    # System
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


def _meta(
    id: str,
    name: str,
    category: ProviderCategory,
    description: str,
    auth_type: AuthType,
    rate_limit: float,
    scopes: List[str] | None = None,
    docs_url: str | None = None,
    supports_webhooks: bool = True,
) -> ProviderMetadata:
    return ProviderMetadata(
        id=id,
        name=name,
        category=category,
        description=description,
        auth_type=auth_type,
        scopes=scopes or [],
        rate_limit=rate_limit,
        docs_url=docs_url,
        supports_oauth=auth_type == AuthType.OAUTH2,
        supports_webhooks=supports_webhooks,
        supports_sync=True,
    )


# Rate limits in requests per second. Capacity is derived as ten seconds of burst.
RATE_LIMITS: Dict[str, float] = {
    "slack": 1,  # Tier 3: 1/s
    "google_calendar": 10,  # 1000 req / 100 s
    "google_drive": 10,
    "google_gmail": 10,
    "microsoft_teams": 5,
    "microsoft_calendar": 5,
    "microsoft_onedrive": 5,
    "payfit": 2,
    "factorial": 5,
    "a3": 1,
    "bamboohr": 1,  # undocumented, conservative
    "personio": 5,
    "hibob": 10,
}

DEFAULT_REFILL_RATE = 1.0
BURST_SECONDS = 10

OAUTH_SCOPES: Dict[str, List[str]] = {
    "slack": ["users:read", "channels:read", "chat:write"],
    "google_calendar": ["https://www.googleapis.com/auth/calendar"],
    "google_drive": ["https://www.googleapis.com/auth/drive.file"],
    "google_gmail": ["https://www.googleapis.com/auth/gmail.send"],
    "microsoft_teams": ["Team.ReadBasic.All", "Channel.ReadBasic.All", "ChannelMessage.Send"],
    "microsoft_calendar": ["Calendars.ReadWrite"],
    "microsoft_onedrive": ["Files.ReadWrite"],
    "payfit": ["read:employees", "read:payslips"],
    "factorial": ["read", "leaves:read"],
}

PROVIDER_METADATA: Dict[str, ProviderMetadata] = {
    m.id: m
    for m in (
        _meta("slack", "Slack", ProviderCategory.COMMUNICATION, "Business messaging platform",
              AuthType.OAUTH2, RATE_LIMITS["slack"], OAUTH_SCOPES["slack"], "https://api.slack.com"),
        _meta("google_calendar", "Google Calendar", ProviderCategory.CALENDAR, "Google calendar and events",
              AuthType.OAUTH2, RATE_LIMITS["google_calendar"], OAUTH_SCOPES["google_calendar"],
              "https://developers.google.com/calendar"),
        _meta("google_drive", "Google Drive", ProviderCategory.STORAGE, "Google cloud storage",
              AuthType.OAUTH2, RATE_LIMITS["google_drive"], OAUTH_SCOPES["google_drive"],
              "https://developers.google.com/drive"),
        _meta("google_gmail", "Gmail", ProviderCategory.EMAIL, "Google e-mail service",
              AuthType.OAUTH2, RATE_LIMITS["google_gmail"], OAUTH_SCOPES["google_gmail"],
              "https://developers.google.com/gmail"),
        _meta("microsoft_teams", "Microsoft Teams", ProviderCategory.COMMUNICATION, "Microsoft collaboration platform",
              AuthType.OAUTH2, RATE_LIMITS["microsoft_teams"], OAUTH_SCOPES["microsoft_teams"],
              "https://learn.microsoft.com/en-us/graph/api/resources/teams-api-overview"),
        _meta("microsoft_calendar", "Outlook Calendar", ProviderCategory.CALENDAR, "Outlook / Microsoft 365 calendar",
              AuthType.OAUTH2, RATE_LIMITS["microsoft_calendar"], OAUTH_SCOPES["microsoft_calendar"],
              "https://learn.microsoft.com/en-us/graph/api/resources/calendar"),
        _meta("microsoft_onedrive", "OneDrive", ProviderCategory.STORAGE, "Microsoft cloud storage",
              AuthType.OAUTH2, RATE_LIMITS["microsoft_onedrive"], OAUTH_SCOPES["microsoft_onedrive"],
              "https://learn.microsoft.com/en-us/graph/api/resources/onedrive"),
        _meta("payfit", "PayFit", ProviderCategory.PAYROLL, "Payroll and HR management",
              AuthType.OAUTH2, RATE_LIMITS["payfit"], OAUTH_SCOPES["payfit"], "https://developers.payfit.com"),
        _meta("factorial", "Factorial", ProviderCategory.PAYROLL, "HR and payroll platform",
              AuthType.OAUTH2, RATE_LIMITS["factorial"], OAUTH_SCOPES["factorial"], "https://apidoc.factorialhr.com"),
        _meta("a3", "A3 Software", ProviderCategory.PAYROLL, "Business management and payroll software",
              AuthType.API_KEY, RATE_LIMITS["a3"], supports_webhooks=False),
        _meta("bamboohr", "BambooHR", ProviderCategory.HR, "Human resources management system",
              AuthType.BASIC, RATE_LIMITS["bamboohr"], docs_url="https://documentation.bamboohr.com"),
        _meta("personio", "Personio", ProviderCategory.HR, "All-in-one HR platform",
              AuthType.API_KEY, RATE_LIMITS["personio"], docs_url="https://developer.personio.de"),
        _meta("hibob", "HiBob", ProviderCategory.HR, "People management platform",
              AuthType.BASIC, RATE_LIMITS["hibob"], docs_url="https://apidocs.hibob.com"),
    )
}

OAUTH_ENDPOINTS: Dict[str, Dict[str, str]] = {
    "slack": {
        "auth": "https://slack.com/oauth/v2/authorize",
        "token": "https://slack.com/api/oauth.v2.access",
        "revoke": "https://slack.com/api/auth.revoke",
    },
    "google": {
        "auth": "https://accounts.google.com/o/oauth2/v2/auth",
        "token": "https://oauth2.googleapis.com/token",
        "revoke": "https://oauth2.googleapis.com/revoke",
    },
    "microsoft": {
        "auth": "https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        "token": "https://login.microsoftonline.com/common/oauth2/v2.0/token",
    },
    "payfit": {
        "auth": "https://oauth.payfit.com/authorize",
        "token": "https://oauth.payfit.com/token",
    },
    "factorial": {
        "auth": "https://app.factorialhr.com/oauth/authorize",
        "token": "https://app.factorialhr.com/oauth/token",
    },
}

# Delays are in seconds.
DEFAULT_RETRY_OPTIONS = RetryOptions(
    max_attempts=3,
    initial_delay=1.0,
    max_delay=30.0,
    backoff_multiplier=2.0,
    retryable_errors=["ETIMEDOUT", "ECONNRESET", "ENOTFOUND", "ECONNREFUSED", "429", "500", "502", "503", "504"],
)

PROVIDER_RETRY_OPTIONS: Dict[str, dict] = {
    "slack": {
        "max_attempts": 5,
        "retryable_errors": [*(DEFAULT_RETRY_OPTIONS.retryable_errors or []), "ratelimited"],
    },
    "google_calendar": {"max_attempts": 4},
    "microsoft_teams": {"max_attempts": 4},
}

# Timeouts in seconds.
TIMEOUTS: Dict[str, float] = {
    "default": 30.0,
    "upload": 120.0,
    "download": 120.0,
    "webhook": 5.0,
    "token": 20.0,
}

TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60
OAUTH_STATE_MAX_AGE_SECONDS = 10 * 60
PKCE_VERIFIER_LENGTH = 128

USER_AGENT = "HRIntegrations/1.0"
