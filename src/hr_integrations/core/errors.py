# PUBLIC_INTERFACE
"""
Typed error taxonomy for provider integrations.

Every failure that crosses a provider boundary is normalized exactly once into an
IntegrationError subclass carrying a stable code, an optional HTTP status and a
retryable flag. Callers branch on those fields, never on raw transport exceptions.
"""
from __future__ import annotations

import asyncio
import builtins
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional

import httpx

from .constants import ErrorCode


class IntegrationError(Exception):
    """Base error for everything raised by the integration framework."""

    name = "IntegrationError"

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.API_ERROR,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider_id = provider_id
        self.status_code = status_code
        self.retryable = retryable
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape: {name, message, code, providerId?, statusCode?, retryable, cause?}."""
        data: Dict[str, Any] = {
            "name": self.name,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.provider_id is not None:
            data["providerId"] = self.provider_id
        if self.status_code is not None:
            data["statusCode"] = self.status_code
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, provider_id={self.provider_id!r}, message={self.message!r})"


class AuthenticationError(IntegrationError):
    name = "AuthenticationError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.AUTH_FAILED, provider_id, 401, False, cause)


class TokenExpiredError(IntegrationError):
    """Retryable: the next attempt is expected to run after a refresh."""

    name = "TokenExpiredError"

    def __init__(self, message: str = "Token has expired", provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.TOKEN_EXPIRED, provider_id, 401, True, cause)


class TokenRefreshError(IntegrationError):
    name = "TokenRefreshError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.TOKEN_REFRESH_FAILED, provider_id, 401, False, cause)


class InvalidCredentialsError(IntegrationError):
    name = "InvalidCredentialsError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.INVALID_CREDENTIALS, provider_id, 401, False, cause)


class NetworkError(IntegrationError):
    name = "NetworkError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.NETWORK_ERROR, provider_id, None, True, cause)


class IntegrationTimeoutError(IntegrationError):
    """Request deadline expired. Serialized as 'TimeoutError'."""

    name = "TimeoutError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.TIMEOUT, provider_id, 408, True, cause)


class RateLimitError(IntegrationError):
    name = "RateLimitError"

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, ErrorCode.RATE_LIMITED, provider_id, 429, True, cause)
        # seconds, as sent by the server
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        return data


class ApiError(IntegrationError):
    """Upstream API failure. Retryable iff the status is a server error."""

    name = "ApiError"

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        response: Any = None,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ):
        if retryable is None:
            retryable = status_code is not None and status_code >= 500
        super().__init__(message, ErrorCode.API_ERROR, provider_id, status_code, retryable, cause)
        self.response = response

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["response"] = self.response
        return data


class ResourceNotFoundError(IntegrationError):
    name = "ResourceNotFoundError"

    def __init__(self, resource: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(f"Resource not found: {resource}", ErrorCode.RESOURCE_NOT_FOUND, provider_id, 404, False, cause)
        self.resource = resource


class PermissionDeniedError(IntegrationError):
    name = "PermissionDeniedError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.PERMISSION_DENIED, provider_id, 403, False, cause)


class SyncError(IntegrationError):
    name = "SyncError"

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        partial: bool = False,
        cause: Optional[BaseException] = None,
    ):
        code = ErrorCode.SYNC_PARTIAL if partial else ErrorCode.SYNC_FAILED
        super().__init__(message, code, provider_id, None, True, cause)
        self.partial = partial

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["partial"] = self.partial
        return data


class WebhookError(IntegrationError):
    name = "WebhookError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.WEBHOOK_VALIDATION_FAILED, provider_id, 400, False, cause)


class ConfigurationError(IntegrationError):
    name = "ConfigurationError"

    def __init__(self, message: str, provider_id: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, provider_id, 500, False, cause)


class ProviderNotFoundError(IntegrationError):
    name = "ProviderNotFoundError"

    def __init__(self, provider_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Provider not found: {provider_id}", ErrorCode.PROVIDER_NOT_FOUND, provider_id, 404, False, cause)


class IntegrationNotFoundError(IntegrationError):
    name = "IntegrationNotFoundError"

    def __init__(self, integration_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Integration not found: {integration_id}", ErrorCode.INTEGRATION_NOT_FOUND, None, 404, False, cause)
        self.integration_id = integration_id


_RETRYABLE_MESSAGES = ("etimedout", "econnreset", "enotfound", "econnrefused", "epipe", "socket hang up")
_NETWORK_MESSAGES = ("ETIMEDOUT", "ECONNRESET", "ENOTFOUND")


# PUBLIC_INTERFACE
def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient.

    IntegrationErrors carry their own flag; anything else falls back to a
    connection-failure heuristic on the exception type and message.
    """
    if isinstance(error, IntegrationError):
        return error.retryable
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return True
    message = str(error).lower()
    return any(m in message for m in _RETRYABLE_MESSAGES)


def _message_of(error: BaseException) -> str:
    return str(error) or type(error).__name__


# PUBLIC_INTERFACE
def wrap_error(error: Any, provider_id: Optional[str] = None) -> IntegrationError:
    """Normalize any failure into an IntegrationError.

    Returns the same instance when given an IntegrationError, so wrapping twice
    is a no-op and the original cause is preserved.
    """
    if isinstance(error, IntegrationError):
        return error

    if not isinstance(error, BaseException):
        return IntegrationError(str(error), ErrorCode.API_ERROR, provider_id, None, False)

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return error_from_response(response.status_code, response.text, response.headers, provider_id, cause=error)
    if isinstance(error, (httpx.TimeoutException, builtins.TimeoutError, asyncio.TimeoutError)):
        return IntegrationTimeoutError(_message_of(error), provider_id, error)
    if isinstance(error, httpx.TransportError):
        return NetworkError(_message_of(error), provider_id, error)

    message = _message_of(error)
    lowered = message.lower()
    if "401" in message or "unauthorized" in lowered:
        return AuthenticationError(message, provider_id, error)
    if "429" in message or "rate limit" in lowered:
        return RateLimitError(message, provider_id, None, error)
    if "timeout" in lowered:
        return IntegrationTimeoutError(message, provider_id, error)
    if any(code in message for code in _NETWORK_MESSAGES) or isinstance(error, ConnectionError):
        return NetworkError(message, provider_id, error)

    return ApiError(message, provider_id, None, None, error, retryable=is_retryable_error(error))


# PUBLIC_INTERFACE
def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP date) into seconds."""
    if value is None:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - (now or datetime.now(timezone.utc))).total_seconds())


# PUBLIC_INTERFACE
def error_from_response(
    status_code: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    provider_id: Optional[str] = None,
    cause: Optional[BaseException] = None,
) -> IntegrationError:
    """Map a non-2xx upstream response to the matching typed error."""
    headers = headers or {}
    if status_code == 429:
        retry_after = parse_retry_after(headers.get("retry-after") or headers.get("Retry-After"))
        return RateLimitError("Rate limit reached (429)", provider_id, retry_after, cause)
    if status_code == 401:
        return AuthenticationError("Unauthorized (401)", provider_id, cause)
    if status_code == 403:
        return PermissionDeniedError("Permission denied (403)", provider_id, cause)
    if status_code == 404:
        return ResourceNotFoundError("upstream resource (404)", provider_id, cause)
    if status_code == 408:
        return IntegrationTimeoutError("Upstream request timeout (408)", provider_id, cause)
    return ApiError(f"Upstream API error ({status_code})", provider_id, status_code, body, cause)


_FRIENDLY_MESSAGES = (
    (TokenExpiredError, "La sesión ha expirado. Por favor, reconecta la integración."),
    (TokenRefreshError, "No se pudo renovar el acceso. Por favor, reconecta la integración."),
    (InvalidCredentialsError, "Las credenciales no son válidas. Revisa la configuración de la integración."),
    (AuthenticationError, "Error de autenticación. Por favor, reconecta la integración."),
    (RateLimitError, "Se ha alcanzado el límite de peticiones. Por favor, intenta más tarde."),
    (NetworkError, "Error de conexión. Por favor, verifica tu conexión a internet."),
    (IntegrationTimeoutError, "Error de conexión. Por favor, verifica tu conexión a internet."),
    (PermissionDeniedError, "No tienes permisos suficientes. Contacta con soporte."),
    (ResourceNotFoundError, "El recurso solicitado no existe."),
    (SyncError, "Error al sincronizar datos. Los datos pueden estar incompletos."),
    (WebhookError, "No se pudo procesar la notificación del proveedor."),
    (ConfigurationError, "La integración no está configurada correctamente. Contacta con soporte."),
    (ProviderNotFoundError, "Este proveedor de integración no está disponible."),
    (IntegrationNotFoundError, "La integración no existe o ha sido desconectada."),
    (ApiError, "El servicio externo ha devuelto un error. Por favor, intenta de nuevo."),
)

_GENERIC_MESSAGE = "Ha ocurrido un error inesperado. Por favor, intenta de nuevo."


# PUBLIC_INTERFACE
def get_user_friendly_message(error: BaseException) -> str:
    """Map an error to a localized, non-technical message for the UI."""
    for error_type, message in _FRIENDLY_MESSAGES:
        if isinstance(error, error_type):
            return message
    return _GENERIC_MESSAGE
