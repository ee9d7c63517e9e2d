from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import httpx

from ..core.constants import TIMEOUTS
from ..core.errors import error_from_response
from ..core.models import ApiResponse, RateLimitInfo, RequestOptions


class Transport:
    """Sends one HTTP request. Non-2xx responses raise a typed IntegrationError."""

    async def send(self, options: RequestOptions, provider_id: Optional[str] = None) -> ApiResponse:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


def parse_rate_limit_headers(headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
    """Read X-RateLimit-Limit / -Remaining / -Reset (epoch seconds) when all are present."""
    try:
        limit = int(headers["x-ratelimit-limit"])
        remaining = int(headers["x-ratelimit-remaining"])
        reset = datetime.fromtimestamp(float(headers["x-ratelimit-reset"]), tz=timezone.utc)
    except (KeyError, ValueError, OverflowError, OSError):
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset=reset)


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


class HttpxTransport(Transport):
    """Transport on httpx.AsyncClient. A client passed in is not closed by aclose()."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, default_timeout: float = TIMEOUTS["default"]):
        self._client = client
        self._owns_client = client is None
        self.default_timeout = default_timeout

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    # PUBLIC_INTERFACE
    async def send(self, options: RequestOptions, provider_id: Optional[str] = None) -> ApiResponse:
        """Send the request; timeout expiry raises httpx.TimeoutException for the caller to wrap."""
        kwargs: dict = {"headers": options.headers, "params": options.params}
        if isinstance(options.body, (str, bytes)):
            kwargs["content"] = options.body
        elif options.body is not None:
            kwargs["json"] = options.body
        resp = await self.client.request(
            options.method,
            options.url,
            timeout=options.timeout or self.default_timeout,
            **kwargs,
        )
        data = _body(resp)
        if resp.is_error:
            raise error_from_response(resp.status_code, data, resp.headers, provider_id)
        return ApiResponse(
            success=True,
            status_code=resp.status_code,
            data=data,
            headers=dict(resp.headers),
            rate_limit=parse_rate_limit_headers(resp.headers),
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
