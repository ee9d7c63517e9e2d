import asyncio
import logging
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from hr_integrations.core.errors import AuthenticationError, TokenExpiredError, TokenRefreshError
from hr_integrations.core.models import OAuth2Config, OAuth2Tokens
from hr_integrations.core.security import code_challenge_s256
from hr_integrations.providers.auth import OAuth2Auth, tokens_from_payload


def oauth_config(**overrides):
    values = dict(
        auth_url="https://auth.example.com/authorize",
        token_url="https://auth.example.com/token",
        client_id="client-1",
        client_secret="secret-1",
        scopes=["calendar", "profile"],
        redirect_uri="https://app.example.com/integrations/oauth/google_calendar/callback",
    )
    values.update(overrides)
    return OAuth2Config(**values)


def tokens_expiring_in(clock, seconds, refresh_token="refresh-0"):
    return OAuth2Tokens(
        access_token="access-0",
        refresh_token=refresh_token,
        expires_at=clock() + timedelta(seconds=seconds),
        scopes=["calendar"],
    )


def test_authorization_url_without_pkce():
    auth = OAuth2Auth(oauth_config())
    query = parse_qs(urlsplit(auth.get_authorization_url("opaque-state")).query)
    assert query["client_id"] == ["client-1"]
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["calendar profile"]
    assert query["state"] == ["opaque-state"]
    assert "code_challenge" not in query
    assert "client_secret" not in query


@pytest.mark.asyncio
async def test_pkce_verifier_is_sent_on_exchange(http, token_endpoint, clock):
    auth = OAuth2Auth(oauth_config(pkce=True), http=http, clock=clock)
    query = parse_qs(urlsplit(auth.get_authorization_url()).query)
    assert query["code_challenge_method"] == ["S256"]

    tokens = await auth.exchange_code_for_tokens("auth-code")
    form = token_endpoint.forms[0]
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "auth-code"
    assert code_challenge_s256(form["code_verifier"]) == query["code_challenge"][0]
    assert tokens.access_token == "access-1"
    assert tokens.expires_at == clock() + timedelta(seconds=3600)
    assert auth.tokens is tokens


@pytest.mark.asyncio
async def test_failed_exchange_raises_authentication_error(http, token_endpoint, clock):
    token_endpoint.status_code = 400
    auth = OAuth2Auth(oauth_config(), http=http, clock=clock)
    with pytest.raises(AuthenticationError):
        await auth.exchange_code_for_tokens("bad-code")
    assert auth.tokens is None


@pytest.mark.asyncio
async def test_token_refreshed_inside_margin(http, token_endpoint, clock):
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 4 * 60), http=http, clock=clock)
    headers = await auth.auth_headers()
    assert headers == {"Authorization": "Bearer access-1"}
    assert len(token_endpoint.requests) == 1
    assert token_endpoint.forms[0]["grant_type"] == "refresh_token"
    assert token_endpoint.forms[0]["refresh_token"] == "refresh-0"


@pytest.mark.asyncio
async def test_token_outside_margin_is_used_as_is(http, token_endpoint, clock):
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 6 * 60), http=http, clock=clock)
    assert await auth.get_valid_access_token() == "access-0"
    assert token_endpoint.requests == []


@pytest.mark.asyncio
async def test_expired_without_refresh_token(http, clock):
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, -10, refresh_token=None), http=http, clock=clock)
    with pytest.raises(TokenExpiredError):
        await auth.get_valid_access_token()


@pytest.mark.asyncio
async def test_expired_without_refresh_token_warns_once(http, clock, caplog):
    caplog.set_level(logging.WARNING, logger="hr_integrations")
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, -10, refresh_token=None), http=http, clock=clock)
    for _ in range(3):
        with pytest.raises(TokenExpiredError):
            await auth.get_valid_access_token()
    warnings = [r for r in caplog.records if "re-authorization required" in r.getMessage()]
    assert len(warnings) == 1

    auth.set_tokens(tokens_expiring_in(clock, -10, refresh_token=None))
    with pytest.raises(TokenExpiredError):
        await auth.get_valid_access_token()
    assert len([r for r in caplog.records if "re-authorization required" in r.getMessage()]) == 2


@pytest.mark.asyncio
async def test_no_tokens_raises_authentication_error():
    with pytest.raises(AuthenticationError):
        await OAuth2Auth(oauth_config()).get_valid_access_token()


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(http, token_endpoint, clock):
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 30), http=http, clock=clock)
    results = await asyncio.gather(*(auth.get_valid_access_token() for _ in range(5)))
    assert results == ["access-1"] * 5
    assert len(token_endpoint.requests) == 1


@pytest.mark.asyncio
async def test_refresh_failure_raises_token_refresh_error(http, token_endpoint, clock):
    token_endpoint.status_code = 400
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 30), http=http, clock=clock)
    with pytest.raises(TokenRefreshError):
        await auth.get_valid_access_token()


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated(http, token_endpoint, clock):
    token_endpoint.payload_factory = lambda form: {"access_token": "access-new", "expires_in": 60, "scope": "a,b"}
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 30), http=http, clock=clock)
    tokens = await auth.refresh_access_token("refresh-0")
    assert tokens.refresh_token == "refresh-0"
    assert tokens.scopes == ["a", "b"]


@pytest.mark.asyncio
async def test_revoke_posts_to_revocation_endpoint(http, token_endpoint, clock):
    auth = OAuth2Auth(
        oauth_config(revoke_url="https://auth.example.com/revoke"),
        tokens=tokens_expiring_in(clock, 3600),
        http=http,
        clock=clock,
    )
    await auth.revoke_tokens()
    assert auth.tokens is None
    assert str(token_endpoint.requests[0].url) == "https://auth.example.com/revoke"
    assert token_endpoint.forms[0]["token"] == "refresh-0"


@pytest.mark.asyncio
async def test_revoke_without_endpoint_only_clears(http, token_endpoint, clock):
    auth = OAuth2Auth(oauth_config(), tokens=tokens_expiring_in(clock, 3600), http=http, clock=clock)
    await auth.revoke_tokens()
    assert auth.tokens is None
    assert token_endpoint.requests == []


def test_tokens_from_payload_defaults(clock):
    tokens = tokens_from_payload({"access_token": "a"}, ["scope-1"], now=clock())
    assert tokens.token_type == "Bearer"
    assert tokens.scopes == ["scope-1"]
    assert tokens.expires_at == clock() + timedelta(seconds=3600)
