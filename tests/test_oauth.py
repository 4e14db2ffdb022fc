"""Tests for the OAuth authorization-code clients."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from slotwise.config import AppConfig, ConfigError, OAuthAppConfig
from slotwise.oauth import (
    GOOGLE_TOKEN_URL,
    MICROSOFT_TOKEN_URL,
    GoogleOAuthClient,
    MicrosoftOAuthClient,
    TokenExchangeError,
    TokenRefreshError,
    build_oauth_client,
    safe_error_message,
    sanitize_provider_error,
)

pytestmark = pytest.mark.unit

_APP = OAuthAppConfig(
    client_id="client-id",
    client_secret="client-secret",
    redirect_uri="http://test/api/integrations/google/callback",
)


def _client(cls, handler) -> tuple:
    requests: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return cls(_APP, http_client), requests


# ---------------------------------------------------------------------------
# Authorization URLs
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_google_requests_offline_access(self):
        client = GoogleOAuthClient(_APP, httpx.AsyncClient())
        query = parse_qs(urlparse(client.build_authorization_url("abc")).query)
        assert query["state"] == ["abc"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert "https://www.googleapis.com/auth/calendar" in query["scope"][0].split()

    def test_microsoft_uses_query_response_mode(self):
        client = MicrosoftOAuthClient(_APP, httpx.AsyncClient())
        url = client.build_authorization_url("xyz")
        assert url.startswith("https://login.microsoftonline.com/common/")
        query = parse_qs(urlparse(url).query)
        assert query["response_mode"] == ["query"]
        assert "offline_access" in query["scope"][0].split()


# ---------------------------------------------------------------------------
# Code exchange and refresh
# ---------------------------------------------------------------------------


class TestExchange:
    async def test_exchange_success(self):
        client, requests = _client(
            GoogleOAuthClient,
            lambda r: httpx.Response(
                200, json={"access_token": " at ", "refresh_token": "rt", "expires_in": 120}
            ),
        )
        before = datetime.now(UTC)
        tokens = await client.exchange_code("the-code")

        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert before + timedelta(seconds=110) < tokens.expires_at
        assert str(requests[0].url) == GOOGLE_TOKEN_URL
        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["the-code"]

    async def test_exchange_http_error(self):
        client, _ = _client(
            GoogleOAuthClient,
            lambda r: httpx.Response(400, json={"error": "invalid_grant"}),
        )
        with pytest.raises(TokenExchangeError, match="invalid_grant"):
            await client.exchange_code("bad")

    async def test_exchange_missing_access_token(self):
        client, _ = _client(GoogleOAuthClient, lambda r: httpx.Response(200, json={}))
        with pytest.raises(TokenExchangeError, match="access_token"):
            await client.exchange_code("code")

    async def test_exchange_transport_error(self):
        def _boom(request):
            raise httpx.ConnectError("down", request=request)

        client, _ = _client(GoogleOAuthClient, _boom)
        with pytest.raises(TokenExchangeError, match="request failed"):
            await client.exchange_code("code")

    @pytest.mark.parametrize("expires_in", [None, "abc", -5, True])
    async def test_bad_expires_in_defaults_to_an_hour(self, expires_in):
        client, _ = _client(
            GoogleOAuthClient,
            lambda r: httpx.Response(200, json={"access_token": "at", "expires_in": expires_in}),
        )
        tokens = await client.exchange_code("code")
        remaining = tokens.expires_at - datetime.now(UTC)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)


class TestRefresh:
    async def test_refresh_keeps_previous_refresh_token(self):
        client, requests = _client(
            MicrosoftOAuthClient,
            lambda r: httpx.Response(200, json={"access_token": "new", "expires_in": 3600}),
        )
        tokens = await client.refresh("old-refresh")

        assert tokens.refresh_token == "old-refresh"
        assert str(requests[0].url) == MICROSOFT_TOKEN_URL
        form = parse_qs(requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert "scope" in form

    async def test_refresh_failure(self):
        client, _ = _client(
            GoogleOAuthClient,
            lambda r: httpx.Response(401, json={"error_description": "Token has been revoked"}),
        )
        with pytest.raises(TokenRefreshError, match="revoked"):
            await client.refresh("rt")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestErrorMessages:
    def test_safe_error_message_collapses_whitespace(self):
        response = httpx.Response(500, json={"error": {"message": "bad\n\n  things"}})
        assert safe_error_message(response) == "bad things"

    def test_safe_error_message_truncates_text(self):
        response = httpx.Response(502, text="x" * 500)
        assert len(safe_error_message(response)) == 200

    def test_safe_error_message_empty_body(self):
        assert safe_error_message(httpx.Response(500)) == "Request failed without an error payload"

    def test_known_provider_error(self):
        assert "denied" in sanitize_provider_error("access_denied")

    def test_unknown_provider_error_is_generic(self):
        message = sanitize_provider_error("<script>internal</script>")
        assert "internal" not in message


class TestBuildClient:
    def test_builds_provider_client(self):
        config = AppConfig(google=_APP)
        assert isinstance(
            build_oauth_client("google", config, httpx.AsyncClient()), GoogleOAuthClient
        )

    def test_unconfigured_provider(self):
        with pytest.raises(ConfigError):
            build_oauth_client("outlook", AppConfig(), httpx.AsyncClient())

    def test_non_oauth_provider(self):
        with pytest.raises(ValueError, match="does not use OAuth"):
            build_oauth_client("ical", AppConfig(), httpx.AsyncClient())
