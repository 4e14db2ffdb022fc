"""OAuth 2.0 authorization-code clients for Google and Microsoft.

Each client can:

- build the provider authorization URL for a CSRF ``state`` token,
- exchange an authorization code for a :class:`TokenSet`,
- refresh an access token with a stored refresh token.

Secret material (client secrets, tokens) is never logged.  Provider error
payloads are collapsed and truncated before they reach exception messages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx

from slotwise.config import AppConfig, OAuthAppConfig

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
)

MICROSOFT_AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
MICROSOFT_SCOPES = ("offline_access", "User.Read", "Calendars.Read", "Calendars.ReadWrite")

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class OAuthError(RuntimeError):
    """Base error for OAuth token operations."""


class TokenExchangeError(OAuthError):
    """The provider rejected an authorization code."""


class TokenRefreshError(OAuthError):
    """The provider rejected a stored refresh token."""


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by a code exchange or refresh."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    expires_at: datetime


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_TOKEN_LIFETIME_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_TOKEN_LIFETIME_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_TOKEN_LIFETIME_SECONDS
    return DEFAULT_TOKEN_LIFETIME_SECONDS


_MAX_ERROR_CHARS = 200


def _one_line(text: str) -> str:
    return " ".join(text.split())[:_MAX_ERROR_CHARS]


def safe_error_message(response: httpx.Response) -> str:
    """Best single-line description of a failed provider response.

    Looks at OAuth ``error_description``, then Google/Graph ``error.message``,
    then a bare ``error`` string, then the raw body.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    candidates: list[Any] = []
    if isinstance(body, dict):
        error = body.get("error")
        candidates.append(body.get("error_description"))
        candidates.append(error.get("message") if isinstance(error, dict) else error)
    candidates.append(response.text)

    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return _one_line(candidate)
    return "Request failed without an error payload"


_CALLBACK_ERROR_MESSAGES: dict[str, str] = {
    "access_denied": "The user denied access. OAuth flow cancelled.",
    "consent_required": "Calendar access needs the user's consent. Connect the calendar again.",
    "interaction_required": "The provider wants the user to sign in again before connecting.",
    "invalid_request": "The provider rejected the authorization request. Connect again.",
    "invalid_scope": "The provider refused the requested calendar permissions.",
    "server_error": "The calendar provider failed while authorizing. Try again.",
    "temporarily_unavailable": "The calendar provider is unavailable right now. Try again later.",
    "unauthorized_client": "The OAuth app is not allowed to use this provider; check its settings.",
    "unsupported_response_type": "The provider does not support this authorization flow.",
}

_GENERIC_CALLBACK_ERROR = "Calendar authorization failed. Connect the calendar again."


def sanitize_provider_error(error: str) -> str:
    """User-facing text for an ``error`` query parameter on the OAuth callback.

    The raw value is attacker-controllable, so codes outside the known set
    map to a fixed generic message.
    """
    return _CALLBACK_ERROR_MESSAGES.get(error, _GENERIC_CALLBACK_ERROR)


class OAuthClient:
    """Authorization-code client shared by the provider-specific subclasses."""

    provider: ClassVar[str]
    authorization_endpoint: ClassVar[str]
    token_endpoint: ClassVar[str]
    scopes: ClassVar[tuple[str, ...]]

    def __init__(self, app: OAuthAppConfig, http_client: httpx.AsyncClient) -> None:
        self._app = app
        self._http_client = http_client

    @property
    def redirect_uri(self) -> str:
        return self._app.redirect_uri

    def _authorization_params(self, state: str) -> dict[str, str]:
        return {
            "client_id": self._app.client_id,
            "redirect_uri": self._app.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }

    def _token_params(self) -> dict[str, str]:
        return {}

    def build_authorization_url(self, state: str) -> str:
        """Return the provider consent URL carrying *state*."""
        return f"{self.authorization_endpoint}?{urlencode(self._authorization_params(state))}"

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Raises
        ------
        TokenExchangeError
            If the exchange fails for any reason (HTTP error, invalid code,
            network error, malformed payload).
        """
        payload = await self._post_token(
            {
                "code": code,
                "client_id": self._app.client_id,
                "client_secret": self._app.client_secret,
                "redirect_uri": self._app.redirect_uri,
                "grant_type": "authorization_code",
                **self._token_params(),
            },
            error_cls=TokenExchangeError,
            action="token exchange",
        )
        return self._token_set(payload, previous_refresh_token=None)

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh an access token.

        The provider may omit ``refresh_token`` in the response; the previous
        one is kept in that case.

        Raises
        ------
        TokenRefreshError
            If the refresh request fails or returns no access token.
        """
        payload = await self._post_token(
            {
                "refresh_token": refresh_token,
                "client_id": self._app.client_id,
                "client_secret": self._app.client_secret,
                "grant_type": "refresh_token",
                **self._token_params(),
            },
            error_cls=TokenRefreshError,
            action="token refresh",
        )
        return self._token_set(payload, previous_refresh_token=refresh_token)

    async def _post_token(
        self,
        data: dict[str, str],
        *,
        error_cls: type[OAuthError],
        action: str,
    ) -> dict[str, Any]:
        try:
            response = await self._http_client.post(
                self.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise error_cls(f"{self.provider} OAuth {action} request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise error_cls(
                f"{self.provider} OAuth {action} failed "
                f"({response.status_code}): {safe_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise error_cls(f"{self.provider} OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise error_cls(
                f"{self.provider} OAuth token response is missing a non-empty access_token"
            )
        return payload

    def _token_set(
        self, payload: dict[str, Any], *, previous_refresh_token: str | None
    ) -> TokenSet:
        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token.strip():
            refresh_token = previous_refresh_token
        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return TokenSet(
            access_token=payload["access_token"].strip(),
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        )


class GoogleOAuthClient(OAuthClient):
    """Google OAuth; requests offline access so a refresh token is issued."""

    provider = "google"
    authorization_endpoint = GOOGLE_AUTH_URL
    token_endpoint = GOOGLE_TOKEN_URL
    scopes = GOOGLE_SCOPES

    def _authorization_params(self, state: str) -> dict[str, str]:
        params = super()._authorization_params(state)
        params["access_type"] = "offline"
        params["prompt"] = "consent"  # Force refresh token to be returned
        return params


class MicrosoftOAuthClient(OAuthClient):
    """Microsoft identity platform (v2.0 endpoints, ``common`` tenant)."""

    provider = "outlook"
    authorization_endpoint = MICROSOFT_AUTH_URL
    token_endpoint = MICROSOFT_TOKEN_URL
    scopes = MICROSOFT_SCOPES

    def _authorization_params(self, state: str) -> dict[str, str]:
        params = super()._authorization_params(state)
        params["response_mode"] = "query"
        return params

    def _token_params(self) -> dict[str, str]:
        return {"scope": " ".join(self.scopes)}


_CLIENTS: dict[str, type[OAuthClient]] = {
    "google": GoogleOAuthClient,
    "outlook": MicrosoftOAuthClient,
}


def build_oauth_client(
    provider: str, config: AppConfig, http_client: httpx.AsyncClient
) -> OAuthClient:
    """Build the OAuth client for *provider*.

    Raises ``ConfigError`` when the provider has no client registration.
    """
    client_cls = _CLIENTS.get(provider)
    if client_cls is None:
        raise ValueError(f"Provider does not use OAuth: {provider}")
    return client_cls(config.oauth_app(provider), http_client)
