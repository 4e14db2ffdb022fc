"""Shared behaviour for OAuth-backed providers that call a REST API."""

from __future__ import annotations

import abc
import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from slotwise.config import ConfigError, SyncConfig
from slotwise.errors import CalendarProviderError
from slotwise.models import CalendarIntegration, CalendarIntegrationCreate
from slotwise.oauth import OAuthClient, OAuthError, safe_error_message
from slotwise.providers.base import CalendarProvider
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)


class OAuthCalendarProvider(CalendarProvider):
    """Provider whose integrations carry OAuth access and refresh tokens."""

    default_integration_name: str = "Calendar"

    def __init__(
        self,
        user_id: int,
        storage: CalendarStorage,
        *,
        http_client: httpx.AsyncClient,
        oauth: OAuthClient | None = None,
        sync_config: SyncConfig | None = None,
    ) -> None:
        super().__init__(user_id, storage, sync_config=sync_config)
        self._http_client = http_client
        self._oauth = oauth

    def _require_oauth(self) -> OAuthClient:
        if self._oauth is None:
            raise ConfigError(f"OAuth is not configured for provider: {self.name}")
        return self._oauth

    # ------------------------------------------------------------------
    # Authorization flow
    # ------------------------------------------------------------------

    def get_auth_url(self, state: str) -> str:
        """Return the provider consent URL for a CSRF *state* token."""
        return self._require_oauth().build_authorization_url(state)

    async def handle_auth_callback(
        self,
        code: str,
        calendar_id: str = "primary",
        name: str | None = None,
    ) -> CalendarIntegration:
        """Exchange *code* for tokens and store a new connected integration.

        When the default calendar id or no name is requested, the provider is
        probed for the real primary calendar; probe failures are logged and
        the defaults kept.  A new row is inserted on every call, so
        re-authorizing the same account adds a second integration.
        """
        tokens = await self._require_oauth().exchange_code(code)

        resolved_id, resolved_name = calendar_id, name
        if calendar_id == "primary" or not name:
            try:
                probed = await self._probe_primary_calendar(tokens.access_token)
            except CalendarProviderError as exc:
                logger.warning("Could not probe %s primary calendar: %s", self.name, exc)
                probed = None
            if probed is not None:
                probed_id, probed_name = probed
                if calendar_id == "primary":
                    resolved_id = probed_id
                if not name:
                    resolved_name = probed_name

        integration = await self.storage.create_calendar_integration(
            CalendarIntegrationCreate(
                user_id=self.user_id,
                type=self.calendar_type,
                name=resolved_name or self.default_integration_name,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=tokens.expires_at,
                calendar_id=resolved_id,
                last_synced=datetime.now(UTC),
                is_connected=True,
                is_primary=False,
            )
        )
        self.integration = integration
        logger.info("Stored new %s integration %s", self.name, integration.id)
        return integration

    # ------------------------------------------------------------------
    # Token freshness
    # ------------------------------------------------------------------

    async def _ensure_credentials(
        self, integration: CalendarIntegration
    ) -> CalendarIntegration | None:
        if not integration.token_expired():
            return integration

        if not integration.refresh_token:
            logger.warning(
                "%s integration %s expired with no refresh token; disconnecting",
                self.name,
                integration.id,
            )
            await self.storage.update_calendar_integration(integration.id, is_connected=False)
            return None

        if self._oauth is None:
            logger.warning(
                "%s integration %s expired but OAuth is not configured; cannot refresh",
                self.name,
                integration.id,
            )
            return None

        try:
            tokens = await self._oauth.refresh(integration.refresh_token)
        except OAuthError as exc:
            logger.warning(
                "Token refresh for %s integration %s failed; disconnecting: %s",
                self.name,
                integration.id,
                exc,
            )
            await self.storage.update_calendar_integration(integration.id, is_connected=False)
            return None

        updated = await self.storage.update_calendar_integration(
            integration.id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
        )
        logger.info("Refreshed %s token for integration %s", self.name, integration.id)
        return updated

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str | None,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers: dict[str, str] = {"Authorization": f"Bearer {access_token or ''}"}
        if extra_headers:
            headers.update(extra_headers)
        try:
            return await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise CalendarProviderError(
                provider=self.name, status_code=None, message=str(exc)
            ) from exc

    async def _request_json(
        self,
        method: str,
        url: str,
        access_token: str | None,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = await self._request(
            method,
            url,
            access_token,
            params=params,
            json_body=json_body,
            extra_headers=extra_headers,
        )

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarProviderError(
                provider=self.name,
                status_code=response.status_code,
                message=safe_error_message(response),
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarProviderError(
                provider=self.name,
                status_code=response.status_code,
                message="API returned invalid JSON for a successful response",
            ) from exc

        if not isinstance(payload, dict):
            raise CalendarProviderError(
                provider=self.name,
                status_code=response.status_code,
                message="API returned an unexpected JSON payload shape",
            )
        return payload

    @abc.abstractmethod
    async def _probe_primary_calendar(self, access_token: str) -> tuple[str, str] | None:
        """Return ``(calendar_id, display_name)`` of the account's primary calendar."""
