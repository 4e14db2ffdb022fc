"""Calendar integration management: connect, authorize, primary, disconnect.

Keeps the "at most one primary integration per type" rule and the user's
default-calendar settings in step as integrations come and go.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass

from slotwise.errors import CalendarAuthorizationError, IntegrationNotFoundError
from slotwise.models import INTEGRATION_TYPES, CalendarIntegration, CalendarType
from slotwise.orchestrator import ProviderFactory
from slotwise.providers.ical import ICalendarProvider
from slotwise.providers.remote import OAuthCalendarProvider
from slotwise.reminders import ReminderService
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)

# Types whose primary can stand in as the default calendar, in preference order.
_DEFAULT_FALLBACK_TYPES = (CalendarType.GOOGLE, CalendarType.OUTLOOK)

# ---------------------------------------------------------------------------
# In-memory CSRF state store
# State entries expire after 10 minutes.
# ---------------------------------------------------------------------------

_STATE_TTL_SECONDS = 600

# NOTE: process-local; authorization flows do not survive a restart and do
# not work across multiple worker processes.


@dataclass(frozen=True)
class PendingAuthorization:
    """What an OAuth ``state`` token stands for until the callback arrives."""

    user_id: int
    calendar_type: CalendarType
    name: str | None
    expires_at: float


_state_store: dict[str, PendingAuthorization] = {}


class AuthorizationStateError(ValueError):
    """Raised when an OAuth callback carries a missing, unknown or expired state."""


def _generate_state() -> str:
    """Generate a cryptographically random CSRF state token."""
    return secrets.token_urlsafe(32)


def _store_state(state: str, user_id: int, calendar_type: CalendarType, name: str | None) -> None:
    _state_store[state] = PendingAuthorization(
        user_id=user_id,
        calendar_type=calendar_type,
        name=name,
        expires_at=time.monotonic() + _STATE_TTL_SECONDS,
    )
    _evict_expired_states()


def _consume_state(state: str) -> PendingAuthorization | None:
    """Pop *state* (one-time use); ``None`` when unknown or expired."""
    _evict_expired_states()
    pending = _state_store.pop(state, None)
    if pending is None or time.monotonic() >= pending.expires_at:
        return None
    return pending


def _evict_expired_states() -> None:
    now = time.monotonic()
    expired = [key for key, pending in _state_store.items() if now >= pending.expires_at]
    for key in expired:
        del _state_store[key]


def _clear_state_store() -> None:
    """Clear all state entries. Used in tests."""
    _state_store.clear()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class IntegrationService:
    """Lifecycle of a user's calendar integrations."""

    def __init__(
        self,
        storage: CalendarStorage,
        provider_factory: ProviderFactory,
        reminders: ReminderService | None = None,
    ) -> None:
        self.storage = storage
        self._provider_factory = provider_factory
        self._reminders = reminders

    async def list_integrations(self, user_id: int) -> dict[str, list[CalendarIntegration]]:
        """Return the user's integrations grouped by calendar type."""
        grouped: dict[str, list[CalendarIntegration]] = {str(t): [] for t in INTEGRATION_TYPES}
        for integration in await self.storage.get_calendar_integrations(user_id):
            grouped[str(integration.type)].append(integration)
        return grouped

    async def _owned(
        self,
        user_id: int,
        integration_id: int,
        calendar_type: CalendarType | None = None,
        action: str = "modify",
    ) -> CalendarIntegration:
        integration = await self.storage.get_calendar_integration(integration_id)
        if (
            integration is None
            or integration.user_id != user_id
            or (calendar_type is not None and integration.type != calendar_type)
        ):
            raise CalendarAuthorizationError(f"Not authorized to {action} this calendar")
        return integration

    def _oauth_provider(self, calendar_type: CalendarType, user_id: int) -> OAuthCalendarProvider:
        provider = self._provider_factory(calendar_type, user_id)
        if not isinstance(provider, OAuthCalendarProvider):
            raise ValueError(f"{calendar_type} calendars are not connected through OAuth")
        return provider

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    def begin_authorization(
        self, calendar_type: CalendarType | str, user_id: int, name: str | None = None
    ) -> str:
        """Start an OAuth flow and return the provider consent URL."""
        calendar_type = CalendarType(calendar_type)
        provider = self._oauth_provider(calendar_type, user_id)
        state = _generate_state()
        url = provider.get_auth_url(state)
        _store_state(state, user_id, calendar_type, name)
        logger.info(
            "%s authorization started for user %s (state=%s...)", calendar_type, user_id, state[:8]
        )
        return url

    def cancel_authorization(self, state: str) -> None:
        """Consume *state* after the provider reported a denied or failed consent."""
        _consume_state(state)

    async def complete_authorization(
        self, calendar_type: CalendarType | str, code: str, state: str
    ) -> CalendarIntegration:
        """Finish an OAuth flow started by :meth:`begin_authorization`.

        Raises
        ------
        AuthorizationStateError
            The state is unknown, expired, already used or for another type.
        """
        calendar_type = CalendarType(calendar_type)
        pending = _consume_state(state)
        if pending is None or pending.calendar_type != calendar_type:
            logger.warning("%s callback received invalid or expired state", calendar_type)
            raise AuthorizationStateError(
                "State parameter is invalid or expired. Please restart the authorization flow."
            )

        provider = self._oauth_provider(calendar_type, pending.user_id)
        integration = await provider.handle_auth_callback(code, "primary", pending.name)
        return await self._promote_if_unclaimed(integration, update_default=True)

    async def connect_ical(
        self, user_id: int, calendar_url: str, name: str | None = None
    ) -> CalendarIntegration:
        """Subscribe to an iCalendar feed URL."""
        provider = self._provider_factory(CalendarType.ICAL, user_id)
        assert isinstance(provider, ICalendarProvider)
        integration = await provider.connect(calendar_url, name)

        integrations = await self.storage.get_calendar_integrations(user_id)
        has_other_primary = any(
            other.type in _DEFAULT_FALLBACK_TYPES and other.is_primary for other in integrations
        )
        return await self._promote_if_unclaimed(integration, update_default=not has_other_primary)

    async def _promote_if_unclaimed(
        self, integration: CalendarIntegration, *, update_default: bool
    ) -> CalendarIntegration:
        """Make *integration* primary unless a connected sibling already is."""
        same_type = await self.storage.get_calendar_integrations_by_type(
            integration.user_id, integration.type
        )
        if any(
            other.id != integration.id and other.is_connected and other.is_primary
            for other in same_type
        ):
            return integration

        promoted = await self.storage.update_calendar_integration(integration.id, is_primary=True)
        if update_default:
            await self.storage.upsert_settings(
                integration.user_id,
                default_calendar=integration.type,
                default_calendar_integration_id=integration.id,
            )
        logger.info(
            "No connected primary %s calendar; marked integration %s primary",
            integration.type,
            integration.id,
        )
        return promoted or integration

    # ------------------------------------------------------------------
    # Primary and disconnect
    # ------------------------------------------------------------------

    async def set_primary(
        self, user_id: int, integration_id: int, calendar_type: CalendarType | str
    ) -> CalendarIntegration:
        """Make *integration_id* the only primary of its type and the default."""
        calendar_type = CalendarType(calendar_type)
        await self._owned(user_id, integration_id, calendar_type)

        for other in await self.storage.get_calendar_integrations_by_type(user_id, calendar_type):
            if other.id != integration_id and other.is_primary:
                await self.storage.update_calendar_integration(other.id, is_primary=False)
        updated = await self.storage.update_calendar_integration(integration_id, is_primary=True)
        assert updated is not None
        await self.storage.upsert_settings(
            user_id,
            default_calendar=calendar_type,
            default_calendar_integration_id=integration_id,
        )
        logger.info("Set %s integration %s as primary", calendar_type, integration_id)
        return updated

    async def disconnect(
        self, user_id: int, integration_id: int, calendar_type: CalendarType | str
    ) -> None:
        """Disconnect an integration and hand its primary role to a sibling."""
        calendar_type = CalendarType(calendar_type)
        integration = await self._owned(user_id, integration_id, calendar_type, "disconnect")

        provider = self._provider_factory(calendar_type, user_id)
        await provider.disconnect(integration_id)
        if integration.is_primary:
            await self.storage.update_calendar_integration(integration_id, is_primary=False)
            await self._reassign_primary(integration)

    async def delete_integration(self, user_id: int, integration_id: int) -> None:
        """Delete an integration together with its mirrored events."""
        integration = await self.storage.get_calendar_integration(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(integration_id)
        if integration.user_id != user_id:
            raise CalendarAuthorizationError("Not authorized to delete this calendar")

        event_ids = [
            event.id
            for event in await self.storage.get_events(user_id)
            if event.calendar_integration_id == integration_id
        ]
        await self.storage.delete_calendar_integration(integration_id)
        if self._reminders is not None:
            for event_id in event_ids:
                await self._reminders.clear_reminders(event_id)

        if integration.is_primary:
            await self._reassign_primary(integration)
        settings = await self.storage.get_settings(user_id)
        if settings is not None and settings.default_calendar_integration_id == integration_id:
            await self.storage.update_settings(user_id, default_calendar_integration_id=None)
        logger.info(
            "Deleted %s integration %s with %d event(s)",
            integration.type,
            integration_id,
            len(event_ids),
        )

    async def _reassign_primary(self, former: CalendarIntegration) -> None:
        """Promote a same-type sibling of *former*, or retarget the default.

        Settings are only touched when the default calendar type is the
        type *former* belonged to.
        """
        user_id = former.user_id
        integrations = [
            integration
            for integration in await self.storage.get_calendar_integrations(user_id)
            if integration.id != former.id
        ]
        settings = await self.storage.get_settings(user_id)
        owns_default = settings is not None and settings.default_calendar == former.type

        siblings = [
            integration
            for integration in integrations
            if integration.type == former.type and integration.is_connected
        ]
        if siblings:
            successor = siblings[0]
            await self.storage.update_calendar_integration(successor.id, is_primary=True)
            if owns_default:
                await self.storage.update_settings(
                    user_id, default_calendar_integration_id=successor.id
                )
            logger.info("Promoted %s integration %s to primary", former.type, successor.id)
            return

        if not owns_default:
            return
        for fallback_type in _DEFAULT_FALLBACK_TYPES:
            if fallback_type == former.type:
                continue
            candidates = [i for i in integrations if i.type == fallback_type]
            if candidates:
                fallback = next((i for i in candidates if i.is_primary), candidates[0])
                await self.storage.update_settings(
                    user_id,
                    default_calendar=fallback_type,
                    default_calendar_integration_id=fallback.id,
                )
                logger.info(
                    "Default calendar moved from %s to %s integration %s",
                    former.type,
                    fallback_type,
                    fallback.id,
                )
                return
        if settings is not None and settings.default_calendar_integration_id == former.id:
            await self.storage.update_settings(user_id, default_calendar_integration_id=None)
