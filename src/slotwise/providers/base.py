"""Provider-agnostic calendar adapter contract.

``CalendarProvider`` implements the shared adapter behaviour once:
integration resolution, ownership checks, create/update/delete propagation
with local mirroring, and one-way additive sync.  Subclasses supply only the
provider-native hooks (``_create_remote``, ``_update_remote``,
``_delete_remote``, ``_fetch_remote``).

One adapter instance serves one user for one request.  The only in-memory
state is the currently resolved integration.
"""

from __future__ import annotations

import abc
import logging
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any, ClassVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotwise.config import SyncConfig
from slotwise.errors import (
    CalendarAuthorizationError,
    CalendarNotAuthenticatedError,
    CalendarProviderError,
)
from slotwise.models import (
    CalendarIntegration,
    CalendarType,
    Event,
    EventCreate,
    EventDraft,
    EventUpdate,
    SyncResult,
)
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)

# Event fields that are pushed to the provider on update.
REMOTE_UPDATE_FIELDS = frozenset(
    {"title", "description", "start_time", "end_time", "location", "is_all_day"}
)
UNTITLED_EVENT = "Untitled Event"


def coerce_zone(timezone: str | None) -> tzinfo:
    """Resolve an IANA zone name, falling back to UTC for unknown names."""
    if not timezone:
        return UTC
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone %r; using UTC", timezone)
        return UTC


class CalendarProvider(abc.ABC):
    """Adapter between the local event store and one calendar backend."""

    calendar_type: ClassVar[CalendarType]

    def __init__(
        self,
        user_id: int,
        storage: CalendarStorage,
        *,
        sync_config: SyncConfig | None = None,
    ) -> None:
        self.user_id = user_id
        self.storage = storage
        self.sync_config = sync_config or SyncConfig()
        self.integration: CalendarIntegration | None = None

    @property
    def name(self) -> str:
        return str(self.calendar_type)

    # ------------------------------------------------------------------
    # Integration resolution
    # ------------------------------------------------------------------

    async def initialize(self, integration_id: int | None = None) -> bool:
        """Resolve the integration this adapter works against.

        With an explicit id the integration must belong to the user, match
        this provider's type and be connected.  Without one, the connected
        primary integration of this type is preferred, then any connected
        integration of this type.

        Returns whether a usable integration was found.
        """
        if integration_id is not None:
            integration = await self.storage.get_calendar_integration(integration_id)
            if (
                integration is None
                or integration.user_id != self.user_id
                or integration.type != self.calendar_type
                or not integration.is_connected
            ):
                self.integration = None
                return False
            self.integration = integration
            return True

        candidates = [
            integration
            for integration in await self.storage.get_calendar_integrations_by_type(
                self.user_id, self.calendar_type
            )
            if integration.is_connected
        ]
        primary = next((integration for integration in candidates if integration.is_primary), None)
        self.integration = primary or (candidates[0] if candidates else None)
        return self.integration is not None

    async def is_authenticated(self, integration_id: int | None = None) -> bool:
        """Resolve the integration and verify its credentials are usable.

        Token-based providers refresh an expired access token here (exactly
        one attempt).  A missing refresh token or a failed refresh marks the
        integration disconnected.
        """
        if not await self.initialize(integration_id):
            return False
        if self.integration is None:
            return True
        refreshed = await self._ensure_credentials(self.integration)
        self.integration = refreshed
        return refreshed is not None

    async def _ensure_credentials(
        self, integration: CalendarIntegration
    ) -> CalendarIntegration | None:
        """Return a usable copy of *integration*, or ``None`` when unauthenticated."""
        return integration

    async def _authorized_integration(self, integration_id: int) -> CalendarIntegration:
        """Load an explicitly named integration and verify ownership and type."""
        integration = await self.storage.get_calendar_integration(integration_id)
        if (
            integration is None
            or integration.user_id != self.user_id
            or integration.type != self.calendar_type
        ):
            raise CalendarAuthorizationError("Invalid calendar integration ID")
        if not integration.is_connected:
            raise CalendarNotAuthenticatedError("Calendar is not connected")
        return integration

    async def _target_integration(self, integration_id: int | None) -> CalendarIntegration | None:
        """Pick the integration a new event is written to.

        Priority: explicit id, the adapter's current integration, then any
        connected integration of this type.
        """
        if integration_id is not None:
            integration = await self._authorized_integration(integration_id)
        elif self.integration is not None and self.integration.is_connected:
            integration = self.integration
        else:
            if not await self.initialize():
                raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")
            assert self.integration is not None
            integration = self.integration

        usable = await self._ensure_credentials(integration)
        if usable is None:
            raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")
        return usable

    async def _owning_integration(self, event: Event) -> CalendarIntegration | None:
        """Return the connected, authenticated integration that owns *event*."""
        if event.calendar_integration_id is not None:
            integration = await self.storage.get_calendar_integration(
                event.calendar_integration_id
            )
            if integration is None or not integration.is_connected:
                raise CalendarNotAuthenticatedError("Calendar is not connected")
            if integration.user_id != self.user_id or integration.type != self.calendar_type:
                raise CalendarAuthorizationError("Invalid calendar integration ID")
        else:
            if not await self.initialize():
                raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")
            integration = self.integration
            assert integration is not None

        usable = await self._ensure_credentials(integration)
        if usable is None:
            raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")
        return usable

    def _check_event_access(self, event: Event, action: str) -> None:
        if event.user_id != self.user_id or event.calendar_type != self.calendar_type:
            raise CalendarAuthorizationError(f"Not authorized to {action} this event")

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    async def list_events(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        integration_id: int | None = None,
    ) -> list[Event]:
        """Return locally mirrored events of this provider in the window.

        Raises
        ------
        CalendarAuthorizationError
            An explicit integration id belongs to another user or type.
        CalendarNotAuthenticatedError
            No usable integration is connected.
        """
        if integration_id is not None:
            integration: CalendarIntegration | None = await self._authorized_integration(
                integration_id
            )
        else:
            if not await self.is_authenticated():
                raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")
            integration = self.integration

        events = await self.storage.get_events(self.user_id, start, end)
        return [
            event
            for event in events
            if event.calendar_type == self.calendar_type
            and (integration is None or event.calendar_integration_id == integration.id)
        ]

    async def create_event(self, draft: EventDraft) -> Event:
        """Create the event on the provider, then mirror it locally.

        A provider failure propagates and nothing is written locally.
        """
        integration = await self._target_integration(draft.calendar_integration_id)
        external_id = await self._create_remote(integration, draft)

        data = EventCreate(
            **draft.model_dump(exclude={"calendar_type", "calendar_integration_id"}),
            user_id=self.user_id,
            calendar_type=self.calendar_type,
            calendar_integration_id=integration.id if integration is not None else None,
            external_id=external_id,
        )
        event = await self.storage.create_event(data)
        logger.info(
            "Created %s event %s (integration=%s, external_id=%s)",
            self.name,
            event.id,
            event.calendar_integration_id,
            external_id,
        )
        return event

    async def update_event(self, event_id: int, update: EventUpdate) -> Event | None:
        """Apply a partial update; provider errors are logged, never fatal.

        Returns ``None`` when the event does not exist.
        """
        existing = await self.storage.get_event(event_id)
        if existing is None:
            return None
        self._check_event_access(existing, "update")

        fields = update.fields()
        existing.with_changes(fields)
        new_integration_id = fields.get("calendar_integration_id")
        if "calendar_integration_id" in fields and new_integration_id is None:
            if self.calendar_type != CalendarType.LOCAL:
                raise ValueError(f"{self.name} events must keep a calendar integration")
        elif (
            new_integration_id is not None
            and new_integration_id != existing.calendar_integration_id
        ):
            await self._authorized_integration(new_integration_id)

        integration = await self._owning_integration(existing)

        if existing.external_id is None:
            logger.info("Event %s has no external id; updating local storage only", event_id)
        elif integration is not None and REMOTE_UPDATE_FIELDS & fields.keys():
            try:
                await self._update_remote(integration, existing, fields)
            except CalendarProviderError as exc:
                logger.warning(
                    "Remote update of %s event %s failed; keeping local update: %s",
                    self.name,
                    event_id,
                    exc,
                )

        return await self.storage.update_event(event_id, fields)

    async def delete_event(self, event_id: int) -> bool:
        """Delete the event remotely (best effort) and locally.

        Returns ``False`` when the event does not exist.
        """
        existing = await self.storage.get_event(event_id)
        if existing is None:
            return False
        self._check_event_access(existing, "delete")

        integration = await self._owning_integration(existing)
        if existing.external_id is not None and integration is not None:
            try:
                await self._delete_remote(integration, existing)
            except CalendarProviderError as exc:
                logger.warning(
                    "Remote delete of %s event %s failed; deleting locally anyway: %s",
                    self.name,
                    event_id,
                    exc,
                )

        return await self.storage.delete_event(event_id)

    async def sync_events(self, integration_id: int | None = None) -> SyncResult:
        """Import provider events in the sync window that are not mirrored yet.

        One-way and additive: existing mirrors are never updated or deleted.
        Always stamps ``last_synced`` on the integration.
        """
        if integration_id is not None:
            integration = await self._authorized_integration(integration_id)
            usable = await self._ensure_credentials(integration)
        else:
            usable = self.integration if await self.is_authenticated() else None
        if usable is None:
            raise CalendarNotAuthenticatedError(f"Not authenticated with {self.name} calendar")

        now = datetime.now(UTC)
        window_start = now - timedelta(days=self.sync_config.past_days)
        window_end = now + timedelta(days=self.sync_config.future_days)
        remote_events = await self._fetch_remote(usable, window_start, window_end)

        known = {
            event.external_id
            for event in await self.storage.get_events(self.user_id)
            if event.calendar_type == self.calendar_type and event.external_id
        }
        created = 0
        for remote in remote_events:
            if remote.external_id is None or remote.external_id in known:
                continue
            await self.storage.create_event(remote)
            known.add(remote.external_id)
            created += 1

        await self.storage.update_calendar_integration(usable.id, last_synced=now)
        logger.info(
            "Synced %s integration %s: fetched=%d created=%d",
            self.name,
            usable.id,
            len(remote_events),
            created,
        )
        return SyncResult(
            integration_id=usable.id,
            fetched=len(remote_events),
            created=created,
            last_synced=now,
        )

    async def disconnect(self, integration_id: int | None = None) -> bool:
        """Mark the target (or current) integration disconnected.

        Provider-side tokens are not revoked.
        """
        if integration_id is not None:
            integration = await self.storage.get_calendar_integration(integration_id)
            if (
                integration is None
                or integration.user_id != self.user_id
                or integration.type != self.calendar_type
            ):
                raise CalendarAuthorizationError("Invalid calendar integration ID")
        else:
            if self.integration is None and not await self.initialize():
                return False
            integration = self.integration
            assert integration is not None

        await self.storage.update_calendar_integration(integration.id, is_connected=False)
        self.integration = None
        logger.info("Disconnected %s integration %s", self.name, integration.id)
        return True

    # ------------------------------------------------------------------
    # Provider hooks
    # ------------------------------------------------------------------

    @abc.abstractmethod
    async def _create_remote(
        self, integration: CalendarIntegration | None, draft: EventDraft
    ) -> str | None:
        """Create the event on the provider and return its external id."""

    @abc.abstractmethod
    async def _update_remote(
        self, integration: CalendarIntegration, event: Event, fields: dict[str, Any]
    ) -> None:
        """Push *fields* of *event* to the provider."""

    @abc.abstractmethod
    async def _delete_remote(self, integration: CalendarIntegration, event: Event) -> None:
        """Delete *event* on the provider."""

    @abc.abstractmethod
    async def _fetch_remote(
        self, integration: CalendarIntegration, start: datetime, end: datetime
    ) -> list[EventCreate]:
        """Fetch provider events in ``[start, end]`` as local insert payloads."""
