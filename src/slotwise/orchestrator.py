"""Event orchestration across providers.

Picks the calendar an operation targets, runs it through the owning
provider adapter, degrades to local-only writes when the provider is not
authenticated, and keeps reminders in step.

Target precedence for new events (see :func:`resolve_target_integration`):

1. explicit ``calendar_integration_id`` (must belong to the acting user)
2. ``Settings.default_calendar_integration_id``
3. the primary integration of ``Settings.default_calendar``
4. a local-only event

Moving an event to a calendar of a different type is a two-phase operation:
create in the target, then delete from the source.  When the second phase
fails the source record is removed locally as compensation, so the user
never sees the event twice.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TypeVar

from pydantic import BaseModel, Field

from slotwise.errors import (
    CalendarAuthorizationError,
    CalendarNotAuthenticatedError,
    CalendarProviderError,
    EventNotFoundError,
)
from slotwise.models import (
    INTEGRATION_TYPES,
    CalendarIntegration,
    CalendarType,
    Event,
    EventCreate,
    EventDraft,
    EventUpdate,
    Settings,
    SyncResult,
)
from slotwise.providers.base import CalendarProvider
from slotwise.reminders import ReminderService
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderFactory = Callable[[CalendarType, int], CalendarProvider]


class TargetKind(StrEnum):
    """How the target calendar of a new event was chosen."""

    EXPLICIT = "explicit"
    DEFAULT = "default"
    PRIMARY = "primary"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class ResolvedTarget:
    """The calendar a new event should be written to."""

    kind: TargetKind
    integration: CalendarIntegration | None = None

    @property
    def calendar_type(self) -> CalendarType:
        return self.integration.type if self.integration is not None else CalendarType.LOCAL

    @property
    def integration_id(self) -> int | None:
        return self.integration.id if self.integration is not None else None


def resolve_target_integration(
    explicit_id: int | None,
    settings: Settings | None,
    user_integrations: Sequence[CalendarIntegration],
) -> ResolvedTarget:
    """Choose the target calendar for a new event.

    *user_integrations* must be the acting user's integrations; an explicit
    id outside that set raises :class:`CalendarAuthorizationError`.  A stale
    default integration id falls through to the primary lookup.  Connection
    state is not considered here; unauthenticated targets are handled by
    the local fallback.
    """
    by_id = {integration.id: integration for integration in user_integrations}

    if explicit_id is not None:
        integration = by_id.get(explicit_id)
        if integration is None:
            raise CalendarAuthorizationError("Calendar integration does not belong to this user")
        return ResolvedTarget(TargetKind.EXPLICIT, integration)

    if settings is not None and settings.default_calendar_integration_id is not None:
        integration = by_id.get(settings.default_calendar_integration_id)
        if integration is not None:
            return ResolvedTarget(TargetKind.DEFAULT, integration)

    default_type = settings.default_calendar if settings is not None else CalendarType.GOOGLE
    primary = next(
        (
            integration
            for integration in user_integrations
            if integration.type == default_type and integration.is_primary
        ),
        None,
    )
    if primary is not None:
        return ResolvedTarget(TargetKind.PRIMARY, primary)

    return ResolvedTarget(TargetKind.LOCAL_ONLY)


async def with_local_fallback(
    provider: CalendarProvider,
    integration_id: int | None,
    remote: Callable[[], Awaitable[T]],
    local: Callable[[], Awaitable[T]],
) -> T:
    """Run *remote* when *provider* is authenticated, otherwise *local*.

    A ``CalendarNotAuthenticatedError`` raised by *remote* also selects the
    local path.  Every other error propagates.
    """
    if not await provider.is_authenticated(integration_id):
        logger.info(
            "%s integration %s is not authenticated; using local storage",
            provider.name,
            integration_id,
        )
        return await local()
    try:
        return await remote()
    except CalendarNotAuthenticatedError as exc:
        logger.info("%s became unauthenticated (%s); using local storage", provider.name, exc)
        return await local()


class SyncSummary(BaseModel):
    """Aggregate outcome of syncing one or more integrations."""

    calendar_type: CalendarType
    synced_count: int
    total_count: int
    failed: list[int] = Field(default_factory=list)
    results: list[SyncResult] = Field(default_factory=list)


class EventOrchestrator:
    """Routes event operations to provider adapters with local fallback."""

    def __init__(
        self,
        storage: CalendarStorage,
        reminders: ReminderService,
        provider_factory: ProviderFactory,
    ) -> None:
        self.storage = storage
        self.reminders = reminders
        self._provider_factory = provider_factory

    def provider(self, calendar_type: CalendarType, user_id: int) -> CalendarProvider:
        return self._provider_factory(calendar_type, user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        return await self.storage.get_events(user_id, start, end)

    async def get_event(self, user_id: int, event_id: int) -> Event:
        event = await self.storage.get_event(event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        if event.user_id != user_id:
            raise CalendarAuthorizationError("Not authorized to access this event")
        return event

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def resolve_target(self, user_id: int, draft: EventDraft) -> ResolvedTarget:
        if draft.calendar_type == CalendarType.LOCAL and draft.calendar_integration_id is None:
            return ResolvedTarget(TargetKind.LOCAL_ONLY)
        settings = await self.storage.get_settings(user_id)
        integrations = await self.storage.get_calendar_integrations(user_id)
        return resolve_target_integration(draft.calendar_integration_id, settings, integrations)

    async def create_event(self, user_id: int, draft: EventDraft) -> Event:
        """Create an event in the resolved target calendar and arm reminders."""
        target = await self.resolve_target(user_id, draft)
        event = await self._create_in_target(user_id, draft, target)
        logger.info(
            "Event %s created via %s target (%s, integration=%s)",
            event.id,
            target.kind,
            event.calendar_type,
            event.calendar_integration_id,
        )
        await self.reminders.schedule_reminders(event.id)
        return event

    async def _create_in_target(
        self, user_id: int, draft: EventDraft, target: ResolvedTarget
    ) -> Event:
        integration = target.integration
        if integration is None:
            local_provider = self.provider(CalendarType.LOCAL, user_id)
            return await local_provider.create_event(
                draft.model_copy(update={"calendar_integration_id": None, "calendar_type": None})
            )

        provider = self.provider(integration.type, user_id)
        pinned = draft.model_copy(update={"calendar_integration_id": integration.id})

        async def local() -> Event:
            return await self.storage.create_event(
                EventCreate(
                    **draft.model_dump(exclude={"calendar_type", "calendar_integration_id"}),
                    user_id=user_id,
                    calendar_type=integration.type,
                    calendar_integration_id=integration.id,
                )
            )

        return await with_local_fallback(
            provider,
            integration.id,
            lambda: provider.create_event(pinned),
            local,
        )

    # ------------------------------------------------------------------
    # Update and move
    # ------------------------------------------------------------------

    async def update_event(self, user_id: int, event_id: int, update: EventUpdate) -> Event:
        """Update an event; a change of calendar type becomes a move."""
        existing = await self.get_event(user_id, event_id)
        fields = update.fields()
        existing.with_changes(fields)

        if "calendar_integration_id" in fields:
            new_id = fields["calendar_integration_id"]
            if new_id is None and existing.calendar_type != CalendarType.LOCAL:
                return await self.move_event(existing, None, update)
            if new_id is not None and new_id != existing.calendar_integration_id:
                target = await self.storage.get_calendar_integration(new_id)
                if target is None or target.user_id != user_id:
                    raise CalendarAuthorizationError(
                        "Calendar integration does not belong to this user"
                    )
                if target.type != existing.calendar_type:
                    return await self.move_event(existing, target, update)

        provider = self.provider(existing.calendar_type, user_id)
        if existing.calendar_type == CalendarType.LOCAL:
            updated = await provider.update_event(event_id, update)
        else:

            async def local() -> Event | None:
                return await self.storage.update_event(event_id, fields)

            updated = await with_local_fallback(
                provider,
                existing.calendar_integration_id,
                lambda: provider.update_event(event_id, update),
                local,
            )
        if updated is None:
            raise EventNotFoundError(event_id)

        if "start_time" in fields or "reminders" in fields:
            await self.reminders.schedule_reminders(event_id)
        return updated

    async def move_event(
        self,
        existing: Event,
        target: CalendarIntegration | None,
        update: EventUpdate | None = None,
    ) -> Event:
        """Move *existing* to *target* (``None`` = local-only) across providers.

        Phase 1 creates the event in the target calendar without the source
        ``id``/``external_id``.  Phase 2 deletes the source through its own
        adapter; if that raises, the source record is deleted locally.
        """
        target_label = target.id if target is not None else "local"
        move_key = f"move:{existing.id}:{target_label}"

        fields = update.fields() if update is not None else {}
        fields.pop("calendar_integration_id", None)
        draft_fields = set(EventDraft.model_fields) - {"calendar_type", "calendar_integration_id"}
        draft = EventDraft.model_validate(
            {
                **existing.model_dump(include=draft_fields),
                **fields,
                "calendar_integration_id": target.id if target is not None else None,
                "calendar_type": None if target is not None else CalendarType.LOCAL,
            }
        )
        resolved = (
            ResolvedTarget(TargetKind.EXPLICIT, target)
            if target is not None
            else ResolvedTarget(TargetKind.LOCAL_ONLY)
        )

        logger.info(
            "Moving event %s from %s to %s (key=%s)",
            existing.id,
            existing.calendar_type,
            resolved.calendar_type,
            move_key,
        )
        created = await self._create_in_target(existing.user_id, draft, resolved)
        logger.info("Move %s phase 1 done: created event %s", move_key, created.id)

        try:
            await self._delete_via_provider(existing)
        except Exception as exc:
            logger.warning(
                "Move %s phase 2 failed; removing source event %s locally: %s",
                move_key,
                existing.id,
                exc,
            )
            await self.storage.delete_event(existing.id)
        else:
            logger.info("Move %s phase 2 done: removed source event %s", move_key, existing.id)

        await self.reminders.clear_reminders(existing.id)
        await self.reminders.schedule_reminders(created.id)
        return created

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_event(self, user_id: int, event_id: int) -> None:
        existing = await self.get_event(user_id, event_id)
        await self._delete_via_provider(existing)
        await self.reminders.clear_reminders(event_id)

    async def _delete_via_provider(self, event: Event) -> bool:
        provider = self.provider(event.calendar_type, event.user_id)
        if event.calendar_type == CalendarType.LOCAL:
            return await provider.delete_event(event.id)
        return await with_local_fallback(
            provider,
            event.calendar_integration_id,
            lambda: provider.delete_event(event.id),
            lambda: self.storage.delete_event(event.id),
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(
        self,
        user_id: int,
        calendar_type: CalendarType | str,
        integration_id: int | None = None,
    ) -> SyncSummary:
        """Import provider events for one integration or all of one type.

        A named integration must belong to the user and match the type; its
        failure propagates.  When syncing all integrations of a type, each
        failure is logged and reported in ``failed``.
        """
        calendar_type = CalendarType(calendar_type)
        if calendar_type not in INTEGRATION_TYPES:
            raise ValueError(f"Cannot sync calendar type: {calendar_type}")

        if integration_id is not None:
            integration = await self.storage.get_calendar_integration(integration_id)
            if (
                integration is None
                or integration.user_id != user_id
                or integration.type != calendar_type
            ):
                raise CalendarAuthorizationError("Invalid calendar integration ID")
            result = await self.provider(calendar_type, user_id).sync_events(integration_id)
            return SyncSummary(
                calendar_type=calendar_type, synced_count=1, total_count=1, results=[result]
            )

        targets = [
            integration
            for integration in await self.storage.get_calendar_integrations_by_type(
                user_id, calendar_type
            )
            if integration.is_connected
        ]
        results: list[SyncResult] = []
        failed: list[int] = []
        for integration in targets:
            provider = self.provider(calendar_type, user_id)
            try:
                results.append(await provider.sync_events(integration.id))
            except (CalendarNotAuthenticatedError, CalendarProviderError) as exc:
                logger.warning(
                    "Sync of %s integration %s failed: %s", calendar_type, integration.id, exc
                )
                failed.append(integration.id)

        return SyncSummary(
            calendar_type=calendar_type,
            synced_count=len(results),
            total_count=len(targets),
            failed=failed,
            results=results,
        )
