"""Local-only calendar: events that are never mirrored to a provider."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from slotwise.models import CalendarIntegration, CalendarType, Event, EventCreate, EventDraft
from slotwise.providers.base import CalendarProvider


class LocalCalendarProvider(CalendarProvider):
    """Always-authenticated provider that writes to the local store only."""

    calendar_type = CalendarType.LOCAL

    async def initialize(self, integration_id: int | None = None) -> bool:
        self.integration = None
        return integration_id is None

    async def _target_integration(self, integration_id: int | None) -> CalendarIntegration | None:
        if integration_id is not None:
            raise ValueError("local events cannot target a calendar integration")
        return None

    async def _owning_integration(self, event: Event) -> CalendarIntegration | None:
        return None

    async def sync_events(self, integration_id: int | None = None):
        raise ValueError("the local calendar has nothing to sync")

    async def disconnect(self, integration_id: int | None = None) -> bool:
        return False

    async def _create_remote(
        self, integration: CalendarIntegration | None, draft: EventDraft
    ) -> str | None:
        return None

    async def _update_remote(
        self, integration: CalendarIntegration, event: Event, fields: dict[str, Any]
    ) -> None:
        return None

    async def _delete_remote(self, integration: CalendarIntegration, event: Event) -> None:
        return None

    async def _fetch_remote(
        self, integration: CalendarIntegration, start: datetime, end: datetime
    ) -> list[EventCreate]:
        return []
