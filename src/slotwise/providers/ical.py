"""iCalendar feed adapter.

Feeds are registered by URL and have no token lifecycle.  Events written
against a feed are stored locally only, with a synthesized external id so
they are distinguishable from imported events.  Syncing stamps
``last_synced`` without fetching.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from slotwise.models import (
    CalendarIntegration,
    CalendarIntegrationCreate,
    CalendarType,
    Event,
    EventCreate,
    EventDraft,
)
from slotwise.providers.base import CalendarProvider

logger = logging.getLogger(__name__)

_FEED_SCHEMES = frozenset({"http", "https", "webcal", "webcals"})


def synthesize_external_id() -> str:
    """Return a unique ``ical_<millis>_<random>`` id for a locally written event."""
    return f"ical_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class ICalendarProvider(CalendarProvider):
    """Adapter for read-only iCalendar feed subscriptions."""

    calendar_type = CalendarType.ICAL

    async def connect(self, calendar_url: str, name: str | None = None) -> CalendarIntegration:
        """Register *calendar_url* as a new connected integration."""
        url = calendar_url.strip()
        parsed = urlparse(url)
        if parsed.scheme.lower() not in _FEED_SCHEMES or not parsed.netloc:
            raise ValueError(f"Invalid iCalendar feed URL: {calendar_url!r}")

        integration = await self.storage.create_calendar_integration(
            CalendarIntegrationCreate(
                user_id=self.user_id,
                type=self.calendar_type,
                name=(name or "").strip() or "iCalendar Feed",
                calendar_id=url,
                last_synced=datetime.now(UTC),
                is_connected=True,
                is_primary=False,
            )
        )
        self.integration = integration
        logger.info("Registered iCalendar feed integration %s", integration.id)
        return integration

    async def _create_remote(
        self, integration: CalendarIntegration | None, draft: EventDraft
    ) -> str | None:
        return synthesize_external_id()

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
