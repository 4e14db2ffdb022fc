"""Storage interface for integrations, events, settings and bookings.

Backends are plain CRUD keyed by numeric ids with "last write wins"
semantics.  There is no optimistic concurrency control: an update reads
nothing back and simply overwrites the named fields.
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any

from slotwise.models import (
    Booking,
    BookingCreate,
    BookingLink,
    BookingLinkCreate,
    CalendarIntegration,
    CalendarIntegrationCreate,
    CalendarType,
    Event,
    EventCreate,
    Settings,
)


class CalendarStorage(abc.ABC):
    """Abstract persistence layer used by providers and the orchestrator."""

    # -- Calendar integrations ---------------------------------------------

    @abc.abstractmethod
    async def get_calendar_integrations(self, user_id: int) -> list[CalendarIntegration]:
        """Return all integrations owned by *user_id*, ordered by id."""

    @abc.abstractmethod
    async def get_calendar_integration(self, integration_id: int) -> CalendarIntegration | None:
        """Return one integration or ``None``."""

    @abc.abstractmethod
    async def create_calendar_integration(
        self, data: CalendarIntegrationCreate
    ) -> CalendarIntegration:
        """Insert a new integration row."""

    @abc.abstractmethod
    async def update_calendar_integration(
        self, integration_id: int, **fields: Any
    ) -> CalendarIntegration | None:
        """Overwrite the named fields; ``None`` when the row does not exist."""

    @abc.abstractmethod
    async def delete_calendar_integration(self, integration_id: int) -> bool:
        """Hard-delete an integration and every event it owns."""

    async def get_calendar_integrations_by_type(
        self, user_id: int, calendar_type: CalendarType
    ) -> list[CalendarIntegration]:
        """Return the user's integrations of one type, ordered by id."""
        integrations = await self.get_calendar_integrations(user_id)
        return [integration for integration in integrations if integration.type == calendar_type]

    # -- Events -------------------------------------------------------------

    @abc.abstractmethod
    async def get_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        """Return the user's events, ordered by start time.

        When both *start* and *end* are given only events that lie entirely
        inside the window (``start_time >= start`` and ``end_time <= end``)
        are returned.
        """

    @abc.abstractmethod
    async def get_event(self, event_id: int) -> Event | None:
        """Return one event or ``None``."""

    @abc.abstractmethod
    async def create_event(self, data: EventCreate) -> Event:
        """Insert a new event."""

    @abc.abstractmethod
    async def update_event(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        """Overwrite the named fields; ``None`` when the event does not exist."""

    @abc.abstractmethod
    async def delete_event(self, event_id: int) -> bool:
        """Delete one event; ``False`` when it did not exist."""

    @abc.abstractmethod
    async def delete_events_by_calendar_integration(self, integration_id: int) -> int:
        """Delete every event owned by an integration; returns the count."""

    # -- Settings -----------------------------------------------------------

    @abc.abstractmethod
    async def get_settings(self, user_id: int) -> Settings | None:
        """Return the user's settings or ``None`` when never created."""

    @abc.abstractmethod
    async def create_settings(self, settings: Settings) -> Settings:
        """Insert settings for a user."""

    @abc.abstractmethod
    async def update_settings(self, user_id: int, **fields: Any) -> Settings | None:
        """Overwrite the named settings fields."""

    async def upsert_settings(self, user_id: int, **fields: Any) -> Settings:
        """Update the user's settings, creating them first when missing."""
        existing = await self.get_settings(user_id)
        if existing is None:
            return await self.create_settings(Settings(user_id=user_id, **fields))
        updated = await self.update_settings(user_id, **fields)
        assert updated is not None
        return updated

    # -- Booking links and bookings ------------------------------------------

    @abc.abstractmethod
    async def create_booking_link(self, data: BookingLinkCreate) -> BookingLink:
        """Insert a booking link; slugs are globally unique."""

    @abc.abstractmethod
    async def get_booking_link(self, link_id: int) -> BookingLink | None:
        """Return one booking link or ``None``."""

    @abc.abstractmethod
    async def get_booking_link_by_slug(self, slug: str) -> BookingLink | None:
        """Resolve a public slug to its booking link."""

    @abc.abstractmethod
    async def get_booking_links(self, user_id: int) -> list[BookingLink]:
        """Return the user's booking links."""

    @abc.abstractmethod
    async def create_booking(self, data: BookingCreate) -> Booking:
        """Insert a booking."""

    @abc.abstractmethod
    async def get_booking(self, booking_id: int) -> Booking | None:
        """Return one booking or ``None``."""

    @abc.abstractmethod
    async def get_bookings(self, booking_link_id: int) -> list[Booking]:
        """Return the bookings made through one link, earliest first."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""
