"""In-memory storage backend for development and tests."""

from __future__ import annotations

import itertools
from datetime import UTC, datetime
from typing import Any

from slotwise.models import (
    Booking,
    BookingCreate,
    BookingLink,
    BookingLinkCreate,
    CalendarIntegration,
    CalendarIntegrationCreate,
    Event,
    EventCreate,
    Settings,
)
from slotwise.storage.base import CalendarStorage


class InMemoryStorage(CalendarStorage):
    """Dict-backed storage; ids are allocated from per-table counters.

    Records are stored as pydantic models and copied on the way in and out
    so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._integrations: dict[int, CalendarIntegration] = {}
        self._events: dict[int, Event] = {}
        self._settings: dict[int, Settings] = {}
        self._booking_links: dict[int, BookingLink] = {}
        self._bookings: dict[int, Booking] = {}
        self._integration_ids = itertools.count(1)
        self._event_ids = itertools.count(1)
        self._booking_link_ids = itertools.count(1)
        self._booking_ids = itertools.count(1)

    # -- Calendar integrations ---------------------------------------------

    async def get_calendar_integrations(self, user_id: int) -> list[CalendarIntegration]:
        return [
            integration.model_copy()
            for integration_id, integration in sorted(self._integrations.items())
            if integration.user_id == user_id
        ]

    async def get_calendar_integration(self, integration_id: int) -> CalendarIntegration | None:
        integration = self._integrations.get(integration_id)
        return integration.model_copy() if integration is not None else None

    async def create_calendar_integration(
        self, data: CalendarIntegrationCreate
    ) -> CalendarIntegration:
        integration = CalendarIntegration(id=next(self._integration_ids), **data.model_dump())
        self._integrations[integration.id] = integration
        return integration.model_copy()

    async def update_calendar_integration(
        self, integration_id: int, **fields: Any
    ) -> CalendarIntegration | None:
        existing = self._integrations.get(integration_id)
        if existing is None:
            return None
        updated = CalendarIntegration.model_validate({**existing.model_dump(), **fields})
        self._integrations[integration_id] = updated
        return updated.model_copy()

    async def delete_calendar_integration(self, integration_id: int) -> bool:
        if self._integrations.pop(integration_id, None) is None:
            return False
        await self.delete_events_by_calendar_integration(integration_id)
        return True

    # -- Events -------------------------------------------------------------

    async def get_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        events = [event for event in self._events.values() if event.user_id == user_id]
        if start is not None and end is not None:
            events = [
                event for event in events if event.start_time >= start and event.end_time <= end
            ]
        return [event.model_copy(deep=True) for event in sorted(events, key=_event_sort_key)]

    async def get_event(self, event_id: int) -> Event | None:
        event = self._events.get(event_id)
        return event.model_copy(deep=True) if event is not None else None

    async def create_event(self, data: EventCreate) -> Event:
        event = Event(id=next(self._event_ids), **data.model_dump())
        self._events[event.id] = event
        return event.model_copy(deep=True)

    async def update_event(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        existing = self._events.get(event_id)
        if existing is None:
            return None
        updated = existing.with_changes(fields)
        self._events[event_id] = updated
        return updated.model_copy(deep=True)

    async def delete_event(self, event_id: int) -> bool:
        return self._events.pop(event_id, None) is not None

    async def delete_events_by_calendar_integration(self, integration_id: int) -> int:
        doomed = [
            event_id
            for event_id, event in self._events.items()
            if event.calendar_integration_id == integration_id
        ]
        for event_id in doomed:
            del self._events[event_id]
        return len(doomed)

    # -- Settings -----------------------------------------------------------

    async def get_settings(self, user_id: int) -> Settings | None:
        settings = self._settings.get(user_id)
        return settings.model_copy(deep=True) if settings is not None else None

    async def create_settings(self, settings: Settings) -> Settings:
        self._settings[settings.user_id] = settings.model_copy(deep=True)
        return settings.model_copy(deep=True)

    async def update_settings(self, user_id: int, **fields: Any) -> Settings | None:
        existing = self._settings.get(user_id)
        if existing is None:
            return None
        updated = Settings.model_validate({**existing.model_dump(), **fields})
        self._settings[user_id] = updated
        return updated.model_copy(deep=True)

    # -- Booking links and bookings ------------------------------------------

    async def create_booking_link(self, data: BookingLinkCreate) -> BookingLink:
        if any(link.slug == data.slug for link in self._booking_links.values()):
            raise ValueError(f"Booking link slug already in use: {data.slug}")
        link = BookingLink(id=next(self._booking_link_ids), **data.model_dump())
        self._booking_links[link.id] = link
        return link.model_copy()

    async def get_booking_link(self, link_id: int) -> BookingLink | None:
        link = self._booking_links.get(link_id)
        return link.model_copy() if link is not None else None

    async def get_booking_link_by_slug(self, slug: str) -> BookingLink | None:
        for link in self._booking_links.values():
            if link.slug == slug:
                return link.model_copy()
        return None

    async def get_booking_links(self, user_id: int) -> list[BookingLink]:
        return [
            link.model_copy()
            for _, link in sorted(self._booking_links.items())
            if link.user_id == user_id
        ]

    async def create_booking(self, data: BookingCreate) -> Booking:
        booking = Booking(
            id=next(self._booking_ids),
            created_at=datetime.now(UTC),
            **data.model_dump(),
        )
        self._bookings[booking.id] = booking
        return booking.model_copy()

    async def get_booking(self, booking_id: int) -> Booking | None:
        booking = self._bookings.get(booking_id)
        return booking.model_copy() if booking is not None else None

    async def get_bookings(self, booking_link_id: int) -> list[Booking]:
        bookings = [b for b in self._bookings.values() if b.booking_link_id == booking_link_id]
        return [b.model_copy() for b in sorted(bookings, key=lambda b: (b.start_time, b.id))]


def _event_sort_key(event: Event) -> tuple[datetime, int]:
    return (event.start_time, event.id)
