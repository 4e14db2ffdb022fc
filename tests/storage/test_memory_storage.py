"""Tests for the in-memory storage backend."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from slotwise.models import (
    BookingCreate,
    BookingLinkCreate,
    CalendarType,
    EventCreate,
    Settings,
)

pytestmark = pytest.mark.unit

START = datetime(2031, 3, 3, 9, 0, tzinfo=UTC)


def _event(user_id: int = 1, offset_hours: int = 0, **overrides) -> EventCreate:
    start = START + timedelta(hours=offset_hours)
    data = {
        "user_id": user_id,
        "title": f"Event +{offset_hours}h",
        "start_time": start,
        "end_time": start + timedelta(hours=1),
    }
    data.update(overrides)
    return EventCreate(**data)


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class TestIntegrations:
    async def test_ids_are_sequential_and_scoped_by_user(self, storage, add_integration):
        first = await add_integration(user_id=1)
        second = await add_integration(user_id=2)
        third = await add_integration(user_id=1, calendar_type=CalendarType.OUTLOOK)

        assert (first.id, second.id, third.id) == (1, 2, 3)
        mine = await storage.get_calendar_integrations(1)
        assert [i.id for i in mine] == [1, 3]

    async def test_by_type(self, storage, add_integration):
        await add_integration(calendar_type=CalendarType.GOOGLE)
        outlook = await add_integration(calendar_type=CalendarType.OUTLOOK)

        found = await storage.get_calendar_integrations_by_type(1, CalendarType.OUTLOOK)
        assert [i.id for i in found] == [outlook.id]

    async def test_update_unknown_returns_none(self, storage):
        assert await storage.update_calendar_integration(99, is_primary=True) is None

    async def test_returned_copies_are_detached(self, storage, add_integration):
        integration = await add_integration()
        integration.name = "mutated"
        stored = await storage.get_calendar_integration(integration.id)
        assert stored.name != "mutated"

    async def test_delete_cascades_to_events(self, storage, add_integration):
        integration = await add_integration()
        await storage.create_event(
            _event(calendar_type=CalendarType.GOOGLE, calendar_integration_id=integration.id)
        )
        local = await storage.create_event(_event(offset_hours=2))

        assert await storage.delete_calendar_integration(integration.id)
        remaining = await storage.get_events(1)
        assert [e.id for e in remaining] == [local.id]
        assert not await storage.delete_calendar_integration(integration.id)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    async def test_events_ordered_by_start(self, storage):
        later = await storage.create_event(_event(offset_hours=5))
        earlier = await storage.create_event(_event(offset_hours=1))
        events = await storage.get_events(1)
        assert [e.id for e in events] == [earlier.id, later.id]

    async def test_window_requires_full_containment(self, storage):
        inside = await storage.create_event(_event(offset_hours=1))
        await storage.create_event(_event(offset_hours=3))  # ends after the window

        events = await storage.get_events(1, START, START + timedelta(hours=3, minutes=30))
        assert [e.id for e in events] == [inside.id]

    async def test_window_ignored_unless_both_bounds(self, storage):
        await storage.create_event(_event(offset_hours=1))
        await storage.create_event(_event(offset_hours=48))
        assert len(await storage.get_events(1, START, None)) == 2

    async def test_update_overwrites_named_fields(self, storage):
        event = await storage.create_event(_event(location="Room 1"))
        updated = await storage.update_event(event.id, {"title": "Renamed"})
        assert updated.title == "Renamed"
        assert updated.location == "Room 1"

    async def test_update_and_delete_missing(self, storage):
        assert await storage.update_event(42, {"title": "x"}) is None
        assert await storage.delete_event(42) is False

    async def test_other_users_events_not_listed(self, storage):
        await storage.create_event(_event(user_id=2))
        assert await storage.get_events(1) == []


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    async def test_upsert_creates_then_updates(self, storage):
        created = await storage.upsert_settings(1, default_calendar=CalendarType.OUTLOOK)
        assert created.default_calendar == CalendarType.OUTLOOK
        assert created.default_reminders == [15]

        updated = await storage.upsert_settings(1, default_calendar_integration_id=4)
        assert updated.default_calendar == CalendarType.OUTLOOK
        assert updated.default_calendar_integration_id == 4

    async def test_update_missing_settings(self, storage):
        assert await storage.update_settings(1, default_calendar_integration_id=2) is None

    async def test_create_settings(self, storage):
        await storage.create_settings(Settings(user_id=3, default_reminders=[5, 30]))
        settings = await storage.get_settings(3)
        assert settings.default_reminders == [5, 30]


# ---------------------------------------------------------------------------
# Booking links
# ---------------------------------------------------------------------------


class TestBookingLinks:
    async def test_slug_is_unique(self, storage):
        await storage.create_booking_link(
            BookingLinkCreate(user_id=1, slug="intro", title="Intro", duration=30)
        )
        with pytest.raises(ValueError, match="already in use"):
            await storage.create_booking_link(
                BookingLinkCreate(user_id=2, slug="intro", title="Other", duration=30)
            )

    async def test_bookings_by_link_ordered(self, storage):
        link = await storage.create_booking_link(
            BookingLinkCreate(user_id=1, slug="intro", title="Intro", duration=30)
        )
        common = {"booking_link_id": link.id, "name": "Ada", "email": "ada@example.com"}
        late = await storage.create_booking(
            BookingCreate(
                **common,
                start_time=START + timedelta(hours=2),
                end_time=START + timedelta(hours=2, minutes=30),
            )
        )
        early = await storage.create_booking(
            BookingCreate(**common, start_time=START, end_time=START + timedelta(minutes=30))
        )

        bookings = await storage.get_bookings(link.id)
        assert [b.id for b in bookings] == [early.id, late.id]
        assert bookings[0].status == "confirmed"
        assert bookings[0].created_at.tzinfo is not None
        assert await storage.get_bookings(link.id + 1) == []
