"""Tests for the in-process reminder service."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from slotwise.models import EventCreate, Settings
from slotwise.reminders import InProcessReminderService

pytestmark = pytest.mark.unit


async def _event(storage, *, starts_in: timedelta, reminders=None, user_id=1):
    start = datetime.now(UTC) + starts_in
    return await storage.create_event(
        EventCreate(
            user_id=user_id,
            title="Call",
            start_time=start,
            end_time=start + timedelta(minutes=30),
            reminders=reminders,
        )
    )


class TestScheduling:
    async def test_event_offsets_used(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1), reminders=[10, 60, 10])

        await service.schedule_reminders(event.id)

        assert service.pending(event.id) == 2
        await service.shutdown()

    async def test_settings_defaults_used_when_unset(self, storage):
        await storage.create_settings(Settings(user_id=1, default_reminders=[5, 15, 30]))
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1))

        await service.schedule_reminders(event.id)

        assert service.pending(event.id) == 3
        await service.shutdown()

    async def test_builtin_default_without_settings(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1))
        await service.schedule_reminders(event.id)
        assert service.pending(event.id) == 1
        await service.shutdown()

    async def test_past_offsets_skipped(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(minutes=20), reminders=[10, 60])

        await service.schedule_reminders(event.id)

        assert service.pending(event.id) == 1
        await service.shutdown()

    async def test_empty_reminders_schedule_nothing(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1), reminders=[])
        await service.schedule_reminders(event.id)
        assert service.pending(event.id) == 0

    async def test_missing_event(self, storage):
        service = InProcessReminderService(storage)
        await service.schedule_reminders(404)
        assert service.pending(404) == 0

    async def test_reschedule_replaces(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1), reminders=[10, 20])
        await service.schedule_reminders(event.id)
        await storage.update_event(event.id, {"reminders": [45]})

        await service.schedule_reminders(event.id)

        assert service.pending(event.id) == 1
        await service.shutdown()

    async def test_clear(self, storage):
        service = InProcessReminderService(storage)
        event = await _event(storage, starts_in=timedelta(days=1), reminders=[10])
        await service.schedule_reminders(event.id)

        await service.clear_reminders(event.id)

        assert service.pending(event.id) == 0


class TestDelivery:
    async def test_due_reminder_reaches_notifier(self, storage):
        delivered: list[tuple[int, int]] = []

        async def notifier(event, minutes):
            delivered.append((event.id, minutes))

        service = InProcessReminderService(storage, notifier)
        # Fires roughly 50ms from now.
        event = await _event(
            storage, starts_in=timedelta(minutes=1, milliseconds=50), reminders=[1]
        )
        await service.schedule_reminders(event.id)

        for _ in range(100):
            if delivered:
                break
            await asyncio.sleep(0.01)

        assert delivered == [(event.id, 1)]
        assert service.pending(event.id) == 0

    async def test_notifier_errors_are_contained(self, storage):
        calls: list[int] = []

        def notifier(event, minutes):
            calls.append(minutes)
            raise RuntimeError("smtp down")

        service = InProcessReminderService(storage, notifier)
        event = await _event(
            storage, starts_in=timedelta(minutes=1, milliseconds=20), reminders=[1]
        )
        await service.schedule_reminders(event.id)

        for _ in range(100):
            if calls:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0)

        assert calls == [1]
