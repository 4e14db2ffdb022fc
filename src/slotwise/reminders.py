"""Reminder scheduling hooks called after event create, update and delete.

``ReminderService`` is the fire-and-forget interface the orchestrator uses.
``InProcessReminderService`` arms one event-loop timer per reminder offset
and hands due reminders to a notifier callback.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from slotwise.models import Event
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)

ReminderNotifier = Callable[[Event, int], Awaitable[None] | None]


class ReminderService(abc.ABC):
    """Schedules and clears reminders for events."""

    @abc.abstractmethod
    async def schedule_reminders(self, event_id: int) -> None:
        """(Re)arm all reminders for an event, replacing existing ones."""

    @abc.abstractmethod
    async def clear_reminders(self, event_id: int) -> None:
        """Cancel any pending reminders for an event."""

    async def shutdown(self) -> None:  # noqa: B027
        """Cancel everything still pending."""


async def log_reminder(event: Event, minutes_before: int) -> None:
    """Default notifier: log the due reminder."""
    logger.info(
        "Reminder: event %s (%s) starts in %d minute(s)",
        event.id,
        event.title,
        minutes_before,
    )


class InProcessReminderService(ReminderService):
    """Timer-based reminders on the running event loop.

    Offsets come from the event's own ``reminders`` or, when unset, the
    owner's ``default_reminders`` setting.  Offsets whose fire time has
    already passed are skipped.
    """

    def __init__(
        self,
        storage: CalendarStorage,
        notifier: ReminderNotifier | None = None,
    ) -> None:
        self._storage = storage
        self._notifier = notifier or log_reminder
        self._handles: dict[int, dict[int, asyncio.TimerHandle]] = {}
        self._tasks: set[asyncio.Task] = set()

    def pending(self, event_id: int) -> int:
        """Number of armed reminders for an event."""
        return len(self._handles.get(event_id, {}))

    async def _offsets_for(self, event: Event) -> list[int]:
        if event.reminders is not None:
            return sorted(set(event.reminders))
        settings = await self._storage.get_settings(event.user_id)
        return sorted(set(settings.default_reminders)) if settings is not None else [15]

    async def schedule_reminders(self, event_id: int) -> None:
        await self.clear_reminders(event_id)
        event = await self._storage.get_event(event_id)
        if event is None:
            logger.debug("Not scheduling reminders for missing event %s", event_id)
            return

        loop = asyncio.get_running_loop()
        now = datetime.now(UTC)
        handles: dict[int, asyncio.TimerHandle] = {}
        for minutes in await self._offsets_for(event):
            fire_at = event.start_time - timedelta(minutes=minutes)
            delay = (fire_at - now).total_seconds()
            if delay < 0:
                continue
            handles[minutes] = loop.call_later(delay, self._fire, event_id, minutes)
        if handles:
            self._handles[event_id] = handles
        logger.debug("Scheduled %d reminder(s) for event %s", len(handles), event_id)

    async def clear_reminders(self, event_id: int) -> None:
        for handle in self._handles.pop(event_id, {}).values():
            handle.cancel()

    def _fire(self, event_id: int, minutes: int) -> None:
        handles = self._handles.get(event_id)
        if handles is not None:
            handles.pop(minutes, None)
            if not handles:
                del self._handles[event_id]
        task = asyncio.get_running_loop().create_task(self._deliver(event_id, minutes))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event_id: int, minutes: int) -> None:
        event = await self._storage.get_event(event_id)
        if event is None:
            return
        try:
            result = self._notifier(event, minutes)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Reminder notifier failed for event %s", event_id)

    async def shutdown(self) -> None:
        for event_id in list(self._handles):
            await self.clear_reminders(event_id)
        for task in list(self._tasks):
            task.cancel()
