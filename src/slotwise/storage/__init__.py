"""Persistence backends for integrations, events, settings and bookings."""

from slotwise.storage.base import CalendarStorage
from slotwise.storage.memory import InMemoryStorage
from slotwise.storage.postgres import PostgresStorage

__all__ = ["CalendarStorage", "InMemoryStorage", "PostgresStorage"]
