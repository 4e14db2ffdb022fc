"""Service wiring and FastAPI dependencies for the HTTP API.

Routers depend on :func:`get_services`, a stub that the application
lifespan (or a test) replaces through ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx
from fastapi import Header, HTTPException

from slotwise.bookings import BookingService
from slotwise.config import AppConfig
from slotwise.core.logging import set_user_context
from slotwise.db import Database
from slotwise.integrations import IntegrationService
from slotwise.models import CalendarType
from slotwise.orchestrator import EventOrchestrator
from slotwise.providers import CalendarProvider, build_provider
from slotwise.reminders import InProcessReminderService, ReminderService
from slotwise.storage import CalendarStorage, InMemoryStorage, PostgresStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    config: AppConfig
    storage: CalendarStorage
    http_client: httpx.AsyncClient
    reminders: ReminderService
    orchestrator: EventOrchestrator
    integrations: IntegrationService
    bookings: BookingService


def build_services(
    config: AppConfig,
    storage: CalendarStorage,
    http_client: httpx.AsyncClient,
    reminders: ReminderService | None = None,
) -> Services:
    """Assemble the service graph around one storage backend and HTTP client."""
    reminders = reminders or InProcessReminderService(storage)

    def provider_factory(calendar_type: CalendarType, user_id: int) -> CalendarProvider:
        return build_provider(
            calendar_type, user_id, storage, config=config, http_client=http_client
        )

    orchestrator = EventOrchestrator(storage, reminders, provider_factory)
    return Services(
        config=config,
        storage=storage,
        http_client=http_client,
        reminders=reminders,
        orchestrator=orchestrator,
        integrations=IntegrationService(storage, provider_factory, reminders),
        bookings=BookingService(storage, orchestrator),
    )


async def open_storage(config: AppConfig) -> CalendarStorage:
    """Open the configured storage backend, creating the schema for PostgreSQL."""
    if config.storage.backend == "postgres":
        assert config.storage.database_url is not None
        pool = await Database.from_url(config.storage.database_url).connect()
        storage = PostgresStorage(pool, owns_pool=True)
        await storage.ensure_schema()
        return storage
    logger.info("Using in-memory storage; data is lost on restart")
    return InMemoryStorage()


def get_services() -> Services:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("Services not initialized")


def get_user_id(x_user_id: int | None = Header(default=None, alias="X-User-Id")) -> int:
    """Return the acting user from the ``X-User-Id`` header."""
    if x_user_id is None or x_user_id < 1:
        raise HTTPException(status_code=401, detail="Missing or invalid X-User-Id header")
    set_user_context(x_user_id)
    return x_user_id
