"""slotwise HTTP API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that opens storage, the shared httpx client and the
  reminder service, and closes them on shutdown
- Health endpoint at GET /api/health
- Event, integration, sync and booking routers
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slotwise import __version__
from slotwise.api.deps import Services, build_services, get_services, open_storage
from slotwise.api.middleware import register_error_handlers
from slotwise.api.routers.bookings import public_router as public_booking_router
from slotwise.api.routers.bookings import router as booking_links_router
from slotwise.api.routers.events import router as events_router
from slotwise.api.routers.integrations import router as integrations_router
from slotwise.api.routers.sync import router as sync_router
from slotwise.config import AppConfig, load_config
from slotwise.storage import CalendarStorage

logger = logging.getLogger(__name__)


def _make_lifespan(config: AppConfig, storage: CalendarStorage | None):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle for storage, HTTP client and reminders.

        Skipped when the services were injected up front (tests).
        """
        if get_services in app.dependency_overrides:
            yield
            return

        owns_storage = storage is None
        active_storage = storage if storage is not None else await open_storage(config)
        http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
        services = build_services(config, active_storage, http_client)
        app.dependency_overrides[get_services] = lambda: services
        logger.info(
            "slotwise API started (storage=%s, google=%s, outlook=%s)",
            type(active_storage).__name__,
            config.google is not None,
            config.outlook is not None,
        )

        yield

        app.dependency_overrides.pop(get_services, None)
        await services.reminders.shutdown()
        await http_client.aclose()
        if owns_storage:
            await active_storage.close()

    return lifespan


def create_app(
    config: AppConfig | None = None,
    storage: CalendarStorage | None = None,
    *,
    services: Services | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application configuration.  Loaded with :func:`load_config` when
        omitted.
    storage:
        Storage backend to use instead of the configured one.  The app does
        not close storage it did not open.
    services:
        A fully built service graph; when given, the lifespan opens nothing.
    """
    if config is None:
        config = services.config if services is not None else load_config()

    app = FastAPI(
        title="slotwise API",
        version=__version__,
        lifespan=_make_lifespan(config, storage),
    )
    app.router.redirect_slashes = False
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    if services is not None:
        app.dependency_overrides[get_services] = lambda: services

    app.include_router(events_router)
    app.include_router(integrations_router)
    app.include_router(sync_router)
    app.include_router(booking_links_router)
    app.include_router(public_booking_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
