"""Shared fixtures for the slotwise test suite.

Provider HTTP traffic is served by :class:`FakeProviderApi` behind an
``httpx.MockTransport``; it implements just enough of Google Calendar v3,
Microsoft Graph and the OAuth token endpoints for the adapters.
"""

from __future__ import annotations

import itertools
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from slotwise.api.deps import Services, build_services
from slotwise.config import AppConfig, OAuthAppConfig
from slotwise.integrations import _clear_state_store
from slotwise.models import (
    CalendarIntegration,
    CalendarIntegrationCreate,
    CalendarType,
    EventDraft,
)
from slotwise.oauth import GOOGLE_TOKEN_URL, MICROSOFT_TOKEN_URL
from slotwise.providers.google import GOOGLE_CALENDAR_API_BASE_URL
from slotwise.providers.outlook import GRAPH_API_BASE_URL
from slotwise.reminders import ReminderService
from slotwise.storage import InMemoryStorage

# Far enough ahead that reminder offsets are never in the past.
EVENT_START = datetime(2031, 3, 3, 9, 0, tzinfo=UTC)


class RecordingReminders(ReminderService):
    """Reminder service that only records the hook calls."""

    def __init__(self) -> None:
        self.scheduled: list[int] = []
        self.cleared: list[int] = []

    async def schedule_reminders(self, event_id: int) -> None:
        self.scheduled.append(event_id)

    async def clear_reminders(self, event_id: int) -> None:
        self.cleared.append(event_id)


class FakeProviderApi:
    """In-memory stand-in for the Google, Graph and OAuth token endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, int] = {}
        self.google_items: list[dict[str, Any]] = []
        self.graph_items: list[dict[str, Any]] = []
        self.token_status = 200
        self.token_payload: dict[str, Any] = {
            "access_token": "fresh-access",
            "refresh_token": "fresh-refresh",
            "expires_in": 3600,
        }
        self._ids = itertools.count(1)

    def fail(self, method: str, status: int = 500) -> None:
        """Make every provider (non-token) request with *method* fail."""
        self.failures[method] = status

    def calls(self, method: str, fragment: str = "") -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and fragment in str(request.url)
        ]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if str(request.url) in (GOOGLE_TOKEN_URL, MICROSOFT_TOKEN_URL)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in (GOOGLE_TOKEN_URL, MICROSOFT_TOKEN_URL):
            return httpx.Response(self.token_status, json=self.token_payload)
        if request.method in self.failures:
            return httpx.Response(
                self.failures[request.method], json={"error": {"message": "provider exploded"}}
            )
        if url.startswith(GOOGLE_CALENDAR_API_BASE_URL):
            return self._google(request)
        if url.startswith(GRAPH_API_BASE_URL):
            return self._graph(request)
        return httpx.Response(500, json={"error": {"message": f"unexpected request {url}"}})

    def _google(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/users/me/calendarList"):
            return httpx.Response(
                200,
                json={"items": [{"id": "me@example.com", "summary": "Me", "primary": True}]},
            )
        if path.endswith("/events"):
            if request.method == "POST":
                return httpx.Response(200, json={"id": f"g-{next(self._ids)}"})
            return httpx.Response(200, json={"items": self.google_items, "timeZone": "UTC"})
        if request.method == "GET":
            return httpx.Response(
                200, json={"id": path.rsplit("/", 1)[-1], "summary": "Old", "colorId": "5"}
            )
        if request.method == "PUT":
            return httpx.Response(200, json=json.loads(request.content))
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(405)

    def _graph(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/calendarView"):
            return httpx.Response(200, json={"value": self.graph_items})
        if path.endswith("/events") and request.method == "POST":
            return httpx.Response(201, json={"id": f"o-{next(self._ids)}"})
        if "/me/events/" in path:
            if request.method == "GET":
                return httpx.Response(
                    200, json={"id": path.rsplit("/", 1)[-1], "body": {"content": "kept"}}
                )
            if request.method == "PATCH":
                return httpx.Response(200, json={})
            if request.method == "DELETE":
                return httpx.Response(204)
        if path.endswith("/me/calendar"):
            return httpx.Response(200, json={"id": "AAMkCal", "name": "Calendar"})
        if path.endswith("/me"):
            return httpx.Response(200, json={"mail": "me@outlook.example"})
        return httpx.Response(405)


def _draft(**overrides: Any) -> EventDraft:
    data: dict[str, Any] = {
        "title": "Planning",
        "start_time": EVENT_START,
        "end_time": EVENT_START + timedelta(hours=1),
    }
    data.update(overrides)
    return EventDraft(**data)


@pytest.fixture
def event_start() -> datetime:
    return EVENT_START


@pytest.fixture
def make_draft():
    """Build an EventDraft one hour long at ``EVENT_START`` unless overridden."""
    return _draft


@pytest.fixture(autouse=True)
def _reset_oauth_state():
    _clear_state_store()
    yield
    _clear_state_store()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def fake_api() -> FakeProviderApi:
    return FakeProviderApi()


@pytest.fixture
async def http_client(fake_api: FakeProviderApi) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as client:
        yield client


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        base_url="http://test",
        google=OAuthAppConfig(
            client_id="google-client",
            client_secret="google-secret",
            redirect_uri="http://test/api/integrations/google/callback",
        ),
        outlook=OAuthAppConfig(
            client_id="outlook-client",
            client_secret="outlook-secret",
            redirect_uri="http://test/api/integrations/outlook/callback",
        ),
    )


@pytest.fixture
def reminders() -> RecordingReminders:
    return RecordingReminders()


@pytest.fixture
def services(
    config: AppConfig,
    storage: InMemoryStorage,
    http_client: httpx.AsyncClient,
    reminders: RecordingReminders,
) -> Services:
    return build_services(config, storage, http_client, reminders)


@pytest.fixture
def add_integration(storage: InMemoryStorage):
    """Factory fixture that stores an integration with sensible defaults."""

    async def _add(
        user_id: int = 1,
        calendar_type: CalendarType = CalendarType.GOOGLE,
        **overrides: Any,
    ) -> CalendarIntegration:
        data: dict[str, Any] = {
            "name": f"{calendar_type} calendar",
            "access_token": "access",
            "refresh_token": "refresh",
            "expires_at": datetime.now(UTC) + timedelta(hours=1),
            "calendar_id": "primary",
            "is_connected": True,
            "is_primary": False,
        }
        if calendar_type == CalendarType.ICAL:
            data.update(
                access_token=None,
                refresh_token=None,
                expires_at=None,
                calendar_id="https://example.com/feed.ics",
            )
        data.update(overrides)
        return await storage.create_calendar_integration(
            CalendarIntegrationCreate(user_id=user_id, type=calendar_type, **data)
        )

    return _add
