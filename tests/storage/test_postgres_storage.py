"""Tests for PostgresStorage SQL generation against a mocked asyncpg pool."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from slotwise.models import CalendarIntegrationCreate, CalendarType, EventCreate
from slotwise.storage.postgres import SCHEMA_STATEMENTS, PostgresStorage, _set_clause

pytestmark = pytest.mark.unit

START = datetime(2031, 3, 3, 9, 0, tzinfo=UTC)


def _make_storage(*, owns_pool: bool = False) -> tuple[PostgresStorage, AsyncMock, MagicMock]:
    conn = AsyncMock()

    @asynccontextmanager
    async def _acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = _acquire
    pool.close = AsyncMock()
    return PostgresStorage(pool, owns_pool=owns_pool), conn, pool


def _event_row(**overrides) -> dict:
    row = {
        "id": 5,
        "user_id": 1,
        "title": "Sync",
        "description": None,
        "start_time": START,
        "end_time": START + timedelta(hours=1),
        "location": None,
        "meeting_url": None,
        "is_all_day": False,
        "external_id": "g-1",
        "calendar_type": "google",
        "calendar_integration_id": 2,
        "attendees": '[{"email": "ada@example.com", "name": null}]',
        "reminders": "[10]",
        "timezone": "UTC",
        "recurrence": None,
    }
    row.update(overrides)
    return row


class TestSchema:
    async def test_ensure_schema_runs_every_statement(self):
        storage, conn, _ = _make_storage()
        await storage.ensure_schema()
        assert conn.execute.await_count == len(SCHEMA_STATEMENTS)

    def test_events_cascade_with_integration(self):
        events_ddl = next(s for s in SCHEMA_STATEMENTS if "CREATE TABLE IF NOT EXISTS events" in s)
        assert "ON DELETE CASCADE" in events_ddl


class TestEvents:
    async def test_create_encodes_json_and_enums(self):
        storage, conn, _ = _make_storage()
        conn.fetchrow.return_value = _event_row()

        event = await storage.create_event(
            EventCreate(
                user_id=1,
                title="Sync",
                start_time=START,
                end_time=START + timedelta(hours=1),
                calendar_type=CalendarType.GOOGLE,
                calendar_integration_id=2,
                external_id="g-1",
                attendees=["ada@example.com"],
                reminders=[10],
            )
        )

        query, *values = conn.fetchrow.await_args.args
        assert query.startswith("INSERT INTO events")
        assert "::jsonb" in query
        assert "google" in values
        assert json.loads(values[11]) == [{"email": "ada@example.com", "name": None}]
        assert event.id == 5
        assert event.attendees[0].email == "ada@example.com"
        assert event.reminders == [10]

    async def test_get_events_window_query(self):
        storage, conn, _ = _make_storage()
        conn.fetch.return_value = [_event_row()]

        events = await storage.get_events(1, START, START + timedelta(days=1))

        query = conn.fetch.await_args.args[0]
        assert "start_time >= $2 AND end_time <= $3" in query
        assert [e.id for e in events] == [5]

    async def test_get_missing_event(self):
        storage, conn, _ = _make_storage()
        conn.fetchrow.return_value = None
        assert await storage.get_event(9) is None

    async def test_delete_reports_status(self):
        storage, conn, _ = _make_storage()
        conn.execute.return_value = "DELETE 1"
        assert await storage.delete_event(5) is True
        conn.execute.return_value = "DELETE 0"
        assert await storage.delete_event(5) is False

    async def test_delete_by_integration_count(self):
        storage, conn, _ = _make_storage()
        conn.execute.return_value = "DELETE 3"
        assert await storage.delete_events_by_calendar_integration(2) == 3

    async def test_update_with_no_fields_reads_row(self):
        storage, conn, _ = _make_storage()
        conn.fetchrow.return_value = _event_row()
        await storage.update_event(5, {})
        assert conn.fetchrow.await_args.args[0].startswith("SELECT * FROM events")


class TestIntegrations:
    async def test_update_builds_set_clause(self):
        storage, conn, _ = _make_storage()
        conn.fetchrow.return_value = {
            "id": 3,
            "user_id": 1,
            "type": "outlook",
            "name": "Work",
            "access_token": None,
            "refresh_token": None,
            "expires_at": None,
            "calendar_id": None,
            "last_synced": None,
            "is_connected": False,
            "is_primary": False,
        }

        integration = await storage.update_calendar_integration(3, is_connected=False)

        query, key, value = conn.fetchrow.await_args.args
        assert query == (
            "UPDATE calendar_integrations SET is_connected = $2 WHERE id = $1 RETURNING *"
        )
        assert (key, value) == (3, False)
        assert integration.type == CalendarType.OUTLOOK

    async def test_create_sends_type_value(self):
        storage, conn, _ = _make_storage()
        conn.fetchrow.return_value = {
            "id": 1,
            "user_id": 1,
            "type": "ical",
            "name": "Feed",
            "access_token": None,
            "refresh_token": None,
            "expires_at": None,
            "calendar_id": "https://example.com/feed.ics",
            "last_synced": None,
            "is_connected": True,
            "is_primary": False,
        }
        await storage.create_calendar_integration(
            CalendarIntegrationCreate(
                user_id=1,
                type=CalendarType.ICAL,
                name="Feed",
                calendar_id="https://example.com/feed.ics",
            )
        )
        values = conn.fetchrow.await_args.args[1:]
        assert values[1] == "ical"
        assert type(values[1]) is str


class TestSetClause:
    def test_unknown_column_rejected(self):
        with pytest.raises(ValueError, match="Unknown column"):
            _set_clause({"password": "x"}, ("title",))

    def test_json_columns_cast(self):
        clause, values = _set_clause({"title": "T", "reminders": [5]}, ("title", "reminders"))
        assert clause == "title = $2, reminders = $3::jsonb"
        assert values == ["T", "[5]"]


class TestClose:
    async def test_close_only_when_owning_pool(self):
        storage, _, pool = _make_storage()
        await storage.close()
        pool.close.assert_not_awaited()

        owning, _, owned_pool = _make_storage(owns_pool=True)
        await owning.close()
        owned_pool.close.assert_awaited_once()
