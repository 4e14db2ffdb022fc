"""PostgreSQL storage backend on an asyncpg pool.

Schema is created idempotently by :meth:`PostgresStorage.ensure_schema`.
Events reference their owning integration with ``ON DELETE CASCADE`` so
deleting an integration removes its mirrored events.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

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

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

_INTEGRATIONS_DDL = """
CREATE TABLE IF NOT EXISTS calendar_integrations (
    id            BIGSERIAL PRIMARY KEY,
    user_id       BIGINT NOT NULL,
    type          TEXT NOT NULL CHECK (type IN ('google', 'outlook', 'ical')),
    name          TEXT NOT NULL,
    access_token  TEXT,
    refresh_token TEXT,
    expires_at    TIMESTAMPTZ,
    calendar_id   TEXT,
    last_synced   TIMESTAMPTZ,
    is_connected  BOOLEAN NOT NULL DEFAULT true,
    is_primary    BOOLEAN NOT NULL DEFAULT false
)
"""

_INTEGRATIONS_USER_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS ix_calendar_integrations_user_type
ON calendar_integrations (user_id, type)
"""

_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id                      BIGSERIAL PRIMARY KEY,
    user_id                 BIGINT NOT NULL,
    title                   TEXT NOT NULL,
    description             TEXT,
    start_time              TIMESTAMPTZ NOT NULL,
    end_time                TIMESTAMPTZ NOT NULL,
    location                TEXT,
    meeting_url             TEXT,
    is_all_day              BOOLEAN NOT NULL DEFAULT false,
    external_id             TEXT,
    calendar_type           TEXT NOT NULL DEFAULT 'local',
    calendar_integration_id BIGINT REFERENCES calendar_integrations (id) ON DELETE CASCADE,
    attendees               JSONB NOT NULL DEFAULT '[]'::jsonb,
    reminders               JSONB,
    timezone                TEXT NOT NULL DEFAULT 'UTC',
    recurrence              TEXT
)
"""

_EVENTS_USER_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS ix_events_user_start
ON events (user_id, start_time)
"""

_SETTINGS_DDL = """
CREATE TABLE IF NOT EXISTS settings (
    user_id                         BIGINT PRIMARY KEY,
    default_calendar                TEXT NOT NULL DEFAULT 'google',
    default_calendar_integration_id BIGINT,
    default_reminders               JSONB NOT NULL DEFAULT '[15]'::jsonb
)
"""

_BOOKING_LINKS_DDL = """
CREATE TABLE IF NOT EXISTS booking_links (
    id                   BIGSERIAL PRIMARY KEY,
    user_id              BIGINT NOT NULL,
    slug                 TEXT NOT NULL UNIQUE,
    title                TEXT NOT NULL,
    description          TEXT,
    duration             INTEGER NOT NULL,
    is_active            BOOLEAN NOT NULL DEFAULT true,
    buffer_before        INTEGER NOT NULL DEFAULT 0,
    buffer_after         INTEGER NOT NULL DEFAULT 0,
    max_bookings_per_day INTEGER NOT NULL DEFAULT 0,
    lead_time            INTEGER NOT NULL DEFAULT 0
)
"""

_BOOKINGS_DDL = """
CREATE TABLE IF NOT EXISTS bookings (
    id              BIGSERIAL PRIMARY KEY,
    booking_link_id BIGINT NOT NULL REFERENCES booking_links (id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    email           TEXT NOT NULL,
    start_time      TIMESTAMPTZ NOT NULL,
    end_time        TIMESTAMPTZ NOT NULL,
    notes           TEXT,
    status          TEXT NOT NULL DEFAULT 'confirmed',
    event_id        BIGINT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

SCHEMA_STATEMENTS: tuple[str, ...] = (
    _INTEGRATIONS_DDL,
    _INTEGRATIONS_USER_INDEX_DDL,
    _EVENTS_DDL,
    _EVENTS_USER_INDEX_DDL,
    _SETTINGS_DDL,
    _BOOKING_LINKS_DDL,
    _BOOKINGS_DDL,
)

_INTEGRATION_COLUMNS = (
    "user_id",
    "type",
    "name",
    "access_token",
    "refresh_token",
    "expires_at",
    "calendar_id",
    "last_synced",
    "is_connected",
    "is_primary",
)
_EVENT_COLUMNS = (
    "user_id",
    "title",
    "description",
    "start_time",
    "end_time",
    "location",
    "meeting_url",
    "is_all_day",
    "external_id",
    "calendar_type",
    "calendar_integration_id",
    "attendees",
    "reminders",
    "timezone",
    "recurrence",
)
_SETTINGS_COLUMNS = (
    "default_calendar",
    "default_calendar_integration_id",
    "default_reminders",
)
_BOOKING_LINK_COLUMNS = (
    "user_id",
    "slug",
    "title",
    "description",
    "duration",
    "is_active",
    "buffer_before",
    "buffer_after",
    "max_bookings_per_day",
    "lead_time",
)
_BOOKING_COLUMNS = (
    "booking_link_id",
    "name",
    "email",
    "start_time",
    "end_time",
    "notes",
    "status",
    "event_id",
)
_JSON_COLUMNS = frozenset({"attendees", "reminders", "default_reminders"})


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return None if value is None else json.dumps(value)
    if isinstance(value, StrEnum):
        return value.value
    return value


def _decode_row(row: Mapping[str, Any]) -> dict[str, Any]:
    decoded = dict(row)
    for column in _JSON_COLUMNS & decoded.keys():
        value = decoded[column]
        if isinstance(value, str):
            decoded[column] = json.loads(value)
    return decoded


def _placeholders(columns: Iterable[str], start: int = 1) -> str:
    return ", ".join(
        f"${index}::jsonb" if column in _JSON_COLUMNS else f"${index}"
        for index, column in enumerate(columns, start=start)
    )


def _set_clause(
    fields: Mapping[str, Any], allowed: tuple[str, ...], start: int = 2
) -> tuple[str, list[Any]]:
    """Build ``col = $n`` pairs for an UPDATE, rejecting unknown columns."""
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown column(s) for update: {', '.join(unknown)}")
    parts: list[str] = []
    values: list[Any] = []
    for index, (column, value) in enumerate(fields.items(), start=start):
        cast = "::jsonb" if column in _JSON_COLUMNS else ""
        parts.append(f"{column} = ${index}{cast}")
        values.append(_encode(column, value))
    return ", ".join(parts), values


class PostgresStorage(CalendarStorage):
    """asyncpg-backed storage.

    Parameters
    ----------
    pool:
        An asyncpg connection pool.  The storage does not own the pool unless
        ``owns_pool`` is True, in which case :meth:`close` closes it.
    """

    def __init__(self, pool: asyncpg.Pool, *, owns_pool: bool = False) -> None:
        self.pool = pool
        self._owns_pool = owns_pool

    async def ensure_schema(self) -> None:
        """Create every table and index when missing.  Idempotent."""
        async with self.pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Calendar storage schema ensured (%d statements)", len(SCHEMA_STATEMENTS))

    async def close(self) -> None:
        if self._owns_pool:
            await self.pool.close()

    # -- Generic helpers ------------------------------------------------------

    async def _insert(
        self, table: str, columns: tuple[str, ...], payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({_placeholders(columns)}) RETURNING *"
        )
        values = [_encode(column, payload.get(column)) for column in columns]
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *values)
        return _decode_row(row)

    async def _update(
        self,
        table: str,
        key_column: str,
        key: int,
        columns: tuple[str, ...],
        fields: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        if not fields:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT * FROM {table} WHERE {key_column} = $1", key)
            return _decode_row(row) if row is not None else None
        clause, values = _set_clause(fields, columns)
        query = f"UPDATE {table} SET {clause} WHERE {key_column} = $1 RETURNING *"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, key, *values)
        return _decode_row(row) if row is not None else None

    # -- Calendar integrations ---------------------------------------------

    async def get_calendar_integrations(self, user_id: int) -> list[CalendarIntegration]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM calendar_integrations WHERE user_id = $1 ORDER BY id",
                user_id,
            )
        return [CalendarIntegration.model_validate(_decode_row(row)) for row in rows]

    async def get_calendar_integration(self, integration_id: int) -> CalendarIntegration | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM calendar_integrations WHERE id = $1",
                integration_id,
            )
        return CalendarIntegration.model_validate(_decode_row(row)) if row is not None else None

    async def create_calendar_integration(
        self, data: CalendarIntegrationCreate
    ) -> CalendarIntegration:
        row = await self._insert("calendar_integrations", _INTEGRATION_COLUMNS, data.model_dump())
        return CalendarIntegration.model_validate(row)

    async def update_calendar_integration(
        self, integration_id: int, **fields: Any
    ) -> CalendarIntegration | None:
        row = await self._update(
            "calendar_integrations", "id", integration_id, _INTEGRATION_COLUMNS, fields
        )
        return CalendarIntegration.model_validate(row) if row is not None else None

    async def delete_calendar_integration(self, integration_id: int) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM calendar_integrations WHERE id = $1",
                integration_id,
            )
        return status.endswith(" 1")

    # -- Events -------------------------------------------------------------

    async def get_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Event]:
        async with self.pool.acquire() as conn:
            if start is not None and end is not None:
                rows = await conn.fetch(
                    "SELECT * FROM events WHERE user_id = $1 "
                    "AND start_time >= $2 AND end_time <= $3 ORDER BY start_time, id",
                    user_id,
                    start,
                    end,
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM events WHERE user_id = $1 ORDER BY start_time, id",
                    user_id,
                )
        return [Event.model_validate(_decode_row(row)) for row in rows]

    async def get_event(self, event_id: int) -> Event | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM events WHERE id = $1", event_id)
        return Event.model_validate(_decode_row(row)) if row is not None else None

    async def create_event(self, data: EventCreate) -> Event:
        row = await self._insert("events", _EVENT_COLUMNS, data.model_dump())
        return Event.model_validate(row)

    async def update_event(self, event_id: int, fields: dict[str, Any]) -> Event | None:
        row = await self._update("events", "id", event_id, _EVENT_COLUMNS, fields)
        return Event.model_validate(row) if row is not None else None

    async def delete_event(self, event_id: int) -> bool:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM events WHERE id = $1", event_id)
        return status.endswith(" 1")

    async def delete_events_by_calendar_integration(self, integration_id: int) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                "DELETE FROM events WHERE calendar_integration_id = $1",
                integration_id,
            )
        return int(status.rsplit(" ", 1)[-1])

    # -- Settings -----------------------------------------------------------

    async def get_settings(self, user_id: int) -> Settings | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM settings WHERE user_id = $1", user_id)
        return Settings.model_validate(_decode_row(row)) if row is not None else None

    async def create_settings(self, settings: Settings) -> Settings:
        row = await self._insert(
            "settings", ("user_id", *_SETTINGS_COLUMNS), settings.model_dump()
        )
        return Settings.model_validate(row)

    async def update_settings(self, user_id: int, **fields: Any) -> Settings | None:
        row = await self._update("settings", "user_id", user_id, _SETTINGS_COLUMNS, fields)
        return Settings.model_validate(row) if row is not None else None

    # -- Booking links and bookings ------------------------------------------

    async def create_booking_link(self, data: BookingLinkCreate) -> BookingLink:
        row = await self._insert("booking_links", _BOOKING_LINK_COLUMNS, data.model_dump())
        return BookingLink.model_validate(row)

    async def get_booking_link(self, link_id: int) -> BookingLink | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM booking_links WHERE id = $1", link_id)
        return BookingLink.model_validate(dict(row)) if row is not None else None

    async def get_booking_link_by_slug(self, slug: str) -> BookingLink | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM booking_links WHERE slug = $1", slug)
        return BookingLink.model_validate(dict(row)) if row is not None else None

    async def get_booking_links(self, user_id: int) -> list[BookingLink]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM booking_links WHERE user_id = $1 ORDER BY id",
                user_id,
            )
        return [BookingLink.model_validate(dict(row)) for row in rows]

    async def create_booking(self, data: BookingCreate) -> Booking:
        row = await self._insert("bookings", _BOOKING_COLUMNS, data.model_dump())
        return Booking.model_validate(row)

    async def get_booking(self, booking_id: int) -> Booking | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM bookings WHERE id = $1", booking_id)
        return Booking.model_validate(dict(row)) if row is not None else None

    async def get_bookings(self, booking_link_id: int) -> list[Booking]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM bookings WHERE booking_link_id = $1 ORDER BY start_time, id",
                booking_link_id,
            )
        return [Booking.model_validate(dict(row)) for row in rows]
