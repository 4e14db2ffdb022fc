"""Domain models for integrations, events, settings and bookings.

Every stored record is a pydantic model.  Insert payloads (``*Create``) carry
everything except the numeric ``id`` assigned by storage; the stored model
subclasses the insert payload and adds ``id``.

Datetimes are always timezone-aware.  Naive values coming from clients are
interpreted as UTC.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

_SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,62}$")


def ensure_aware(value: datetime) -> datetime:
    """Return *value* with UTC attached when it carries no tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CalendarType(StrEnum):
    """Backing calendar of an integration or event."""

    GOOGLE = "google"
    OUTLOOK = "outlook"
    ICAL = "ical"
    LOCAL = "local"


# Types that are backed by a stored CalendarIntegration row.
INTEGRATION_TYPES: tuple[CalendarType, ...] = (
    CalendarType.GOOGLE,
    CalendarType.OUTLOOK,
    CalendarType.ICAL,
)


# ---------------------------------------------------------------------------
# Calendar integrations
# ---------------------------------------------------------------------------


class CalendarIntegrationCreate(BaseModel):
    """Insert payload for a user's connection to one calendar account."""

    user_id: int
    type: CalendarType
    name: str
    access_token: str | None = Field(default=None, repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    expires_at: datetime | None = None
    calendar_id: str | None = None
    last_synced: datetime | None = None
    is_connected: bool = True
    is_primary: bool = False

    @field_validator("type")
    @classmethod
    def _reject_local(cls, value: CalendarType) -> CalendarType:
        if value == CalendarType.LOCAL:
            raise ValueError("local calendars have no integration record")
        return value

    @field_validator("expires_at", "last_synced")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None


class CalendarIntegration(CalendarIntegrationCreate):
    """A stored calendar integration."""

    id: int

    def token_expired(self, now: datetime | None = None) -> bool:
        """True when ``expires_at`` is set and lies in the past."""
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.now(UTC))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class AttendeeInfo(BaseModel):
    """An event attendee; bare email strings are accepted on input."""

    email: str
    name: str | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip()
        if "@" not in normalized:
            raise ValueError(f"invalid attendee email: {value!r}")
        return normalized


def _coerce_attendees(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, list):
        return [{"email": item} if isinstance(item, str) else item for item in value]
    return value


class EventDraft(BaseModel):
    """Caller-supplied event fields before a target calendar is resolved.

    ``calendar_integration_id`` pins the event to one integration.
    ``calendar_type='local'`` asks for a local-only event.
    """

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    description: str | None = None
    start_time: datetime
    end_time: datetime
    location: str | None = None
    meeting_url: str | None = None
    is_all_day: bool = False
    calendar_type: CalendarType | None = None
    calendar_integration_id: int | None = None
    attendees: list[AttendeeInfo] = Field(default_factory=list)
    reminders: list[int] | None = None
    timezone: str = "UTC"
    recurrence: str | None = None

    @field_validator("attendees", mode="before")
    @classmethod
    def _attendees(cls, value: Any) -> Any:
        return _coerce_attendees(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @field_validator("reminders")
    @classmethod
    def _non_negative_reminders(cls, value: list[int] | None) -> list[int] | None:
        if value is not None and any(minutes < 0 for minutes in value):
            raise ValueError("reminder offsets must be non-negative minutes")
        return value

    @model_validator(mode="after")
    def _check_order(self) -> EventDraft:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventCreate(EventDraft):
    """Insert payload for the local event store."""

    model_config = ConfigDict(extra="forbid")

    user_id: int
    calendar_type: CalendarType = CalendarType.LOCAL
    external_id: str | None = None


class Event(EventCreate):
    """A stored event, the canonical record regardless of provider."""

    model_config = ConfigDict(extra="ignore")

    id: int

    def to_create(self) -> EventCreate:
        """Copy of this event as an insert payload, without ``id``."""
        return EventCreate.model_validate(self.model_dump(exclude={"id"}))

    def with_changes(self, fields: dict[str, Any]) -> Event:
        """Validate the event as it would look after applying *fields*.

        Raises ``pydantic.ValidationError`` (a ``ValueError``) when the merged
        record is invalid, e.g. an ``end_time`` before the stored start.
        """
        return Event.model_validate({**self.model_dump(), **fields})


class EventUpdate(BaseModel):
    """Partial event update; only explicitly set fields are applied."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    meeting_url: str | None = None
    is_all_day: bool | None = None
    calendar_integration_id: int | None = None
    attendees: list[AttendeeInfo] | None = None
    reminders: list[int] | None = None
    timezone: str | None = None
    recurrence: str | None = None

    @field_validator("attendees", mode="before")
    @classmethod
    def _attendees(cls, value: Any) -> Any:
        return None if value is None else _coerce_attendees(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @field_validator("title", "is_all_day", "timezone")
    @classmethod
    def _not_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

    def fields(self) -> dict[str, Any]:
        """Return only the fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    """Per-user calendar defaults."""

    user_id: int
    default_calendar: CalendarType = CalendarType.GOOGLE
    default_calendar_integration_id: int | None = None
    default_reminders: list[int] = Field(default_factory=lambda: [15])


# ---------------------------------------------------------------------------
# Booking links and bookings
# ---------------------------------------------------------------------------


class BookingLinkCreate(BaseModel):
    """Insert payload for a public booking link."""

    model_config = ConfigDict(extra="forbid")

    user_id: int
    slug: str
    title: str = Field(min_length=1)
    description: str | None = None
    duration: int = Field(gt=0, description="Meeting length in minutes.")
    is_active: bool = True
    buffer_before: int = Field(default=0, ge=0)
    buffer_after: int = Field(default=0, ge=0)
    max_bookings_per_day: int = Field(default=0, ge=0, description="0 means unlimited.")
    lead_time: int = Field(default=0, ge=0, description="Minimum notice in minutes.")

    @field_validator("slug")
    @classmethod
    def _validate_slug(cls, value: str) -> str:
        normalized = value.strip().lower()
        if _SLUG_PATTERN.fullmatch(normalized) is None:
            raise ValueError(f"invalid booking link slug: {value!r}")
        return normalized


class BookingLink(BookingLinkCreate):
    """A stored booking link."""

    model_config = ConfigDict(extra="ignore")

    id: int


class BookingRequest(BaseModel):
    """A third party's request to reserve a slot on a booking link."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    email: str
    start_time: datetime
    end_time: datetime
    notes: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        normalized = value.strip()
        if "@" not in normalized:
            raise ValueError(f"invalid email: {value!r}")
        return normalized


class BookingCreate(BookingRequest):
    """Insert payload for a booking."""

    booking_link_id: int
    status: str = "confirmed"
    event_id: int | None = None


class Booking(BookingCreate):
    """A stored booking."""

    model_config = ConfigDict(extra="ignore")

    id: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Sync results
# ---------------------------------------------------------------------------


class SyncResult(BaseModel):
    """Outcome of importing one integration's provider events."""

    integration_id: int
    fetched: int = 0
    created: int = 0
    last_synced: datetime
