"""Pydantic request/response models for the HTTP API.

Successful responses use the ``{"data": T, "meta": {...}}`` envelope and
errors the ``{"error": {"code": "...", "message": "..."}}`` envelope.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from slotwise.models import CalendarIntegration, CalendarType

# ---------------------------------------------------------------------------
# Base response wrappers
# ---------------------------------------------------------------------------


class ApiMeta(BaseModel):
    """Free-form response metadata, e.g. ``moved`` or ``count``."""

    model_config = {"extra": "allow"}


class ApiResponse[T](BaseModel):
    """Success envelope shared by every JSON endpoint.

    Serialized as ``{"data": T, "meta": {...}}``.
    """

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Machine-readable ``code`` plus a human ``message``."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class IntegrationSummary(BaseModel):
    """A calendar integration as exposed over HTTP; tokens are never included."""

    id: int
    type: CalendarType
    name: str
    calendar_id: str | None = None
    is_connected: bool
    is_primary: bool
    last_synced: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_integration(cls, integration: CalendarIntegration) -> IntegrationSummary:
        return cls.model_validate(
            integration.model_dump(exclude={"access_token", "refresh_token", "user_id"})
        )


class AuthorizationUrlResponse(BaseModel):
    """Provider consent URL for starting an OAuth flow."""

    authorization_url: str


class ICalConnectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    calendar_url: str = Field(min_length=1)
    name: str | None = None


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class SyncRequest(BaseModel):
    """Body for ``POST /api/sync``."""

    model_config = ConfigDict(extra="forbid")

    calendar_type: CalendarType
    integration_id: int | None = None


# ---------------------------------------------------------------------------
# Booking links
# ---------------------------------------------------------------------------


class BookingLinkRequest(BaseModel):
    """Body for ``POST /api/booking-links``; the owner is the acting user."""

    model_config = ConfigDict(extra="forbid")

    slug: str
    title: str = Field(min_length=1)
    description: str | None = None
    duration: int = Field(gt=0)
    is_active: bool = True
    buffer_before: int = Field(default=0, ge=0)
    buffer_after: int = Field(default=0, ge=0)
    max_bookings_per_day: int = Field(default=0, ge=0)
    lead_time: int = Field(default=0, ge=0)
