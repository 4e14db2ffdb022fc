"""Error taxonomy shared by the provider adapters and the orchestrator.

Three families matter to callers:

- ``CalendarAuthorizationError``: the integration or event does not belong to
  the acting user, or its calendar type does not match the adapter.  Never
  recovered; surfaced as 403.
- ``CalendarNotAuthenticatedError``: no usable integration or the token could
  not be refreshed.  The orchestrator treats it as "write locally instead".
- ``CalendarProviderError``: the provider API answered with a non-2xx status
  or could not be reached.  Swallowed with a warning for update/delete,
  propagated for create.
"""

from __future__ import annotations


class CalendarError(RuntimeError):
    """Base error for the calendar layer."""


class CalendarAuthorizationError(CalendarError):
    """Raised when an integration or event is foreign or of the wrong type."""


class CalendarNotAuthenticatedError(CalendarError):
    """Raised when no connected, authenticated integration is available."""


class CalendarProviderError(CalendarError):
    """Raised when a provider API request fails."""

    def __init__(self, *, provider: str, status_code: int | None, message: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        status = status_code if status_code is not None else "transport"
        super().__init__(f"{provider} calendar API request failed ({status}): {message}")


class EventNotFoundError(CalendarError):
    """Raised when an event id does not exist."""

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class IntegrationNotFoundError(CalendarError):
    """Raised when a calendar integration id does not exist."""

    def __init__(self, integration_id: int) -> None:
        self.integration_id = integration_id
        super().__init__(f"Calendar integration not found: {integration_id}")


class BookingLinkNotFoundError(CalendarError):
    """Raised when a booking link slug does not resolve to a link."""

    def __init__(self, slug: str) -> None:
        self.slug = slug
        super().__init__(f"Booking link not found: {slug}")


class BookingRejectedError(ValueError):
    """Raised when a booking request violates the link's constraints."""
