"""Public booking links and the bookings made through them."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta

from slotwise.errors import BookingLinkNotFoundError, BookingRejectedError
from slotwise.models import (
    AttendeeInfo,
    Booking,
    BookingCreate,
    BookingLink,
    BookingLinkCreate,
    BookingRequest,
    Event,
    EventDraft,
)
from slotwise.orchestrator import EventOrchestrator
from slotwise.storage.base import CalendarStorage

logger = logging.getLogger(__name__)

BOOKING_REMINDERS = [15]


def _overlaps(start: datetime, end: datetime, event: Event) -> bool:
    return start < event.end_time and event.start_time < end


class BookingService:
    """Validates booking requests and turns them into calendar events."""

    def __init__(self, storage: CalendarStorage, orchestrator: EventOrchestrator) -> None:
        self.storage = storage
        self.orchestrator = orchestrator

    async def create_booking_link(self, data: BookingLinkCreate) -> BookingLink:
        link = await self.storage.create_booking_link(data)
        logger.info("Created booking link %s (%s) for user %s", link.id, link.slug, link.user_id)
        return link

    async def list_booking_links(self, user_id: int) -> list[BookingLink]:
        return await self.storage.get_booking_links(user_id)

    async def get_active_link(self, slug: str) -> BookingLink:
        link = await self.storage.get_booking_link_by_slug(slug.strip().lower())
        if link is None or not link.is_active:
            raise BookingLinkNotFoundError(slug)
        return link

    async def create_booking(
        self,
        slug: str,
        request: BookingRequest,
        *,
        now: datetime | None = None,
    ) -> Booking:
        """Book a slot on the link named by *slug*.

        The request must match the link duration exactly, respect the lead
        time and the daily cap, and must not overlap any of the owner's
        events once the link buffers are applied.  The resulting event is
        created through the orchestrator, so it lands in the owner's
        default calendar.

        Raises
        ------
        BookingLinkNotFoundError
            Unknown or inactive slug.
        BookingRejectedError
            Any of the slot constraints is violated.
        """
        link = await self.get_active_link(slug)
        now = now or datetime.now(UTC)

        duration = (request.end_time - request.start_time).total_seconds() / 60
        if duration != link.duration:
            raise BookingRejectedError("Booking duration does not match expected duration")

        if request.start_time - now < timedelta(minutes=link.lead_time):
            raise BookingRejectedError(
                f"Booking must be made at least {link.lead_time} minutes in advance"
            )

        if link.max_bookings_per_day > 0:
            day = request.start_time.astimezone(UTC).date()
            day_start = datetime.combine(day, time.min, tzinfo=UTC)
            day_end = day_start + timedelta(days=1)
            same_day = [
                booking
                for booking in await self.storage.get_bookings(link.id)
                if booking.status == "confirmed" and day_start <= booking.start_time < day_end
            ]
            if len(same_day) >= link.max_bookings_per_day:
                raise BookingRejectedError(
                    "Maximum number of bookings for this day has been reached"
                )

        window_start = request.start_time - timedelta(minutes=link.buffer_before)
        window_end = request.end_time + timedelta(minutes=link.buffer_after)
        for event in await self.storage.get_events(link.user_id):
            if _overlaps(window_start, window_end, event):
                logger.info(
                    "Booking on %s rejected: conflicts with event %s", link.slug, event.id
                )
                raise BookingRejectedError(
                    "This time slot conflicts with an existing event (including buffer time)"
                )

        draft = EventDraft(
            title=f"Booking: {request.name}",
            description=request.notes or f"Booking from {request.name} ({request.email})",
            start_time=request.start_time,
            end_time=request.end_time,
            attendees=[AttendeeInfo(email=request.email, name=request.name)],
            reminders=list(BOOKING_REMINDERS),
        )
        event = await self.orchestrator.create_event(link.user_id, draft)

        booking = await self.storage.create_booking(
            BookingCreate(
                **request.model_dump(),
                booking_link_id=link.id,
                event_id=event.id,
            )
        )
        logger.info(
            "Booking %s on link %s created event %s (%s)",
            booking.id,
            link.slug,
            event.id,
            event.calendar_type,
        )
        return booking
