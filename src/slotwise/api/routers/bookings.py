"""Booking link management and the public booking endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from slotwise.api.deps import Services, get_services, get_user_id
from slotwise.api.models import ApiMeta, ApiResponse, BookingLinkRequest
from slotwise.models import Booking, BookingLink, BookingLinkCreate, BookingRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/booking-links", tags=["bookings"])
public_router = APIRouter(prefix="/api/public/booking", tags=["bookings"])


@router.post("", response_model=ApiResponse[BookingLink], status_code=201)
async def create_booking_link(
    request: BookingLinkRequest,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[BookingLink]:
    link = await services.bookings.create_booking_link(
        BookingLinkCreate(user_id=user_id, **request.model_dump())
    )
    return ApiResponse(data=link)


@router.get("", response_model=ApiResponse[list[BookingLink]])
async def list_booking_links(
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[list[BookingLink]]:
    links = await services.bookings.list_booking_links(user_id)
    return ApiResponse(data=links, meta=ApiMeta(total=len(links)))


@public_router.get("/{slug}", response_model=ApiResponse[BookingLink])
async def get_public_booking_link(
    slug: str,
    services: Services = Depends(get_services),
) -> ApiResponse[BookingLink]:
    """Return an active booking link for the public booking page."""
    return ApiResponse(data=await services.bookings.get_active_link(slug))


@public_router.post("/{slug}", response_model=ApiResponse[Booking], status_code=201)
async def create_booking(
    slug: str,
    request: BookingRequest,
    services: Services = Depends(get_services),
) -> ApiResponse[Booking]:
    """Book a slot on a public link; no ``X-User-Id`` is required."""
    booking = await services.bookings.create_booking(slug, request)
    return ApiResponse(data=booking)
