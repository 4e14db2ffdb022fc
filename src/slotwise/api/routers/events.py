"""Event endpoints: list, read, create, update, delete.

Writes go through :class:`~slotwise.orchestrator.EventOrchestrator`, which
routes them to the owning provider or falls back to local storage.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from slotwise.api.deps import Services, get_services, get_user_id
from slotwise.api.models import ApiMeta, ApiResponse
from slotwise.models import Event, EventDraft, EventUpdate, ensure_aware

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("", response_model=ApiResponse[list[Event]])
async def list_events(
    start: datetime | None = Query(default=None, description="Window start (inclusive)."),
    end: datetime | None = Query(default=None, description="Window end (inclusive)."),
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[list[Event]]:
    """List the user's events across all calendars.

    The window applies only when both ``start`` and ``end`` are given.
    """
    if (start is None) != (end is None):
        raise ValueError("start and end must be given together")
    if start is not None and end is not None:
        start, end = ensure_aware(start), ensure_aware(end)
    events = await services.orchestrator.list_events(user_id, start, end)
    return ApiResponse(data=events, meta=ApiMeta(total=len(events)))


@router.get("/{event_id}", response_model=ApiResponse[Event])
async def get_event(
    event_id: int,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[Event]:
    return ApiResponse(data=await services.orchestrator.get_event(user_id, event_id))


@router.post("", response_model=ApiResponse[Event], status_code=201)
async def create_event(
    draft: EventDraft,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[Event]:
    """Create an event in the explicit, default or primary calendar, else locally."""
    event = await services.orchestrator.create_event(user_id, draft)
    return ApiResponse(data=event)


@router.put("/{event_id}", response_model=ApiResponse[Event])
async def update_event(
    event_id: int,
    update: EventUpdate,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[Event]:
    """Apply a partial update; changing to another calendar type moves the event.

    A move returns the newly created event, which has a new ``id``.
    """
    event = await services.orchestrator.update_event(user_id, event_id, update)
    return ApiResponse(data=event, meta=ApiMeta(moved=event.id != event_id))


@router.delete("/{event_id}", response_model=ApiResponse[dict])
async def delete_event(
    event_id: int,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[dict]:
    await services.orchestrator.delete_event(user_id, event_id)
    return ApiResponse(data={"id": event_id, "deleted": True})
