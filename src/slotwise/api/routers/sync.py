"""Provider sync endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from slotwise.api.deps import Services, get_services, get_user_id
from slotwise.api.models import ApiResponse, SyncRequest
from slotwise.orchestrator import SyncSummary

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("", response_model=ApiResponse[SyncSummary])
async def sync_calendars(
    request: SyncRequest,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[SyncSummary]:
    """Import provider events for one integration, or every connected one of a type."""
    summary = await services.orchestrator.sync(
        user_id, request.calendar_type, request.integration_id
    )
    return ApiResponse(data=summary)
