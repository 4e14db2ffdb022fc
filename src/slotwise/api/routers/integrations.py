"""Calendar integration endpoints: OAuth flows, iCalendar feeds, primary, disconnect."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse, Response

from slotwise.api.deps import Services, get_services, get_user_id
from slotwise.api.models import (
    ApiResponse,
    AuthorizationUrlResponse,
    ErrorDetail,
    ErrorResponse,
    ICalConnectRequest,
    IntegrationSummary,
)
from slotwise.models import CalendarType
from slotwise.oauth import sanitize_provider_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])


def _callback_error(code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=400, content=body.model_dump())


@router.get("", response_model=ApiResponse[dict[str, list[IntegrationSummary]]])
async def list_integrations(
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[dict[str, list[IntegrationSummary]]]:
    """List the user's integrations grouped by calendar type."""
    grouped = await services.integrations.list_integrations(user_id)
    return ApiResponse(
        data={
            calendar_type: [IntegrationSummary.from_integration(i) for i in integrations]
            for calendar_type, integrations in grouped.items()
        }
    )


@router.get(
    "/{calendar_type}/auth",
    responses={
        200: {"model": ApiResponse[AuthorizationUrlResponse]},
        302: {"description": "Redirect to the provider consent page"},
    },
)
async def begin_authorization(
    calendar_type: CalendarType,
    name: str | None = Query(default=None, description="Display name for the new calendar."),
    redirect: bool = Query(
        default=False,
        description="If true, redirect to the consent page instead of returning its URL.",
    ),
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> Response:
    """Begin the OAuth authorization flow for Google or Outlook."""
    url = services.integrations.begin_authorization(calendar_type, user_id, name)
    if redirect:
        return RedirectResponse(url=url, status_code=302)
    body = ApiResponse(data=AuthorizationUrlResponse(authorization_url=url))
    return JSONResponse(content=body.model_dump())


@router.get("/{calendar_type}/callback", response_model=ApiResponse[IntegrationSummary])
async def complete_authorization(
    calendar_type: CalendarType,
    code: str | None = Query(default=None, description="Authorization code."),
    state: str | None = Query(default=None, description="CSRF state token."),
    error: str | None = Query(default=None, description="OAuth error code from the provider."),
    services: Services = Depends(get_services),
) -> Response:
    """Handle the provider redirect after the user granted (or denied) consent.

    The acting user is recovered from the state token, not from headers.
    """
    if error:
        logger.warning("%s OAuth provider error: %s", calendar_type, error)
        if state:
            services.integrations.cancel_authorization(state)
        return _callback_error("provider_error", sanitize_provider_error(error))
    if not code:
        return _callback_error("missing_code", "Authorization code is missing from the callback.")
    if not state:
        return _callback_error(
            "missing_state",
            "State parameter is missing from the callback. Possible CSRF attempt.",
        )

    integration = await services.integrations.complete_authorization(calendar_type, code, state)
    body = ApiResponse(data=IntegrationSummary.from_integration(integration))
    return JSONResponse(content=body.model_dump(mode="json"))


@router.post("/ical/connect", response_model=ApiResponse[IntegrationSummary], status_code=201)
async def connect_ical(
    request: ICalConnectRequest,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[IntegrationSummary]:
    integration = await services.integrations.connect_ical(
        user_id, request.calendar_url, request.name
    )
    return ApiResponse(data=IntegrationSummary.from_integration(integration))


@router.post(
    "/{calendar_type}/{integration_id}/primary",
    response_model=ApiResponse[IntegrationSummary],
)
async def set_primary(
    calendar_type: CalendarType,
    integration_id: int,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[IntegrationSummary]:
    integration = await services.integrations.set_primary(user_id, integration_id, calendar_type)
    return ApiResponse(data=IntegrationSummary.from_integration(integration))


@router.post("/{calendar_type}/disconnect/{integration_id}", response_model=ApiResponse[dict])
async def disconnect(
    calendar_type: CalendarType,
    integration_id: int,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[dict]:
    """Disconnect an integration; its mirrored events are kept."""
    await services.integrations.disconnect(user_id, integration_id, calendar_type)
    return ApiResponse(data={"id": integration_id, "is_connected": False})


@router.delete("/{integration_id}", response_model=ApiResponse[dict])
async def delete_integration(
    integration_id: int,
    user_id: int = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> ApiResponse[dict]:
    """Delete an integration and every event mirrored from it."""
    await services.integrations.delete_integration(user_id, integration_id)
    return ApiResponse(data={"id": integration_id, "deleted": True})
