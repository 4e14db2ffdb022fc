"""Map slotwise domain exceptions onto the JSON error envelope.

Registers FastAPI exception handlers that convert domain exceptions into
standardised ``{"error": {"code": "...", "message": "..."}}`` JSON responses.

Status code mapping:
- ``CalendarAuthorizationError`` → 403 Forbidden
- ``CalendarNotAuthenticatedError`` → 401 Unauthorized
- ``CalendarProviderError`` and ``OAuthError`` → 502 Bad Gateway
  (``TokenExchangeError`` → 400, the authorization code was rejected)
- ``*NotFoundError`` → 404 Not Found
- ``ValueError`` → 400 Bad Request
- ``ConfigError`` → 503 Service Unavailable
- Any other ``Exception`` → 500 Internal Server Error
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slotwise.api.models import ErrorDetail, ErrorResponse
from slotwise.config import ConfigError
from slotwise.errors import (
    BookingLinkNotFoundError,
    CalendarAuthorizationError,
    CalendarNotAuthenticatedError,
    CalendarProviderError,
    EventNotFoundError,
    IntegrationNotFoundError,
)
from slotwise.oauth import OAuthError, TokenExchangeError

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _handle_authorization_error(
    request: Request,
    exc: CalendarAuthorizationError,
) -> JSONResponse:
    """Return 403 when an integration or event belongs to someone else."""
    logger.warning("Forbidden %s %s: %s", request.method, request.url.path, exc)
    return _error(403, "FORBIDDEN", str(exc))


async def _handle_not_authenticated(
    request: Request,
    exc: CalendarNotAuthenticatedError,
) -> JSONResponse:
    logger.info("Calendar not authenticated on %s: %s", request.url.path, exc)
    return _error(401, "CALENDAR_NOT_AUTHENTICATED", str(exc))


async def _handle_provider_error(
    request: Request,
    exc: CalendarProviderError,
) -> JSONResponse:
    """Return 502 when a calendar provider API call fails."""
    logger.warning("Provider error on %s: %s", request.url.path, exc)
    return _error(
        502,
        "PROVIDER_ERROR",
        str(exc),
        {"provider": exc.provider, "status_code": exc.status_code},
    )


async def _handle_oauth_error(request: Request, exc: OAuthError) -> JSONResponse:
    logger.warning("OAuth error on %s: %s", request.url.path, exc)
    if isinstance(exc, TokenExchangeError):
        return _error(
            400,
            "TOKEN_EXCHANGE_FAILED",
            "Failed to exchange authorization code for tokens. "
            "The code may have expired or already been used.",
        )
    return _error(502, "OAUTH_ERROR", str(exc))


async def _handle_not_found(request: Request, exc: Exception) -> JSONResponse:
    logger.info("Not found: %s", exc)
    return _error(404, "NOT_FOUND", str(exc))


async def _handle_value_error(
    request: Request,
    exc: ValueError,
) -> JSONResponse:
    """Return 400 for validation / value errors."""
    logger.info("Validation error: %s", exc)
    return _error(400, "VALIDATION_ERROR", str(exc))


async def _handle_config_error(request: Request, exc: ConfigError) -> JSONResponse:
    logger.warning("Configuration error on %s: %s", request.url.path, exc)
    return _error(503, "NOT_CONFIGURED", str(exc))


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Turn any exception no handler claimed into the 500 ``INTERNAL_ERROR`` envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error serving %s %s", request.method, request.url.path)
            return _error(500, "INTERNAL_ERROR", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Install the domain error mapping on *app*.

    Handlers are looked up along the exception MRO, so domain errors that
    subclass ``ValueError`` keep their own status codes.
    """
    app.add_exception_handler(CalendarAuthorizationError, _handle_authorization_error)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarNotAuthenticatedError, _handle_not_authenticated)  # type: ignore[arg-type]
    app.add_exception_handler(CalendarProviderError, _handle_provider_error)  # type: ignore[arg-type]
    app.add_exception_handler(OAuthError, _handle_oauth_error)  # type: ignore[arg-type]
    for not_found in (EventNotFoundError, IntegrationNotFoundError, BookingLinkNotFoundError):
        app.add_exception_handler(not_found, _handle_not_found)
    app.add_exception_handler(ValueError, _handle_value_error)  # type: ignore[arg-type]
    app.add_exception_handler(ConfigError, _handle_config_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
