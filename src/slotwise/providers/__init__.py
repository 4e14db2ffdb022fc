"""Calendar provider adapters and the per-request provider factory."""

from __future__ import annotations

import httpx

from slotwise.config import AppConfig, ConfigError
from slotwise.models import CalendarType
from slotwise.oauth import build_oauth_client
from slotwise.providers.base import CalendarProvider
from slotwise.providers.google import GoogleCalendarProvider
from slotwise.providers.ical import ICalendarProvider
from slotwise.providers.local import LocalCalendarProvider
from slotwise.providers.outlook import OutlookCalendarProvider
from slotwise.providers.remote import OAuthCalendarProvider
from slotwise.storage.base import CalendarStorage

__all__ = [
    "CalendarProvider",
    "GoogleCalendarProvider",
    "ICalendarProvider",
    "LocalCalendarProvider",
    "OAuthCalendarProvider",
    "OutlookCalendarProvider",
    "build_provider",
]

_OAUTH_PROVIDERS: dict[CalendarType, type[OAuthCalendarProvider]] = {
    CalendarType.GOOGLE: GoogleCalendarProvider,
    CalendarType.OUTLOOK: OutlookCalendarProvider,
}


def build_provider(
    calendar_type: CalendarType | str,
    user_id: int,
    storage: CalendarStorage,
    *,
    config: AppConfig,
    http_client: httpx.AsyncClient,
) -> CalendarProvider:
    """Select and construct the adapter for *calendar_type*.

    OAuth providers without a client registration are still constructed so
    that stored integrations with valid tokens keep working; only the
    authorization flow and token refresh need the registration.
    """
    calendar_type = CalendarType(calendar_type)
    if calendar_type == CalendarType.ICAL:
        return ICalendarProvider(user_id, storage, sync_config=config.sync)
    if calendar_type == CalendarType.LOCAL:
        return LocalCalendarProvider(user_id, storage, sync_config=config.sync)

    try:
        oauth = build_oauth_client(str(calendar_type), config, http_client)
    except ConfigError:
        oauth = None
    return _OAUTH_PROVIDERS[calendar_type](
        user_id,
        storage,
        http_client=http_client,
        oauth=oauth,
        sync_config=config.sync,
    )
