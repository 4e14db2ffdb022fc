"""Microsoft Graph (Outlook) calendar adapter.

Graph represents event times as naive local datetimes plus a ``timeZone``
name.  Outgoing times are rendered in the event's own timezone; incoming
calendar views are requested in UTC via the ``Prefer`` header.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, time, timedelta
from typing import Any
from urllib.parse import quote

from slotwise.errors import CalendarProviderError
from slotwise.models import CalendarIntegration, CalendarType, Event, EventCreate, EventDraft
from slotwise.providers.base import UNTITLED_EVENT, coerce_zone
from slotwise.providers.remote import OAuthCalendarProvider

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_CALENDAR_VIEW_PAGE_SIZE = 250
_MAX_SYNC_PAGES = 40
_DEFAULT_CALENDAR_IDS = frozenset({"primary", "calendar"})
_FRACTION_PATTERN = re.compile(r"\.(\d{6})\d+")


def _graph_datetime(value: datetime, timezone: str | None) -> dict[str, str]:
    local = value.astimezone(coerce_zone(timezone)).replace(tzinfo=None)
    return {"dateTime": local.isoformat(timespec="seconds"), "timeZone": timezone or "UTC"}


def _graph_all_day(start: datetime, end: datetime, timezone: str | None) -> tuple[dict, dict]:
    start_date = start.date()
    end_date = end.date()
    if end_date <= start_date:
        end_date = start_date + timedelta(days=1)
    tz_name = timezone or "UTC"
    return (
        {"dateTime": datetime.combine(start_date, time.min).isoformat(), "timeZone": tz_name},
        {"dateTime": datetime.combine(end_date, time.min).isoformat(), "timeZone": tz_name},
    )


def build_graph_event_body(draft: EventDraft) -> dict[str, Any]:
    """Translate an event into a Microsoft Graph event resource."""
    if draft.is_all_day:
        start, end = _graph_all_day(draft.start_time, draft.end_time, draft.timezone)
    else:
        start = _graph_datetime(draft.start_time, draft.timezone)
        end = _graph_datetime(draft.end_time, draft.timezone)

    body: dict[str, Any] = {
        "subject": draft.title,
        "body": {"contentType": "text", "content": draft.description or ""},
        "start": start,
        "end": end,
        "isAllDay": draft.is_all_day,
        "location": {"displayName": draft.location or ""},
        "attendees": [
            {
                "emailAddress": {
                    "address": attendee.email,
                    "name": attendee.name or attendee.email,
                },
                "type": "required",
            }
            for attendee in draft.attendees
        ],
    }
    if draft.meeting_url:
        body["onlineMeeting"] = {"joinUrl": draft.meeting_url}
    return body


def parse_graph_datetime(value: Any) -> datetime | None:
    """Parse a Graph ``dateTimeTimeZone`` block into an aware datetime."""
    if not isinstance(value, dict):
        return None
    raw = value.get("dateTime")
    if not isinstance(raw, str) or not raw:
        return None
    # Graph emits seven fractional digits; datetime accepts at most six.
    parsed = datetime.fromisoformat(_FRACTION_PATTERN.sub(r".\1", raw))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=coerce_zone(value.get("timeZone")))
    return parsed


def graph_event_to_create(
    item: dict[str, Any], *, user_id: int, integration_id: int
) -> EventCreate | None:
    """Translate a Graph event into a local insert payload.

    Returns ``None`` for cancelled items and items without an id or with
    missing, unparsable or inverted times.
    """
    if item.get("isCancelled"):
        return None
    external_id = item.get("id")
    if not isinstance(external_id, str) or not external_id:
        return None

    attendees = []
    for attendee in item.get("attendees") or []:
        address = (attendee.get("emailAddress") or {}) if isinstance(attendee, dict) else {}
        if isinstance(address.get("address"), str) and "@" in address["address"]:
            attendees.append({"email": address["address"], "name": address.get("name")})

    location = (item.get("location") or {}).get("displayName") or None
    online_meeting = item.get("onlineMeeting") or {}
    try:
        start = parse_graph_datetime(item.get("start"))
        end = parse_graph_datetime(item.get("end"))
        if start is None or end is None:
            return None
        return EventCreate(
            user_id=user_id,
            title=item.get("subject") or UNTITLED_EVENT,
            description=item.get("bodyPreview") or None,
            start_time=start,
            end_time=end,
            location=location,
            meeting_url=(
                online_meeting.get("joinUrl") if isinstance(online_meeting, dict) else None
            ),
            is_all_day=bool(item.get("isAllDay")),
            external_id=external_id,
            calendar_type=CalendarType.OUTLOOK,
            calendar_integration_id=integration_id,
            attendees=attendees,
            timezone=(item.get("start") or {}).get("timeZone") or "UTC",
        )
    except ValueError as exc:
        logger.debug("Skipping malformed Outlook event %s: %s", external_id, exc)
        return None


class OutlookCalendarProvider(OAuthCalendarProvider):
    """Outlook adapter using Microsoft Graph v1.0 over httpx."""

    calendar_type = CalendarType.OUTLOOK
    default_integration_name = "Outlook Calendar"

    @staticmethod
    def _calendar_path(integration: CalendarIntegration) -> str:
        calendar_id = integration.calendar_id
        if not calendar_id or calendar_id in _DEFAULT_CALENDAR_IDS:
            return f"{GRAPH_API_BASE_URL}/me/calendar"
        return f"{GRAPH_API_BASE_URL}/me/calendars/{quote(calendar_id, safe='')}"

    @staticmethod
    def _event_url(event: Event) -> str:
        return f"{GRAPH_API_BASE_URL}/me/events/{quote(event.external_id or '', safe='')}"

    async def _probe_primary_calendar(self, access_token: str) -> tuple[str, str] | None:
        profile = await self._request_json("GET", f"{GRAPH_API_BASE_URL}/me", access_token)
        calendar = await self._request_json(
            "GET", f"{GRAPH_API_BASE_URL}/me/calendar", access_token
        )
        calendar_id = calendar.get("id")
        if not isinstance(calendar_id, str) or not calendar_id:
            return None
        account = profile.get("mail") or profile.get("userPrincipalName")
        calendar_name = calendar.get("name") or self.default_integration_name
        display_name = f"{calendar_name} ({account})" if account else calendar_name
        return calendar_id, display_name

    async def _create_remote(
        self, integration: CalendarIntegration | None, draft: EventDraft
    ) -> str | None:
        assert integration is not None
        payload = await self._request_json(
            "POST",
            f"{self._calendar_path(integration)}/events",
            integration.access_token,
            json_body=build_graph_event_body(draft),
        )
        external_id = payload.get("id")
        if not isinstance(external_id, str) or not external_id:
            raise CalendarProviderError(
                provider=self.name,
                status_code=None,
                message="create response is missing the event id",
            )
        return external_id

    async def _update_remote(
        self, integration: CalendarIntegration, event: Event, fields: dict[str, Any]
    ) -> None:
        url = self._event_url(event)
        current = await self._request_json("GET", url, integration.access_token)

        merged = EventDraft.model_validate(
            {
                **event.model_dump(include=set(EventDraft.model_fields) - {"calendar_type"}),
                **{key: value for key, value in fields.items() if key in EventDraft.model_fields},
            }
        )
        body = build_graph_event_body(merged)
        patch: dict[str, Any] = {
            "subject": body["subject"],
            "start": body["start"],
            "end": body["end"],
            "isAllDay": body["isAllDay"],
            "location": body["location"],
        }
        current_body = current.get("body") or {}
        if "description" in fields or not current_body.get("content"):
            patch["body"] = body["body"]

        await self._request_json("PATCH", url, integration.access_token, json_body=patch)

    async def _delete_remote(self, integration: CalendarIntegration, event: Event) -> None:
        response = await self._request("DELETE", self._event_url(event), integration.access_token)
        if response.status_code == 404:
            logger.info("Outlook event %s already deleted", event.external_id)
            return
        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarProviderError(
                provider=self.name,
                status_code=response.status_code,
                message=f"delete failed for event {event.external_id}",
            )

    async def _fetch_remote(
        self, integration: CalendarIntegration, start: datetime, end: datetime
    ) -> list[EventCreate]:
        url: str | None = f"{self._calendar_path(integration)}/calendarView"
        params: dict[str, Any] | None = {
            "startDateTime": start.astimezone(UTC).isoformat(),
            "endDateTime": end.astimezone(UTC).isoformat(),
            "$top": GRAPH_CALENDAR_VIEW_PAGE_SIZE,
            "$orderby": "start/dateTime",
        }
        headers = {"Prefer": 'outlook.timezone="UTC"'}

        events: list[EventCreate] = []
        for _ in range(_MAX_SYNC_PAGES):
            if url is None:
                break
            payload = await self._request_json(
                "GET", url, integration.access_token, params=params, extra_headers=headers
            )
            for item in payload.get("value", []):
                if not isinstance(item, dict):
                    continue
                event = graph_event_to_create(
                    item, user_id=self.user_id, integration_id=integration.id
                )
                if event is not None:
                    events.append(event)
            # nextLink already carries the query string.
            url = payload.get("@odata.nextLink")
            params = None
        return events
