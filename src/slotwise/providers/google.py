"""Google Calendar v3 adapter."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from urllib.parse import quote

from slotwise.errors import CalendarProviderError
from slotwise.models import (
    AttendeeInfo,
    CalendarIntegration,
    CalendarType,
    Event,
    EventCreate,
    EventDraft,
)
from slotwise.providers.base import UNTITLED_EVENT, coerce_zone
from slotwise.providers.remote import OAuthCalendarProvider

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_SYNC_MAX_RESULTS = 2500
_MAX_SYNC_PAGES = 20


def _google_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _all_day_bounds(start: datetime, end: datetime) -> tuple[date, date]:
    """Google all-day events use an exclusive end date at least one day later."""
    start_date = start.date()
    end_date = end.date()
    if end_date <= start_date:
        end_date = start_date + timedelta(days=1)
    return start_date, end_date


def _event_boundaries(
    start: datetime, end: datetime, is_all_day: bool, timezone: str | None
) -> tuple[dict[str, str], dict[str, str]]:
    if is_all_day:
        start_date, end_date = _all_day_bounds(start, end)
        return {"date": start_date.isoformat()}, {"date": end_date.isoformat()}
    zone = coerce_zone(timezone)
    tz_name = timezone or "UTC"
    return (
        {"dateTime": start.astimezone(zone).isoformat(), "timeZone": tz_name},
        {"dateTime": end.astimezone(zone).isoformat(), "timeZone": tz_name},
    )


def _description_with_meeting(description: str | None, meeting_url: str | None) -> str | None:
    if not meeting_url:
        return description
    join_line = f"Join: {meeting_url}"
    if description and meeting_url in description:
        return description
    return f"{description}\n\n{join_line}" if description else join_line


def build_google_event_body(draft: EventDraft) -> dict[str, Any]:
    """Translate an event into a Google Calendar ``events.insert`` body."""
    start, end = _event_boundaries(
        draft.start_time, draft.end_time, draft.is_all_day, draft.timezone
    )
    body: dict[str, Any] = {
        "summary": draft.title,
        "start": start,
        "end": end,
    }
    description = _description_with_meeting(draft.description, draft.meeting_url)
    if description:
        body["description"] = description
    if draft.location:
        body["location"] = draft.location
    if draft.attendees:
        body["attendees"] = [_attendee_body(attendee) for attendee in draft.attendees]
    if draft.recurrence:
        rule = draft.recurrence.strip()
        body["recurrence"] = [rule if rule.upper().startswith("RRULE:") else f"RRULE:{rule}"]
    return body


def _attendee_body(attendee: AttendeeInfo) -> dict[str, str]:
    payload = {"email": attendee.email}
    if attendee.name:
        payload["displayName"] = attendee.name
    return payload


def _parse_google_boundary(value: Any, fallback_zone: str | None) -> tuple[datetime, bool] | None:
    if not isinstance(value, dict):
        return None
    date_time = value.get("dateTime")
    if isinstance(date_time, str) and date_time:
        parsed = datetime.fromisoformat(date_time)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=coerce_zone(value.get("timeZone") or fallback_zone))
        return parsed, False
    all_day = value.get("date")
    if isinstance(all_day, str) and all_day:
        return datetime.combine(date.fromisoformat(all_day), time.min, tzinfo=UTC), True
    return None


def google_event_to_create(
    item: dict[str, Any],
    *,
    user_id: int,
    integration_id: int,
    fallback_timezone: str | None = None,
) -> EventCreate | None:
    """Translate a Google event resource into a local insert payload.

    Returns ``None`` for cancelled events, events without an id and events
    whose times are missing, unparsable or inverted.
    """
    if item.get("status") == "cancelled":
        return None
    external_id = item.get("id")
    if not isinstance(external_id, str) or not external_id:
        return None

    attendees = [
        {"email": attendee["email"], "name": attendee.get("displayName")}
        for attendee in item.get("attendees", [])
        if isinstance(attendee, dict) and isinstance(attendee.get("email"), str)
    ]
    start_block = item.get("start") or {}
    try:
        start = _parse_google_boundary(item.get("start"), fallback_timezone)
        end = _parse_google_boundary(item.get("end"), fallback_timezone)
        if start is None or end is None:
            return None
        return EventCreate(
            user_id=user_id,
            title=item.get("summary") or UNTITLED_EVENT,
            description=item.get("description"),
            start_time=start[0],
            end_time=end[0],
            location=item.get("location"),
            meeting_url=item.get("hangoutLink"),
            is_all_day=start[1],
            external_id=external_id,
            calendar_type=CalendarType.GOOGLE,
            calendar_integration_id=integration_id,
            attendees=attendees,
            timezone=start_block.get("timeZone") or fallback_timezone or "UTC",
        )
    except ValueError as exc:
        logger.debug("Skipping malformed Google event %s: %s", external_id, exc)
        return None


class GoogleCalendarProvider(OAuthCalendarProvider):
    """Google Calendar adapter using the v3 REST API over httpx."""

    calendar_type = CalendarType.GOOGLE
    default_integration_name = "Google Calendar"

    @staticmethod
    def _calendar_path(integration: CalendarIntegration) -> str:
        calendar_id = integration.calendar_id or "primary"
        return f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}"

    async def _probe_primary_calendar(self, access_token: str) -> tuple[str, str] | None:
        payload = await self._request_json(
            "GET",
            f"{GOOGLE_CALENDAR_API_BASE_URL}/users/me/calendarList",
            access_token,
        )
        for item in payload.get("items", []):
            if isinstance(item, dict) and item.get("primary") and item.get("id"):
                return item["id"], item.get("summary") or item["id"]
        return None

    async def _create_remote(
        self, integration: CalendarIntegration | None, draft: EventDraft
    ) -> str | None:
        assert integration is not None
        payload = await self._request_json(
            "POST",
            f"{self._calendar_path(integration)}/events",
            integration.access_token,
            json_body=build_google_event_body(draft),
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
        url = f"{self._calendar_path(integration)}/events/{quote(event.external_id or '', safe='')}"
        current = await self._request_json("GET", url, integration.access_token)

        merged = EventDraft.model_validate(
            {
                **event.model_dump(
                    include=set(EventDraft.model_fields) - {"calendar_type"},
                ),
                **{key: value for key, value in fields.items() if key in EventDraft.model_fields},
            }
        )
        body = build_google_event_body(merged)
        current["summary"] = body["summary"]
        current["start"] = body["start"]
        current["end"] = body["end"]
        for key in ("description", "location"):
            if key in body:
                current[key] = body[key]
            else:
                current.pop(key, None)

        await self._request_json("PUT", url, integration.access_token, json_body=current)

    async def _delete_remote(self, integration: CalendarIntegration, event: Event) -> None:
        url = f"{self._calendar_path(integration)}/events/{quote(event.external_id or '', safe='')}"
        response = await self._request("DELETE", url, integration.access_token)
        if response.status_code in (404, 410):
            logger.info("Google event %s already deleted", event.external_id)
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
        params: dict[str, Any] = {
            "timeMin": _google_rfc3339(start),
            "timeMax": _google_rfc3339(end),
            "singleEvents": True,
            "orderBy": "startTime",
            "maxResults": GOOGLE_SYNC_MAX_RESULTS,
        }
        events: list[EventCreate] = []
        for _ in range(_MAX_SYNC_PAGES):
            payload = await self._request_json(
                "GET",
                f"{self._calendar_path(integration)}/events",
                integration.access_token,
                params=params,
            )
            for item in payload.get("items", []):
                if not isinstance(item, dict):
                    continue
                event = google_event_to_create(
                    item,
                    user_id=self.user_id,
                    integration_id=integration.id,
                    fallback_timezone=payload.get("timeZone"),
                )
                if event is not None:
                    events.append(event)
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        return events
