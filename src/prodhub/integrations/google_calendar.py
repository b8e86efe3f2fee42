# src/prodhub/integrations/google_calendar.py

from __future__ import annotations

"""
External calendar adapter (Google Calendar v3).

Fetches upcoming events for a bearer token and normalizes them into
ScheduleEvents:
- ids are prefixed "gcal-" so they never collide with project/task events,
- date-only starts become midnight UTC of that date,
- an event is all-day when its start sits exactly at midnight UTC,
- titles containing an exclusion keyword (case-insensitive) are dropped.

The adapter never touches the RecordStore; the session keeps the last fetched
list and feeds it to the schedule merger.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime, time
from typing import Any

import httpx

from ..errors import CalendarError
from ..schedule.merger import EventOrigin, ScheduleEvent

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_EXCLUDE_KEYWORDS: tuple[str, ...] = ("birthday",)


def _safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def _google_rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_event_start(payload: Any) -> datetime | None:
    """Timed events carry "dateTime", all-day events carry "date"."""
    if not isinstance(payload, dict):
        return None

    date_time = payload.get("dateTime")
    if isinstance(date_time, str) and date_time.strip():
        try:
            parsed = datetime.fromisoformat(date_time.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)

    date_value = payload.get("date")
    if isinstance(date_value, str) and date_value.strip():
        try:
            parsed_date = date.fromisoformat(date_value.strip())
        except ValueError:
            return None
        return datetime.combine(parsed_date, time(0), tzinfo=UTC)

    return None


def _is_all_day(start: datetime) -> bool:
    utc = start.astimezone(UTC)
    return utc.hour == 0 and utc.minute == 0 and utc.second == 0 and utc.microsecond == 0


def normalize_calendar_items(
        items: Iterable[Any],
        *,
        exclude_keywords: Sequence[str] = DEFAULT_EXCLUDE_KEYWORDS,
) -> list[ScheduleEvent]:
    """Map raw event payloads to schedule events, skipping anything unusable."""
    keywords = [k.lower() for k in exclude_keywords if k]
    events: list[ScheduleEvent] = []

    for item in items:
        if not isinstance(item, dict):
            continue
        event_id = item.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            continue
        status = item.get("status")
        if isinstance(status, str) and status.lower() == "cancelled":
            continue

        title = item.get("summary")
        title = title.strip() if isinstance(title, str) and title.strip() else "(no title)"
        if any(k in title.lower() for k in keywords):
            continue

        start = _parse_event_start(item.get("start"))
        if start is None:
            logger.debug("Skipping calendar event %s without a usable start", event_id)
            continue

        events.append(
            ScheduleEvent(
                id=f"gcal-{event_id.strip()}",
                title=title,
                date=start,
                origin=EventOrigin.EXTERNAL_CALENDAR,
                all_day=_is_all_day(start),
            )
        )
    return events


class GoogleCalendarAdapter:
    """
    Read-only Google Calendar client.

    The access token is supplied per call (the hub never stores OAuth state);
    a missing token is a CalendarError, not an empty result.
    """

    def __init__(
            self,
            *,
            calendar_id: str = "primary",
            exclude_keywords: Sequence[str] = DEFAULT_EXCLUDE_KEYWORDS,
            max_pages: int = 5,
            timeout_seconds: float = 30.0,
            http_client: httpx.AsyncClient | None = None,
            base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self._calendar_id = (calendar_id or "primary").strip() or "primary"
        self._exclude_keywords = tuple(k.lower() for k in exclude_keywords if k)
        self._max_pages = max(1, int(max_pages))
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    async def _get_page(self, access_token: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self._base_url}/calendars/{self._calendar_id}/events"
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = await self._http_client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise CalendarError(f"Google Calendar request failed: {exc.__class__.__name__}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise CalendarError(
                f"Google Calendar request failed ({response.status_code}): "
                f"{_safe_google_error_message(response)}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise CalendarError("Google Calendar response returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise CalendarError("Google Calendar response has unexpected payload shape")
        return payload

    async def fetch_events(self, access_token: str, *, time_min: datetime) -> list[ScheduleEvent]:
        """Upcoming events starting at or after `time_min`, in provider order."""
        if not access_token or not access_token.strip():
            raise CalendarError("Calendar access token is missing")

        params: dict[str, str] = {
            "timeMin": _google_rfc3339(time_min),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        events: list[ScheduleEvent] = []

        for _ in range(self._max_pages):
            payload = await self._get_page(access_token.strip(), params)
            items = payload.get("items")
            if isinstance(items, list):
                events.extend(normalize_calendar_items(items, exclude_keywords=self._exclude_keywords))

            next_page_token = payload.get("nextPageToken")
            if not isinstance(next_page_token, str) or not next_page_token:
                break
            params["pageToken"] = next_page_token
        else:
            logger.info("Calendar fetch stopped after %d pages", self._max_pages)

        logger.debug("Fetched %d calendar events", len(events))
        return events
