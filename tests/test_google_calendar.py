# tests/test_google_calendar.py

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from prodhub.core.session import HubSession
from prodhub.errors import CalendarError
from prodhub.integrations.google_calendar import GoogleCalendarAdapter, normalize_calendar_items
from prodhub.schedule.merger import EventOrigin, ScheduleEvent

from .fakes import FakeCalendarSource


def _adapter(handler, **kwargs) -> GoogleCalendarAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleCalendarAdapter(http_client=client, **kwargs)


def test_normalize_maps_ids_dates_and_all_day() -> None:
    items = [
        {"id": "a", "summary": "Team sync", "start": {"dateTime": "2026-03-11T15:30:00+01:00"}},
        {"id": "b", "summary": "Conference day", "start": {"date": "2026-03-12"}},
        {"id": "c", "summary": "Midnight UTC call", "start": {"dateTime": "2026-03-13T00:00:00Z"}},
        {"id": "d", "summary": "Mom's Birthday", "start": {"date": "2026-03-14"}},
        {"id": "e", "summary": "Cancelled", "status": "cancelled", "start": {"date": "2026-03-15"}},
        {"id": "f", "summary": "No start"},
        {"summary": "No id", "start": {"date": "2026-03-16"}},
        {"id": "g", "start": {"date": "2026-03-17"}},
    ]

    events = normalize_calendar_items(items)

    assert [e.id for e in events] == ["gcal-a", "gcal-b", "gcal-c", "gcal-g"]
    by_id = {e.id: e for e in events}
    assert by_id["gcal-a"].all_day is False
    assert by_id["gcal-a"].date == datetime(2026, 3, 11, 14, 30, tzinfo=UTC)
    assert by_id["gcal-b"].date == datetime(2026, 3, 12, tzinfo=UTC)
    assert by_id["gcal-b"].all_day is True
    assert by_id["gcal-c"].all_day is True
    assert by_id["gcal-g"].title == "(no title)"
    assert all(e.origin == EventOrigin.EXTERNAL_CALENDAR for e in events)


def test_normalize_custom_exclusions_are_case_insensitive() -> None:
    items = [
        {"id": "a", "summary": "Dentist", "start": {"date": "2026-03-12"}},
        {"id": "b", "summary": "birthday party", "start": {"date": "2026-03-12"}},
    ]
    events = normalize_calendar_items(items, exclude_keywords=["DENTIST"])
    assert [e.id for e in events] == ["gcal-b"]


@pytest.mark.asyncio
async def test_fetch_sends_bearer_token_and_follows_pages() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.params.get("pageToken") == "next":
            return httpx.Response(200, json={"items": [{"id": "2", "summary": "Two", "start": {"date": "2026-03-13"}}]})
        return httpx.Response(
            200,
            json={
                "items": [{"id": "1", "summary": "One", "start": {"dateTime": "2026-03-12T09:00:00Z"}}],
                "nextPageToken": "next",
            },
        )

    adapter = _adapter(handler)
    events = await adapter.fetch_events("tok", time_min=datetime(2026, 3, 10, tzinfo=UTC))
    await adapter.aclose()

    assert [e.id for e in events] == ["gcal-1", "gcal-2"]
    assert len(seen) == 2
    first = seen[0]
    assert first.headers["Authorization"] == "Bearer tok"
    assert first.url.path == "/calendar/v3/calendars/primary/events"
    assert first.url.params["timeMin"] == "2026-03-10T00:00:00Z"
    assert first.url.params["singleEvents"] == "true"
    assert first.url.params["orderBy"] == "startTime"


@pytest.mark.asyncio
async def test_fetch_stops_at_page_limit() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"items": [], "nextPageToken": f"p{calls}"})

    adapter = _adapter(handler, max_pages=3)
    assert await adapter.fetch_events("tok", time_min=datetime(2026, 3, 10, tzinfo=UTC)) == []
    assert calls == 3


@pytest.mark.asyncio
async def test_fetch_error_carries_status_and_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"code": 401, "message": "Invalid   Credentials"}})

    adapter = _adapter(handler)
    with pytest.raises(CalendarError) as excinfo:
        await adapter.fetch_events("expired", time_min=datetime(2026, 3, 10, tzinfo=UTC))
    assert excinfo.value.status_code == 401
    assert "Invalid Credentials" in str(excinfo.value)


@pytest.mark.asyncio
async def test_fetch_transport_error_and_missing_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    adapter = _adapter(handler)
    with pytest.raises(CalendarError):
        await adapter.fetch_events("tok", time_min=datetime(2026, 3, 10, tzinfo=UTC))
    with pytest.raises(CalendarError):
        await adapter.fetch_events("  ", time_min=datetime(2026, 3, 10, tzinfo=UTC))


@pytest.mark.asyncio
async def test_session_calendar_failure_degrades_to_no_events(
        session: HubSession, calendar: FakeCalendarSource
) -> None:
    await session.start(background=False)
    session.external_events = [
        ScheduleEvent("gcal-old", "Old", datetime(2026, 3, 12, tzinfo=UTC), EventOrigin.EXTERNAL_CALENDAR)
    ]
    calendar.error = CalendarError("Google Calendar request failed (401): Invalid Credentials", status_code=401)

    events = await session.refresh_calendar()

    assert events == []
    assert session.external_events == []
    assert "401" in (session.calendar_error or "")
    assert session.schedule() == []
    await session.stop()
    assert calendar.closed is True


@pytest.mark.asyncio
async def test_session_calendar_events_join_the_schedule(
        session: HubSession, calendar: FakeCalendarSource
) -> None:
    await session.start(background=False)
    calendar.events = [
        ScheduleEvent("gcal-x", "Workshop", datetime(2026, 3, 20, tzinfo=UTC), EventOrigin.EXTERNAL_CALENDAR)
    ]
    await session.gateway.create_project("Thesis", deadline=datetime(2026, 3, 15, 9, 0).astimezone())
    await session.sync()

    await session.refresh_calendar()
    assert session.calendar_error is None
    assert calendar.calls[0][0] == "token-123"
    assert [e.title for e in session.schedule()] == ["Thesis", "Workshop"]
    await session.stop()
