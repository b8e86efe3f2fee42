# tests/test_suggestions.py

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from prodhub.core.models import Priority, Project, ProjectCategory, ProjectStatus
from prodhub.core.session import HubSession
from prodhub.errors import SuggestionError
from prodhub.llm.offline import OfflineLLMClient
from prodhub.schedule.merger import EventOrigin, ScheduleEvent
from prodhub.suggestions.planner import (
    DEFAULT_INSTRUCTION,
    build_suggestion_prompt,
    parse_suggestions,
    related_events,
)

from .fakes import OWNER, FakeLLMClient, RecordingBackend


def _event(eid: str, title: str) -> ScheduleEvent:
    return ScheduleEvent(eid, title, datetime(2026, 3, 20, 9, 0, tzinfo=UTC), EventOrigin.EXTERNAL_CALENDAR)


def _project(name: str = "Intro to ML") -> Project:
    return Project(
        id="p1",
        name=name,
        category=ProjectCategory.COURSE,
        status=ProjectStatus.IN_PROGRESS,
        progress=0,
        created_at=None,
    )


def test_related_events_match_on_words_longer_than_two_chars() -> None:
    events = [
        _event("gcal-1", "INTRO lecture"),
        _event("gcal-2", "ML reading group"),
        _event("gcal-3", "Go to the gym"),
    ]
    # "to" and "ml" are too short to count as keywords.
    assert [e.id for e in related_events("Intro to ML", events)] == ["gcal-1"]
    assert related_events("ML", events) == []


def test_prompt_carries_instruction_project_and_related_events() -> None:
    prompt = build_suggestion_prompt(
        _project(),
        [_event("gcal-1", "Intro midterm"), _event("gcal-2", "Dentist")],
        "  Prepare for the midterm ",
    )
    lines = prompt.splitlines()
    assert lines[0] == "Main instruction from user:"
    assert lines[1] == "Prepare for the midterm"
    assert "Project: Intro to ML" in lines
    assert "Project type: Course" in lines
    assert '- "Intro midterm" on 2026-03-20' in lines
    assert "Dentist" not in prompt

    assert DEFAULT_INSTRUCTION in build_suggestion_prompt(_project(), [], None)


def test_parse_suggestions_accepts_wrapped_json_and_defaults_priority() -> None:
    raw = 'Here you go:\n{"tasks": [{"title": " Read ch. 1 ", "priority": "high"}, {"title": "Quiz", "priority": "urgent"}, {"title": ""}, 3]}'
    out = parse_suggestions(raw)
    assert [(s.title, s.priority) for s in out] == [
        ("Read ch. 1", Priority.HIGH),
        ("Quiz", Priority.MEDIUM),
    ]


@pytest.mark.parametrize(
    "raw",
    ["", "not json at all", '{"items": []}', '{"tasks": "nope"}', '{"tasks": []}', '{"tasks": [{"priority": "Low"}]}'],
)
def test_parse_suggestions_rejects_unusable_responses(raw: str) -> None:
    with pytest.raises(SuggestionError):
        parse_suggestions(raw)


@pytest.mark.asyncio
async def test_session_suggest_creates_tasks_without_due_dates(
        session: HubSession, backend: RecordingBackend, llm: FakeLLMClient
) -> None:
    await session.start(background=False)
    pid = await session.gateway.create_project("Intro to ML")
    await session.sync()
    session.external_events = [_event("gcal-1", "Intro exam")]
    llm.next_text = json.dumps(
        {"tasks": [{"title": "Review lectures", "priority": "High"}, {"title": "Practice set", "priority": "Low"}]}
    )

    created = await session.suggest_tasks(pid, "Get ready for the exam")
    await session.sync()

    assert len(created) == 2
    tasks = sorted(backend.records(OWNER, "tasks"), key=lambda r: r["title"])
    assert [(t["title"], t["priority"], t["dueDate"], t["completed"], t["projectId"]) for t in tasks] == [
        ("Practice set", "Low", "", False, pid),
        ("Review lectures", "High", "", False, pid),
    ]

    (messages, system_prompt, response_format) = llm.calls[0]
    assert '"Intro exam"' in messages[0]["content"]
    assert "STRICT JSON" in system_prompt
    assert response_format["type"] == "json_schema"
    assert response_format["json_schema"]["strict"] is True
    assert response_format["json_schema"]["schema"]["required"] == ["tasks"]

    # Suggested tasks count toward progress like any other task.
    assert session.derived.progress[pid] == 0
    assert session.upcoming() == []
    await session.stop()


@pytest.mark.asyncio
async def test_session_suggest_llm_failure_writes_nothing(
        session: HubSession, backend: RecordingBackend, llm: FakeLLMClient
) -> None:
    await session.start(background=False)
    pid = await session.gateway.create_project("Thesis")
    await session.sync()
    llm.error = RuntimeError("boom")

    with pytest.raises(SuggestionError):
        await session.suggest_tasks(pid)
    assert backend.records(OWNER, "tasks") == []

    with pytest.raises(KeyError):
        await session.suggest_tasks("missing")
    await session.stop()


def test_offline_client_plan_parses() -> None:
    llm = OfflineLLMClient()
    prompt = build_suggestion_prompt(_project("Thesis"), [], None)
    raw = "".join(
        llm.stream_chat([{"role": "user", "content": prompt}], "system", response_format={"type": "json_schema"})
    )
    out = parse_suggestions(raw)
    assert len(out) == 3
    assert all("Thesis" in s.title for s in out)

    notice = "".join(llm.stream_chat([{"role": "user", "content": "hi"}], "Be brief."))
    assert "Offline" in notice
