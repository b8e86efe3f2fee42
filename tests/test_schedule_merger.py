# tests/test_schedule_merger.py

from __future__ import annotations

from datetime import UTC, datetime

from prodhub.core.models import Project, Task
from prodhub.schedule.merger import EventOrigin, ScheduleEvent, merge_schedule, task_events

TODAY = datetime(2026, 3, 4, 12, 0).astimezone()


def _project(pid: str, deadline: str | None) -> Project:
    return Project.from_record({"id": pid, "name": f"Project {pid}", "deadline": deadline})


def _task(tid: str, due: str, completed: bool = False) -> Task:
    return Task.from_record({"id": tid, "title": f"Task {tid}", "dueDate": due, "completed": completed})


def _external(eid: str, when: datetime | None) -> ScheduleEvent:
    return ScheduleEvent(id=f"gcal-{eid}", title=f"Event {eid}", date=when, origin=EventOrigin.EXTERNAL_CALENDAR)


def test_merge_orders_sources_and_flags_overdue() -> None:
    projects = [_project("p", "2026-03-05")]
    tasks = [_task("done", "2026-03-03", completed=True), _task("late", "2026-03-02")]
    external = [_external("e", datetime(2026, 3, 6, tzinfo=UTC))]

    timeline = merge_schedule(projects, tasks, external, TODAY)

    assert [e.id for e in timeline] == ["task-late", "proj-p", "gcal-e"]
    assert timeline[0].overdue is True
    assert timeline[0].origin == EventOrigin.TASK_DEADLINE
    assert timeline[1].origin == EventOrigin.PROJECT_DEADLINE
    assert timeline[2].origin == EventOrigin.EXTERNAL_CALENDAR


def test_task_due_today_is_not_overdue() -> None:
    events = task_events([_task("today", "2026-03-04"), _task("yesterday", "2026-03-03")], TODAY)
    flags = {e.id: e.overdue for e in events}
    assert flags == {"task-today": False, "task-yesterday": True}


def test_undated_records_and_invalid_external_events_are_dropped() -> None:
    projects = [_project("nodeadline", None), _project("bad", "not a date")]
    tasks = [_task("nodue", "")]
    external = [_external("broken", None), _external("ok", datetime(2026, 3, 7, tzinfo=UTC))]

    timeline = merge_schedule(projects, tasks, external, TODAY)
    assert [e.id for e in timeline] == ["gcal-ok"]


def test_duplicate_ids_keep_first_occurrence() -> None:
    first = _external("dup", datetime(2026, 3, 8, tzinfo=UTC))
    second = ScheduleEvent(
        id="gcal-dup",
        title="Second copy",
        date=datetime(2026, 3, 1, tzinfo=UTC),
        origin=EventOrigin.EXTERNAL_CALENDAR,
    )
    timeline = merge_schedule([], [], [first, second], TODAY)
    assert len(timeline) == 1
    assert timeline[0].title == "Event dup"


def test_equal_dates_keep_source_order() -> None:
    projects = [_project("p", "2026-03-09")]
    tasks = [_task("t", "2026-03-09")]
    timeline = merge_schedule(projects, tasks, [], TODAY)
    assert [e.id for e in timeline] == ["proj-p", "task-t"]


def test_empty_inputs() -> None:
    assert merge_schedule([], [], [], TODAY) == []
