# tests/test_gateway.py

from __future__ import annotations

from datetime import date, datetime

import pytest

from prodhub.core.models import HabitEntry
from prodhub.errors import CascadeError, MutationError
from prodhub.storage.gateway import MutationGateway

from .fakes import OWNER, RecordingBackend


def _gateway(backend: RecordingBackend, now: datetime) -> MutationGateway:
    return MutationGateway(backend, OWNER, clock=lambda: now)


async def _project_with_tasks(gw: MutationGateway, n: int) -> tuple[str, list[str]]:
    pid = await gw.create_project("Thesis", "Personal", deadline=date(2026, 6, 1))
    tids = [await gw.create_task(f"step {i}", project_id=pid) for i in range(n)]
    return pid, tids


@pytest.mark.asyncio
async def test_create_project_and_task_write_expected_fields(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    pid = await gw.create_project("  Thesis ", "seminar", deadline=date(2026, 6, 1))
    tid = await gw.create_task("Read papers", project_id=pid, due_date=date(2026, 3, 12), priority="high")

    (project,) = backend.records(OWNER, "projects")
    assert project["id"] == pid
    assert project["name"] == "Thesis"
    assert project["category"] == "Seminar"
    assert project["status"] == "In Progress"
    assert project["progress"] == 0
    assert project["deadline"] == "2026-06-01"

    (task,) = backend.records(OWNER, "tasks")
    assert task["id"] == tid
    assert task["projectId"] == pid
    assert task["dueDate"] == "2026-03-12"
    assert task["priority"] == "High"
    assert task["completed"] is False
    assert task["completedAt"] is None


@pytest.mark.asyncio
async def test_create_rejects_blank_names(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    with pytest.raises(ValueError):
        await gw.create_project("   ")
    with pytest.raises(ValueError):
        await gw.create_task("")
    with pytest.raises(ValueError):
        await gw.create_habit("")


@pytest.mark.asyncio
async def test_toggle_task_sets_and_clears_completed_at(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    tid = await gw.create_task("Write intro")

    await gw.set_task_completed(tid, True)
    (task,) = backend.records(OWNER, "tasks")
    assert task["completed"] is True
    assert task["completedAt"] == now.isoformat()

    await gw.set_task_completed(tid, False)
    (task,) = backend.records(OWNER, "tasks")
    assert task["completed"] is False
    assert task["completedAt"] is None


@pytest.mark.asyncio
async def test_delete_project_batch_removes_project_and_all_tasks(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    pid, tids = await _project_with_tasks(gw, 3)
    other = await gw.create_task("unrelated")

    result = await gw.delete_project(pid)

    assert result.atomic is True
    assert result.delete_count == 4
    assert len(backend.deletes) == 4
    assert backend.records(OWNER, "projects") == []
    assert [t["id"] for t in backend.records(OWNER, "tasks")] == [other]
    assert set(result.child_ids) == set(tids)


@pytest.mark.asyncio
async def test_delete_project_without_batch_goes_children_first(now: datetime) -> None:
    backend = RecordingBackend(supports_batch=False)
    gw = _gateway(backend, now)
    pid, tids = await _project_with_tasks(gw, 2)

    result = await gw.delete_project(pid)

    assert result.atomic is False
    assert backend.deletes == [("tasks", tids[0]), ("tasks", tids[1]), ("projects", pid)]
    assert backend.records(OWNER, "tasks") == []


@pytest.mark.asyncio
async def test_partial_cascade_reports_orphans(now: datetime) -> None:
    backend = RecordingBackend(supports_batch=False)
    gw = _gateway(backend, now)
    pid, tids = await _project_with_tasks(gw, 3)
    backend.fail_delete_ids = {tids[1]}

    with pytest.raises(CascadeError) as excinfo:
        await gw.delete_project(pid)

    err = excinfo.value
    assert isinstance(err, MutationError)
    assert err.deleted_ids == [tids[0]]
    assert err.remaining_ids == [tids[1], tids[2]]
    # parent untouched, so the orphan window is visible and recoverable
    assert [p["id"] for p in backend.records(OWNER, "projects")] == [pid]


@pytest.mark.asyncio
async def test_delete_project_with_no_tasks(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    pid = await gw.create_project("Empty")
    result = await gw.delete_project(pid)
    assert result.child_ids == ()
    assert backend.deletes == [("projects", pid)]


@pytest.mark.asyncio
async def test_delete_habit_cascades_entries(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    hid = await gw.create_habit("Run")
    keep = await gw.create_habit("Read")
    await gw.toggle_habit_day(hid, date(2026, 3, 9), None)
    await gw.toggle_habit_day(hid, date(2026, 3, 10), None)
    await gw.toggle_habit_day(keep, date(2026, 3, 10), None)

    result = await gw.delete_habit(hid)

    assert len(result.child_ids) == 2
    assert [h["id"] for h in backend.records(OWNER, "habits")] == [keep]
    assert [e["habitId"] for e in backend.records(OWNER, "habit_entries")] == [keep]


@pytest.mark.asyncio
async def test_toggle_habit_day_creates_then_flips(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    hid = await gw.create_habit("Meditate")

    eid = await gw.toggle_habit_day(hid, "2026-03-10", None)
    (raw,) = backend.records(OWNER, "habit_entries")
    assert raw == {
        "id": eid,
        "habitId": hid,
        "date": "2026-03-10",
        "completed": True,
        "updatedAt": now.isoformat(),
    }

    current = HabitEntry.from_record(raw)
    same = await gw.toggle_habit_day(hid, "2026-03-10", current)
    assert same == eid
    (raw,) = backend.records(OWNER, "habit_entries")
    assert raw["completed"] is False


@pytest.mark.asyncio
async def test_failed_write_raises_mutation_error(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    tid = await gw.create_task("x")
    backend.fail_updates = True

    with pytest.raises(MutationError) as excinfo:
        await gw.set_task_completed(tid, True)
    assert excinfo.value.record_id == tid
    assert backend.records(OWNER, "tasks")[0]["completed"] is False


@pytest.mark.asyncio
async def test_update_missing_record_raises_mutation_error(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    with pytest.raises(MutationError):
        await gw.update_task("nope", title="renamed")


@pytest.mark.asyncio
async def test_progress_write_is_clamped(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    pid = await gw.create_project("P")
    await gw.update_project_progress(pid, 140)
    assert backend.records(OWNER, "projects")[0]["progress"] == 100


@pytest.mark.asyncio
async def test_record_locks_are_released_after_use(backend: RecordingBackend, now: datetime) -> None:
    gw = _gateway(backend, now)
    pid, _ = await _project_with_tasks(gw, 2)
    hid = await gw.create_habit("Run")
    await gw.toggle_habit_day(hid, date(2026, 3, 10), None)
    await gw.update_project_progress(pid, 40)

    await gw.delete_project(pid)
    await gw.delete_habit(hid)

    assert len(gw._locks) == 0
