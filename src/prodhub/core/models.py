# src/prodhub/core/models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from .timeutil import format_instant, parse_day_key, parse_instant

Record = dict[str, Any]
# Flat field map as stored in the backing store; always carries "id".


class Collection(StrEnum):
    PROJECTS = "projects"
    TASKS = "tasks"
    HABITS = "habits"
    HABIT_ENTRIES = "habit_entries"


class Priority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @classmethod
    def from_raw(cls, raw: Any) -> Priority:
        if isinstance(raw, str):
            for p in cls:
                if p.value.lower() == raw.strip().lower():
                    return p
        return cls.MEDIUM

    @property
    def rank(self) -> int:
        return {Priority.HIGH: 1, Priority.MEDIUM: 2, Priority.LOW: 3}[self]


class ProjectCategory(StrEnum):
    COURSE = "Course"
    CONFERENCE = "Conference"
    SEMINAR = "Seminar"
    BOOTCAMP = "Bootcamp"
    PERSONAL = "Personal"

    @classmethod
    def from_raw(cls, raw: Any) -> ProjectCategory:
        if isinstance(raw, str):
            for c in cls:
                if c.value.lower() == raw.strip().lower():
                    return c
        return cls.COURSE


class ProjectStatus(StrEnum):
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"

    @classmethod
    def from_raw(cls, raw: Any) -> ProjectStatus:
        try:
            return cls(raw)
        except ValueError:
            return cls.IN_PROGRESS


class MalformedRecord(ValueError):
    """A record that cannot be projected into a model (e.g. missing id)."""


def _require_id(record: Record) -> str:
    rid = record.get("id")
    if not isinstance(rid, str) or not rid.strip():
        raise MalformedRecord(f"record without id: {record!r}")
    return rid


def _as_int(raw: Any, default: int = 0) -> int:
    if isinstance(raw, bool):
        return default
    try:
        return int(round(float(raw)))
    except (TypeError, ValueError):
        return default


def _as_bool(raw: Any) -> bool:
    # Stored flags may come back as strings; "false" must not read as True.
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int | float):
        return raw != 0
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}
    return False


@dataclass(slots=True, frozen=True)
class Project:
    id: str
    name: str
    category: ProjectCategory
    status: ProjectStatus
    progress: int
    created_at: datetime | None
    deadline: datetime | None = None

    @classmethod
    def from_record(cls, record: Record) -> Project:
        return cls(
            id=_require_id(record),
            name=str(record.get("name") or ""),
            # "type" is the field name older records were written with.
            category=ProjectCategory.from_raw(record.get("category", record.get("type"))),
            status=ProjectStatus.from_raw(record.get("status")),
            progress=max(0, min(100, _as_int(record.get("progress"), 0))),
            created_at=parse_instant(record.get("createdAt")),
            deadline=parse_instant(record.get("deadline")),
        )


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    project_id: str | None
    title: str
    due_date: datetime | None
    priority: Priority
    completed: bool
    completed_at: datetime | None
    created_at: datetime | None

    @classmethod
    def from_record(cls, record: Record) -> Task:
        project_id = record.get("projectId")
        return cls(
            id=_require_id(record),
            project_id=str(project_id) if project_id else None,
            title=str(record.get("title") or ""),
            due_date=parse_instant(record.get("dueDate")),
            priority=Priority.from_raw(record.get("priority")),
            completed=_as_bool(record.get("completed")),
            completed_at=parse_instant(record.get("completedAt")),
            created_at=parse_instant(record.get("createdAt")),
        )


@dataclass(slots=True, frozen=True)
class Habit:
    id: str
    name: str
    created_at: datetime | None

    @classmethod
    def from_record(cls, record: Record) -> Habit:
        return cls(
            id=_require_id(record),
            name=str(record.get("name") or ""),
            created_at=parse_instant(record.get("createdAt")),
        )


@dataclass(slots=True, frozen=True)
class HabitEntry:
    id: str
    habit_id: str
    day: str
    completed: bool
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Record) -> HabitEntry:
        habit_id = record.get("habitId")
        if not habit_id:
            raise MalformedRecord(f"habit entry without habitId: {record!r}")
        d = parse_day_key(record.get("date"))
        if d is None:
            raise MalformedRecord(f"habit entry with invalid date: {record!r}")
        return cls(
            id=_require_id(record),
            habit_id=str(habit_id),
            day=d.isoformat(),
            completed=_as_bool(record.get("completed")),
            updated_at=parse_instant(record.get("updatedAt")),
        )


MODEL_BY_COLLECTION: dict[Collection, type] = {
    Collection.PROJECTS: Project,
    Collection.TASKS: Task,
    Collection.HABITS: Habit,
    Collection.HABIT_ENTRIES: HabitEntry,
}


def task_completion_fields(completed: bool, now: datetime) -> Record:
    """completed and completedAt always travel together in one write."""
    return {
        "completed": bool(completed),
        "completedAt": format_instant(now) if completed else None,
    }
