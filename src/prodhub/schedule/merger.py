# src/prodhub/schedule/merger.py

"""
Unified schedule.

Merges three heterogeneous sources into one chronological timeline:
- project deadlines,
- deadlines of incomplete tasks (with an overdue flag),
- events from the external calendar (already normalized).

Everything here is pure: the timeline is re-derived from its inputs every time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from ..core.models import Project, Task
from ..core.timeutil import ensure_aware, start_of_day

logger = logging.getLogger(__name__)


class EventOrigin(StrEnum):
    PROJECT_DEADLINE = "Project Deadline"
    TASK_DEADLINE = "Task Deadline"
    EXTERNAL_CALENDAR = "Google Calendar"


@dataclass(slots=True, frozen=True)
class ScheduleEvent:
    id: str
    title: str
    date: datetime | None
    origin: EventOrigin
    overdue: bool = False
    all_day: bool = False


def project_events(projects: Iterable[Project]) -> list[ScheduleEvent]:
    return [
        ScheduleEvent(
            id=f"proj-{p.id}",
            title=p.name,
            date=p.deadline,
            origin=EventOrigin.PROJECT_DEADLINE,
        )
        for p in projects
        if p.deadline is not None
    ]


def task_events(tasks: Iterable[Task], today: datetime) -> list[ScheduleEvent]:
    cutoff = start_of_day(today)
    return [
        ScheduleEvent(
            id=f"task-{t.id}",
            title=t.title,
            date=t.due_date,
            origin=EventOrigin.TASK_DEADLINE,
            overdue=t.due_date < cutoff,
        )
        for t in tasks
        if not t.completed and t.due_date is not None
    ]


def _valid_date(event: ScheduleEvent) -> bool:
    return isinstance(event.date, datetime)


def merge_schedule(
        projects: Iterable[Project],
        tasks: Iterable[Task],
        external_events: Iterable[ScheduleEvent],
        today: datetime,
) -> list[ScheduleEvent]:
    """
    One ascending timeline.

    Events without a usable date are dropped, ids are de-duplicated (first wins),
    and equal dates keep insertion order: projects, then tasks, then external.
    """
    combined = [
        *project_events(projects),
        *task_events(tasks, today),
        *external_events,
    ]

    seen: set[str] = set()
    timeline: list[ScheduleEvent] = []
    for event in combined:
        if not _valid_date(event):
            logger.debug("Dropping schedule event %s without a valid date", event.id)
            continue
        if event.id in seen:
            continue
        seen.add(event.id)
        timeline.append(event)

    timeline.sort(key=lambda e: ensure_aware(e.date))  # type: ignore[arg-type]
    return timeline
