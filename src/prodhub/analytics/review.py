# src/prodhub/analytics/review.py

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from ..core.models import Habit, HabitEntry, Project, Task
from ..core.timeutil import ensure_aware, start_of_day
from .habits import weekly_consistency

UPCOMING_LIMIT = 5
REVIEW_WINDOW = timedelta(days=7)


class TaskFilter(StrEnum):
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"


class TaskSort(StrEnum):
    DUE_DATE = "due"
    PRIORITY = "priority"
    PROJECT = "project"


@dataclass(slots=True, frozen=True)
class WeeklyReview:
    start: datetime
    end: datetime
    completed_tasks: tuple[Task, ...]
    habit_consistency: int


def overdue_tasks(tasks: Iterable[Task], today: datetime) -> list[Task]:
    cutoff = start_of_day(today)
    return [t for t in tasks if not t.completed and t.due_date is not None and t.due_date < cutoff]


def upcoming_tasks(tasks: Iterable[Task], today: datetime, *, limit: int = UPCOMING_LIMIT) -> list[Task]:
    cutoff = start_of_day(today)
    pending = [
        t for t in tasks if not t.completed and t.due_date is not None and t.due_date >= cutoff
    ]
    pending.sort(key=lambda t: t.due_date)  # type: ignore[arg-type, return-value]
    return pending[:limit]


def filter_and_sort_tasks(
        tasks: Iterable[Task],
        projects: Mapping[str, Project],
        *,
        task_filter: TaskFilter = TaskFilter.ALL,
        sort_by: TaskSort = TaskSort.DUE_DATE,
) -> list[Task]:
    """Task list view: undated tasks sort after dated ones; sorts are stable."""
    if task_filter == TaskFilter.ACTIVE:
        selected = [t for t in tasks if not t.completed]
    elif task_filter == TaskFilter.COMPLETED:
        selected = [t for t in tasks if t.completed]
    else:
        selected = list(tasks)

    if sort_by == TaskSort.PRIORITY:
        selected.sort(key=lambda t: t.priority.rank)
    elif sort_by == TaskSort.PROJECT:
        def project_name(t: Task) -> str:
            p = projects.get(t.project_id or "")
            return p.name.lower() if p else ""

        selected.sort(key=project_name)
    else:
        selected.sort(
            key=lambda t: (t.due_date is None, t.due_date.timestamp() if t.due_date else 0.0)
        )
    return selected


def weekly_review(
        tasks: Iterable[Task],
        habits: Iterable[Habit],
        entries: Iterable[HabitEntry],
        now: datetime,
) -> WeeklyReview:
    """Activity summary for the trailing seven days ending at `now`."""
    end = ensure_aware(now)
    start = end - REVIEW_WINDOW
    done = tuple(
        t
        for t in tasks
        if t.completed and t.completed_at is not None and t.completed_at >= start
    )
    return WeeklyReview(
        start=start,
        end=end,
        completed_tasks=done,
        habit_consistency=weekly_consistency(habits, entries, end),
    )
