# src/prodhub/analytics/progress.py

"""
Project progress.

Pure half of the derive-then-persist pair: nothing here touches the store.
The coordinator decides whether a computed value needs to be written back.
"""

from __future__ import annotations

from collections.abc import Iterable

from ..core.models import Project, Task


def percent(part: int, whole: int) -> int:
    """round-half-up(100 * part / whole) in integer arithmetic; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def compute_progress(tasks: Iterable[Task], project_id: str) -> int:
    total = 0
    completed = 0
    for t in tasks:
        if t.project_id != project_id:
            continue
        total += 1
        if t.completed:
            completed += 1
    return percent(completed, total)


def progress_by_project(projects: Iterable[Project], tasks: Iterable[Task]) -> dict[str, int]:
    """Progress for every project in one pass over the tasks."""
    totals: dict[str, list[int]] = {p.id: [0, 0] for p in projects}
    for t in tasks:
        if t.project_id is None:
            continue
        bucket = totals.get(t.project_id)
        if bucket is None:
            continue
        bucket[0] += 1
        if t.completed:
            bucket[1] += 1
    return {pid: percent(done, total) for pid, (total, done) in totals.items()}
