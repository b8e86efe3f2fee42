# src/prodhub/analytics/habits.py

"""
Habit streaks and weekly consistency.

All functions take "today" from the caller, so results are reproducible in tests.
Day keys are compared as calendar dates in the caller's local timezone.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime

from ..core.models import Habit, HabitEntry
from ..core.timeutil import parse_day_key, previous_day
from .progress import percent

logger = logging.getLogger(__name__)

WINDOW_DAYS = 7


def _today(today: datetime | date) -> date:
    return today.date() if isinstance(today, datetime) else today


def canonical_entries(entries: Iterable[HabitEntry]) -> dict[tuple[str, str], HabitEntry]:
    """
    Collapse duplicates to one entry per (habit_id, day).

    The most recently written entry wins: ordered by updated_at, entries without a
    write stamp sort first, and ties keep snapshot order (later wins).
    """
    indexed = list(enumerate(entries))
    stamped = sorted(
        indexed,
        key=lambda pair: (
            pair[1].updated_at is not None,
            pair[1].updated_at.timestamp() if pair[1].updated_at is not None else 0.0,
            pair[0],
        ),
    )
    out: dict[tuple[str, str], HabitEntry] = {}
    for _, entry in stamped:
        out[(entry.habit_id, entry.day)] = entry
    return out


def completed_days(entries: Iterable[HabitEntry], habit_id: str | None = None) -> set[date]:
    days: set[date] = set()
    for (hid, key), entry in canonical_entries(entries).items():
        if habit_id is not None and hid != habit_id:
            continue
        if not entry.completed:
            continue
        d = parse_day_key(key)
        if d is None:
            logger.debug("Skipping habit entry %s with bad day key %r", entry.id, key)
            continue
        days.add(d)
    return days


def habit_streak(
        entries: Iterable[HabitEntry],
        today: datetime | date,
        *,
        habit_id: str | None = None,
) -> int:
    """
    Current streak length in days.

    A streak is active only if the latest completed day is today or yesterday
    (one day of grace). From there it extends backwards while consecutive
    completed days are exactly one calendar day apart.
    """
    days = sorted(completed_days(entries, habit_id), reverse=True)
    if not days:
        return 0

    ref = _today(today)
    if days[0] not in (ref, previous_day(ref)):
        return 0

    streak = 1
    for current, nxt in zip(days, days[1:]):
        if (current - nxt).days == 1:
            streak += 1
        else:
            break
    return streak


def habit_streaks(
        habits: Iterable[Habit],
        entries: Iterable[HabitEntry],
        today: datetime | date,
) -> dict[str, int]:
    by_habit: dict[str, list[HabitEntry]] = {}
    for e in entries:
        by_habit.setdefault(e.habit_id, []).append(e)
    return {h.id: habit_streak(by_habit.get(h.id, []), today) for h in habits}


def window_days(today: datetime | date, days: int = WINDOW_DAYS) -> list[date]:
    """today and the (days - 1) preceding calendar days, newest first."""
    ref = _today(today)
    return [previous_day(ref, i) for i in range(days)]


def weekly_consistency(
        habits: Iterable[Habit],
        entries: Iterable[HabitEntry],
        today: datetime | date,
) -> int:
    habit_ids = {h.id for h in habits}
    if not habit_ids:
        return 0

    window = {d.isoformat() for d in window_days(today)}
    total_possible = len(habit_ids) * WINDOW_DAYS
    total_completed = sum(
        1
        for (hid, key), entry in canonical_entries(entries).items()
        if entry.completed and hid in habit_ids and key in window
    )
    return percent(total_completed, total_possible)


def entry_for_day(entries: Iterable[HabitEntry], habit_id: str, day: str) -> HabitEntry | None:
    """Canonical entry for one habit/day, if any."""
    return canonical_entries(e for e in entries if e.habit_id == habit_id).get((habit_id, day))
