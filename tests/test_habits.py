# tests/test_habits.py

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from prodhub.analytics.habits import (
    canonical_entries,
    entry_for_day,
    habit_streak,
    habit_streaks,
    weekly_consistency,
)
from prodhub.core.models import Habit, HabitEntry, MalformedRecord

D = date(2026, 3, 10)


def _entry(eid: str, day: date, *, habit: str = "h1", completed: bool = True, updated: str | None = None) -> HabitEntry:
    rec = {"id": eid, "habitId": habit, "date": day.isoformat(), "completed": completed}
    if updated is not None:
        rec["updatedAt"] = updated
    return HabitEntry.from_record(rec)


def _habit(hid: str) -> Habit:
    return Habit.from_record({"id": hid, "name": hid})


def test_streak_counts_consecutive_days_ending_today() -> None:
    entries = [_entry("a", D), _entry("b", D - timedelta(days=1)), _entry("c", D - timedelta(days=2))]
    assert habit_streak(entries, D) == 3


def test_streak_breaks_after_a_missed_day() -> None:
    entries = [_entry("a", D), _entry("b", D - timedelta(days=1)), _entry("c", D - timedelta(days=2))]
    assert habit_streak(entries, D + timedelta(days=2)) == 0


def test_streak_allows_one_day_of_grace() -> None:
    assert habit_streak([_entry("a", D - timedelta(days=1))], D) == 1


def test_streak_stops_at_first_gap() -> None:
    entries = [_entry("a", D), _entry("b", D - timedelta(days=2)), _entry("c", D - timedelta(days=3))]
    assert habit_streak(entries, D) == 1


def test_streak_ignores_incomplete_entries_and_empty_input() -> None:
    assert habit_streak([], D) == 0
    assert habit_streak([_entry("a", D, completed=False)], D) == 0


def test_streak_accepts_datetime_today() -> None:
    entries = [_entry("a", D), _entry("b", D - timedelta(days=1))]
    assert habit_streak(entries, datetime(2026, 3, 10, 23, 59).astimezone()) == 2


def test_streak_across_daylight_saving_change() -> None:
    # 2026-03-08 is a DST switch in many zones; day math must stay in calendar days.
    today = date(2026, 3, 9)
    entries = [_entry("a", date(2026, 3, 7)), _entry("b", date(2026, 3, 8)), _entry("c", today)]
    assert habit_streak(entries, today) == 3


def test_habit_streaks_per_habit() -> None:
    habits = [_habit("h1"), _habit("h2"), _habit("h3")]
    entries = [
        _entry("a", D, habit="h1"),
        _entry("b", D - timedelta(days=1), habit="h1"),
        _entry("c", D - timedelta(days=1), habit="h2"),
    ]
    assert habit_streaks(habits, entries, D) == {"h1": 2, "h2": 1, "h3": 0}


def test_weekly_consistency_half_of_possible() -> None:
    habits = [_habit("h1"), _habit("h2")]
    entries = [_entry(f"e{i}", D - timedelta(days=i), habit="h1") for i in range(7)]
    assert weekly_consistency(habits, entries, D) == 50


def test_weekly_consistency_without_habits_is_zero() -> None:
    assert weekly_consistency([], [_entry("a", D)], D) == 0


def test_weekly_consistency_ignores_days_outside_window_and_unknown_habits() -> None:
    habits = [_habit("h1")]
    entries = [
        _entry("old", D - timedelta(days=7)),
        _entry("other", D, habit="deleted"),
        _entry("ok", D),
    ]
    # 1 of 7 -> 14.28 -> 14
    assert weekly_consistency(habits, entries, D) == 14


def test_duplicate_day_entries_latest_write_wins() -> None:
    older = _entry("old", D, completed=True, updated="2026-03-10T08:00:00+00:00")
    newer = _entry("new", D, completed=False, updated="2026-03-10T09:00:00+00:00")

    canon = canonical_entries([newer, older])
    assert canon[("h1", D.isoformat())].id == "new"
    assert habit_streak([newer, older], D) == 0
    assert weekly_consistency([_habit("h1")], [older, newer], D) == 0


def test_duplicate_completed_entries_count_once() -> None:
    a = _entry("a", D)
    b = _entry("b", D)
    assert weekly_consistency([_habit("h1")], [a, b], D) == 14
    assert habit_streak([a, b], D) == 1


def test_stamped_entry_beats_unstamped_one() -> None:
    legacy = _entry("legacy", D, completed=True)
    stamped = _entry("stamped", D, completed=False, updated="2026-01-01T00:00:00+00:00")
    assert entry_for_day([stamped, legacy], "h1", D.isoformat()).id == "stamped"


def test_entry_for_day_missing() -> None:
    assert entry_for_day([_entry("a", D)], "h1", "2026-01-01") is None
    assert entry_for_day([_entry("a", D)], "h2", D.isoformat()) is None


def test_malformed_entries_are_rejected_at_projection() -> None:
    with pytest.raises(MalformedRecord):
        HabitEntry.from_record({"id": "x", "date": "2026-03-10", "completed": True})
    with pytest.raises(MalformedRecord):
        HabitEntry.from_record({"id": "x", "habitId": "h1", "date": "yesterday"})


def test_string_completed_flag_is_parsed() -> None:
    assert HabitEntry.from_record({"id": "x", "habitId": "h1", "date": "2026-03-10", "completed": "false"}).completed is False
    assert HabitEntry.from_record({"id": "x", "habitId": "h1", "date": "2026-03-10", "completed": "yes"}).completed is True
