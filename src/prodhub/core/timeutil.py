# src/prodhub/core/timeutil.py

"""
Instant / calendar-day helpers.

Two kinds of time flow through the hub:
- instants (createdAt, completedAt, calendar event starts): always returned timezone-aware;
- day keys (habit entries, task due dates): local calendar dates as "YYYY-MM-DD".

Day arithmetic is done on date objects, never by subtracting instants, so DST shifts
cannot turn one calendar day into 0 or 2.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def local_now() -> datetime:
    return datetime.now().astimezone()


def ensure_aware(dt: datetime) -> datetime:
    """Naive datetimes are interpreted as local wall-clock time."""
    if dt.tzinfo is None:
        return dt.astimezone()
    return dt


def start_of_day(moment: datetime | date) -> datetime:
    """Local midnight of the calendar day containing `moment` (tz of `moment` kept)."""
    if isinstance(moment, datetime):
        moment = ensure_aware(moment)
        return datetime.combine(moment.date(), time(0), tzinfo=moment.tzinfo)
    return datetime.combine(moment, time(0)).astimezone()


def day_key(moment: datetime | date) -> str:
    """Calendar-day identifier in the moment's own timezone."""
    if isinstance(moment, datetime):
        return moment.date().isoformat()
    return moment.isoformat()


def parse_day_key(raw: Any) -> date | None:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if len(s) < 10:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def previous_day(d: date, n: int = 1) -> date:
    return d - timedelta(days=n)


def parse_instant(raw: Any) -> datetime | None:
    """
    Best-effort instant parser for record fields.

    Accepts datetime, date (local midnight), epoch seconds, ISO-8601 strings and
    bare "YYYY-MM-DD" strings (local midnight). Returns None for empty/invalid input.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return ensure_aware(raw)
    if isinstance(raw, date):
        return start_of_day(raw)
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(float(raw), tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return None
        if len(s) == 10:
            d = parse_day_key(s)
            return start_of_day(d) if d is not None else None
        try:
            return ensure_aware(datetime.fromisoformat(s))
        except ValueError:
            logger.debug("Unparseable instant %r", s)
            return None
    return None


def format_instant(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()
