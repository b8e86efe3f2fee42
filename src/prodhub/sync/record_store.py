# src/prodhub/sync/record_store.py

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from ..core.models import (
    MODEL_BY_COLLECTION,
    Collection,
    Habit,
    HabitEntry,
    MalformedRecord,
    Project,
    Record,
    Task,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class StoreSnapshot:
    """Point-in-time, read-only view over all four collections."""

    projects: Mapping[str, Project]
    tasks: Mapping[str, Task]
    habits: Mapping[str, Habit]
    habit_entries: Mapping[str, HabitEntry]


class RecordStore:
    """
    In-memory mirror of the session owner's collections.

    The mirror never owns records: each collection mapping is swapped wholesale
    when a new snapshot arrives and is otherwise read-only. Records that cannot
    be projected into a model are left out of the mapping.
    """

    def __init__(self) -> None:
        self._data: dict[Collection, Mapping[str, Any]] = {
            c: MappingProxyType({}) for c in Collection
        }
        self._revisions: dict[Collection, int] = {c: 0 for c in Collection}

    def replace(self, collection: Collection | str, records: Iterable[Record]) -> int:
        """Swap in a full snapshot. Returns how many records were accepted."""
        coll = Collection(collection)
        model = MODEL_BY_COLLECTION[coll]

        fresh: dict[str, Any] = {}
        skipped = 0
        for rec in records:
            try:
                item = model.from_record(rec)
            except MalformedRecord as e:
                skipped += 1
                logger.warning("Skipping malformed %s record: %s", coll.value, e)
                continue
            fresh[item.id] = item

        self._data[coll] = MappingProxyType(fresh)
        self._revisions[coll] += 1
        logger.debug(
            "RecordStore %s replaced: %d records (%d skipped), revision=%d",
            coll.value,
            len(fresh),
            skipped,
            self._revisions[coll],
        )
        return len(fresh)

    def revision(self, collection: Collection | str) -> int:
        """0 until the first snapshot for the collection has been applied."""
        return self._revisions[Collection(collection)]

    def has_snapshot(self, *collections: Collection) -> bool:
        return all(self._revisions[c] > 0 for c in collections)

    @property
    def projects(self) -> Mapping[str, Project]:
        return self._data[Collection.PROJECTS]

    @property
    def tasks(self) -> Mapping[str, Task]:
        return self._data[Collection.TASKS]

    @property
    def habits(self) -> Mapping[str, Habit]:
        return self._data[Collection.HABITS]

    @property
    def habit_entries(self) -> Mapping[str, HabitEntry]:
        return self._data[Collection.HABIT_ENTRIES]

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            projects=self.projects,
            tasks=self.tasks,
            habits=self.habits,
            habit_entries=self.habit_entries,
        )
