# src/prodhub/storage/gateway.py

from __future__ import annotations

"""
Mutation gateway.

The only write path into the backing store. It is thin:
- every call is async and raises MutationError on failure,
- nothing is retried,
- nothing is applied locally: effects show up through the next snapshot push.

Cascades (project -> tasks, habit -> habit entries) run as one atomic batch when
the backend supports it. Otherwise they run children-first, then the parent; if
that sequence stops part-way, CascadeError reports which children are orphaned.

Writes that target the same parent record are serialized with a per
(collection, record id) asyncio.Lock, so a cascade never interleaves with a
create/update against the record it is deleting. A lock lives only while some
call holds or waits on it.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TypeVar

from ..core.models import (
    Collection,
    HabitEntry,
    Priority,
    ProjectCategory,
    ProjectStatus,
    Record,
    task_completion_fields,
)
from ..core.ports import RecordBackend
from ..core.timeutil import day_key, format_instant, local_now
from ..errors import CascadeError, MutationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class CascadeResult:
    parent_id: str
    child_ids: tuple[str, ...]
    atomic: bool

    @property
    def delete_count(self) -> int:
        return len(self.child_ids) + 1


def _due_value(due: date | datetime | str | None) -> str:
    # dueDate is a plain calendar day; "" means "no due date".
    if due is None:
        return ""
    if isinstance(due, str):
        return due.strip()
    return day_key(due)


def _deadline_value(deadline: date | datetime | None) -> str | None:
    if deadline is None:
        return None
    if isinstance(deadline, datetime):
        return format_instant(deadline)
    return day_key(deadline)


class MutationGateway:
    def __init__(
            self,
            backend: RecordBackend,
            partition: str,
            *,
            clock: Callable[[], datetime] = local_now,
    ) -> None:
        if not partition:
            raise ValueError("partition is required")
        self._backend = backend
        self._partition = partition
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[tuple[Collection, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def partition(self) -> str:
        return self._partition

    def _lock(self, collection: Collection, record_id: str) -> asyncio.Lock:
        key = (collection, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _call(
            self,
            operation: str,
            collection: Collection,
            record_id: str | None,
            fn: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await fn()
        except MutationError:
            raise
        except Exception as e:
            logger.exception("%s %s/%s failed", operation, collection.value, record_id)
            raise MutationError(operation, collection.value, record_id, str(e) or type(e).__name__) from e

    async def _add(self, collection: Collection, data: Record) -> str:
        new_id = await self._call(
            "create", collection, None,
            lambda: self._backend.add(self._partition, collection.value, data),
        )
        logger.debug("Created %s/%s", collection.value, new_id)
        return new_id

    async def _update(self, collection: Collection, record_id: str, fields: Record) -> None:
        if not fields:
            return
        await self._call(
            "update", collection, record_id,
            lambda: self._backend.update(self._partition, collection.value, record_id, fields),
        )

    async def _delete(self, collection: Collection, record_id: str) -> None:
        await self._call(
            "delete", collection, record_id,
            lambda: self._backend.delete(self._partition, collection.value, record_id),
        )

    async def _cascade_delete(
            self,
            parent: Collection,
            parent_id: str,
            child: Collection,
            child_field: str,
    ) -> CascadeResult:
        async with self._lock(parent, parent_id):
            children = await self._call(
                "query", child, None,
                lambda: self._backend.query(self._partition, child.value, child_field, parent_id),
            )
            child_ids = [str(r["id"]) for r in children if r.get("id")]

            batch = self._backend.batch(self._partition)
            if batch is not None:
                # Parent first, so feeds report it gone before its children.
                batch.delete(parent.value, parent_id)
                for cid in child_ids:
                    batch.delete(child.value, cid)
                await self._call("cascade delete", parent, parent_id, batch.commit)
                logger.info(
                    "Deleted %s/%s with %d %s (batch)", parent.value, parent_id, len(child_ids), child.value
                )
                return CascadeResult(parent_id=parent_id, child_ids=tuple(child_ids), atomic=True)

            # No batch support: children first, then the parent. A failure here leaves
            # orphans, which CascadeError makes visible instead of hiding.
            deleted: list[str] = []
            for cid in child_ids:
                try:
                    await self._backend.delete(self._partition, child.value, cid)
                except Exception as e:
                    logger.exception("Cascade stopped at %s/%s", child.value, cid)
                    raise CascadeError(
                        parent.value,
                        parent_id,
                        deleted_ids=deleted,
                        remaining_ids=[c for c in child_ids if c not in deleted],
                        message=str(e) or type(e).__name__,
                    ) from e
                deleted.append(cid)

            try:
                await self._backend.delete(self._partition, parent.value, parent_id)
            except Exception as e:
                logger.exception("Cascade parent delete failed %s/%s", parent.value, parent_id)
                raise CascadeError(
                    parent.value,
                    parent_id,
                    deleted_ids=deleted,
                    remaining_ids=[],
                    message=str(e) or type(e).__name__,
                ) from e

            logger.info(
                "Deleted %s/%s with %d %s (sequential)", parent.value, parent_id, len(child_ids), child.value
            )
            return CascadeResult(parent_id=parent_id, child_ids=tuple(child_ids), atomic=False)

    # ---- projects ----

    async def create_project(
            self,
            name: str,
            category: ProjectCategory | str = ProjectCategory.COURSE,
            *,
            deadline: datetime | date | None = None,
    ) -> str:
        if not name or not name.strip():
            raise ValueError("name is required")
        return await self._add(
            Collection.PROJECTS,
            {
                "name": name.strip(),
                "category": ProjectCategory.from_raw(category).value,
                "status": ProjectStatus.IN_PROGRESS.value,
                "progress": 0,
                "createdAt": format_instant(self._clock()),
                "deadline": _deadline_value(deadline),
            },
        )

    async def update_project(
            self,
            project_id: str,
            *,
            name: str | None = None,
            category: ProjectCategory | str | None = None,
            status: ProjectStatus | None = None,
            deadline: datetime | date | None = None,
    ) -> None:
        fields: Record = {}
        if name is not None:
            if not name.strip():
                raise ValueError("name must not be empty")
            fields["name"] = name.strip()
        if category is not None:
            fields["category"] = ProjectCategory.from_raw(category).value
        if status is not None:
            fields["status"] = status.value
        if deadline is not None:
            fields["deadline"] = _deadline_value(deadline)
        async with self._lock(Collection.PROJECTS, project_id):
            await self._update(Collection.PROJECTS, project_id, fields)

    async def update_project_progress(self, project_id: str, progress: int) -> None:
        """Derived-field write-back; only the coordinator should call this."""
        value = max(0, min(100, int(progress)))
        async with self._lock(Collection.PROJECTS, project_id):
            await self._update(Collection.PROJECTS, project_id, {"progress": value})

    async def delete_project(self, project_id: str) -> CascadeResult:
        return await self._cascade_delete(Collection.PROJECTS, project_id, Collection.TASKS, "projectId")

    # ---- tasks ----

    async def create_task(
            self,
            title: str,
            *,
            project_id: str | None = None,
            due_date: date | datetime | str | None = None,
            priority: Priority | str = Priority.MEDIUM,
    ) -> str:
        if not title or not title.strip():
            raise ValueError("title is required")
        data: Record = {
            "title": title.strip(),
            "projectId": project_id,
            "dueDate": _due_value(due_date),
            "priority": Priority.from_raw(priority).value,
            "completed": False,
            "completedAt": None,
            "createdAt": format_instant(self._clock()),
        }
        if project_id is None:
            return await self._add(Collection.TASKS, data)
        async with self._lock(Collection.PROJECTS, project_id):
            return await self._add(Collection.TASKS, data)

    async def update_task(
            self,
            task_id: str,
            *,
            title: str | None = None,
            priority: Priority | str | None = None,
            due_date: date | datetime | str | None = None,
    ) -> None:
        fields: Record = {}
        if title is not None:
            if not title.strip():
                raise ValueError("title must not be empty")
            fields["title"] = title.strip()
        if priority is not None:
            fields["priority"] = Priority.from_raw(priority).value
        if due_date is not None:
            fields["dueDate"] = _due_value(due_date)
        await self._update(Collection.TASKS, task_id, fields)

    async def set_task_completed(self, task_id: str, completed: bool) -> None:
        """completed and completedAt change in the same write."""
        await self._update(Collection.TASKS, task_id, task_completion_fields(completed, self._clock()))

    async def delete_task(self, task_id: str) -> None:
        await self._delete(Collection.TASKS, task_id)

    # ---- habits ----

    async def create_habit(self, name: str) -> str:
        if not name or not name.strip():
            raise ValueError("name is required")
        return await self._add(
            Collection.HABITS,
            {"name": name.strip(), "createdAt": format_instant(self._clock())},
        )

    async def rename_habit(self, habit_id: str, name: str) -> None:
        if not name or not name.strip():
            raise ValueError("name must not be empty")
        async with self._lock(Collection.HABITS, habit_id):
            await self._update(Collection.HABITS, habit_id, {"name": name.strip()})

    async def delete_habit(self, habit_id: str) -> CascadeResult:
        return await self._cascade_delete(Collection.HABITS, habit_id, Collection.HABIT_ENTRIES, "habitId")

    async def toggle_habit_day(
            self,
            habit_id: str,
            day: date | str,
            current: HabitEntry | None,
    ) -> str:
        """
        Flip the habit's canonical entry for `day`, or create a completed one.

        Returns the id of the entry that was written. Every write stamps updatedAt,
        which is what makes the latest write win over older duplicates.
        """
        key = day if isinstance(day, str) else day_key(day)
        stamp = format_instant(self._clock())
        async with self._lock(Collection.HABITS, habit_id):
            if current is not None:
                await self._update(
                    Collection.HABIT_ENTRIES,
                    current.id,
                    {"completed": not current.completed, "updatedAt": stamp},
                )
                return current.id
            return await self._add(
                Collection.HABIT_ENTRIES,
                {"habitId": habit_id, "date": key, "completed": True, "updatedAt": stamp},
            )

    async def set_habit_entry(self, entry_id: str, completed: bool) -> None:
        await self._update(
            Collection.HABIT_ENTRIES,
            entry_id,
            {"completed": bool(completed), "updatedAt": format_instant(self._clock())},
        )
