# src/prodhub/sync/coordinator.py

from __future__ import annotations

"""
Sync coordinator.

The single consumer of the subscription channel. For every message it:
- drops it if the subscription it came from has been torn down,
- swaps the snapshot into the RecordStore,
- recomputes derived values from the latest snapshot of every collection,
- writes back project progress where the stored value is stale,
- signals navigation-reset when the selected project disappeared.

Cross-collection ordering is not guaranteed, so progress is only reconciled once
both projects and tasks have delivered at least one snapshot, and only when the
channel is empty.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Protocol

from ..analytics.habits import habit_streaks, weekly_consistency
from ..analytics.progress import progress_by_project
from ..core.models import Collection
from ..core.timeutil import local_now
from ..errors import MutationError, SubscriptionError
from .record_store import RecordStore
from .subscriptions import DeliveryFailure, SnapshotMessage, SubscriptionManager, SyncMessage

logger = logging.getLogger(__name__)


class ProgressWriter(Protocol):
    async def update_project_progress(self, project_id: str, progress: int) -> None: ...


NavigationResetHandler = Callable[[str], None]
DeliveryErrorHandler = Callable[[SubscriptionError], None]
ChangeListener = Callable[[Collection, "DerivedState"], None]


@dataclass(slots=True, frozen=True)
class DerivedState:
    day: date | None = None
    progress: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    streaks: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    consistency: int = 0


class SyncCoordinator:
    def __init__(
            self,
            store: RecordStore,
            subscriptions: SubscriptionManager,
            progress_writer: ProgressWriter,
            *,
            clock: Callable[[], datetime] = local_now,
            on_navigation_reset: NavigationResetHandler | None = None,
            on_delivery_error: DeliveryErrorHandler | None = None,
    ) -> None:
        self._store = store
        self._subs = subscriptions
        self._writer = progress_writer
        self._clock = clock
        self._on_navigation_reset = on_navigation_reset
        self._on_delivery_error = on_delivery_error
        self._listeners: list[ChangeListener] = []

        self._selected_project_id: str | None = None
        self._pending_progress: dict[str, int] = {}
        self._derived = DerivedState()
        self._progress_writes = 0

    # ---- presentation-facing state ----

    @property
    def derived(self) -> DerivedState:
        return self._derived

    @property
    def selected_project_id(self) -> str | None:
        return self._selected_project_id

    @property
    def progress_writes(self) -> int:
        return self._progress_writes

    def select_project(self, project_id: str | None) -> None:
        if project_id is not None and project_id not in self._store.projects:
            raise KeyError(project_id)
        self._selected_project_id = project_id

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    # ---- message handling ----

    async def apply(self, message: SyncMessage) -> bool:
        """Apply one channel message. Returns False if it was stale and ignored."""
        applied = await self._apply(message)
        # Snapshots still queued may remove projects (a cascade delivers several);
        # write back only against the settled state.
        if self._subs.channel.empty():
            await self._reconcile_progress()
        return applied

    async def _apply(self, message: SyncMessage) -> bool:
        if not self._subs.is_current(message):
            logger.debug(
                "Dropping stale %s message for %s (gen=%d)",
                type(message).__name__,
                message.collection.value,
                message.generation,
            )
            return False

        if isinstance(message, DeliveryFailure):
            err = SubscriptionError(message.collection.value, f"delivery failed: {message.error}")
            err.__cause__ = message.error
            logger.warning("Keeping last %s snapshot after delivery failure", message.collection.value)
            if self._on_delivery_error is not None:
                self._on_delivery_error(err)
            return True

        assert isinstance(message, SnapshotMessage)
        self._store.replace(message.collection, message.records)

        if message.collection == Collection.PROJECTS:
            self._check_selection()

        self._refresh_derived()
        for listener in list(self._listeners):
            try:
                listener(message.collection, self._derived)
            except Exception:
                logger.exception("Change listener failed")
        return True

    async def drain(self) -> int:
        """Apply everything already queued. Returns the number of messages applied."""
        applied = 0
        channel = self._subs.channel
        while True:
            try:
                message = channel.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            if await self.apply(message):
                applied += 1

    async def run(self) -> None:
        """
        Consume the channel forever.

        To stop the coordinator, cancel the coroutine/task.
        """
        channel = self._subs.channel
        while True:
            message = await channel.get()
            try:
                await self.apply(message)
            except Exception:
                logger.exception("Applying %s for %s failed", type(message).__name__, message.collection.value)

    # ---- derived values ----

    async def recompute(self) -> DerivedState:
        self._refresh_derived()
        await self._reconcile_progress()
        return self._derived

    def _refresh_derived(self) -> None:
        today = self._clock()
        snap = self._store.snapshot()
        self._derived = DerivedState(
            day=today.date(),
            progress=MappingProxyType(progress_by_project(snap.projects.values(), snap.tasks.values())),
            streaks=MappingProxyType(
                habit_streaks(snap.habits.values(), snap.habit_entries.values(), today)
            ),
            consistency=weekly_consistency(snap.habits.values(), snap.habit_entries.values(), today),
        )

    async def _reconcile_progress(self) -> None:
        if not self._store.has_snapshot(Collection.PROJECTS, Collection.TASKS):
            return

        projects = self._store.projects
        # Forget in-flight writes that the store now reflects (or whose project is gone).
        for pid, value in list(self._pending_progress.items()):
            p = projects.get(pid)
            if p is None or p.progress == value:
                del self._pending_progress[pid]

        for pid, value in self._derived.progress.items():
            if projects[pid].progress == value or self._pending_progress.get(pid) == value:
                continue
            self._pending_progress[pid] = value
            try:
                await self._writer.update_project_progress(pid, value)
                self._progress_writes += 1
                logger.info("Project %s progress -> %d", pid, value)
            except MutationError as e:
                self._pending_progress.pop(pid, None)
                logger.warning("Progress write-back for %s failed: %s", pid, e)

    def _check_selection(self) -> None:
        selected = self._selected_project_id
        if selected is None or selected in self._store.projects:
            return
        self._selected_project_id = None
        logger.info("Selected project %s disappeared; resetting navigation", selected)
        if self._on_navigation_reset is not None:
            try:
                self._on_navigation_reset(selected)
            except Exception:
                logger.exception("Navigation reset handler failed")

    def snapshot_info(self) -> dict[str, Any]:
        return {
            c.value: {"revision": self._store.revision(c), "state": self._subs.state(c).value}
            for c in Collection
        }
