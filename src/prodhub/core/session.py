# src/prodhub/core/session.py

from __future__ import annotations

"""
Hub session.

Explicit per-owner context: everything that used to be ambient (who is signed
in, which feeds are open, the last fetched calendar events) lives here and is
passed to whoever needs it.

Lifecycle:
- start(): open the four collection feeds for the owner's partition
- sync():  apply whatever snapshots are queued (tests / console refresh)
- stop():  tear the feeds down, drop anything still queued, close adapters
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from ..analytics.habits import entry_for_day
from ..analytics.review import (
    TaskFilter,
    TaskSort,
    WeeklyReview,
    filter_and_sort_tasks,
    overdue_tasks,
    upcoming_tasks,
    weekly_review,
)
from ..errors import CalendarError, SubscriptionError
from ..schedule.merger import ScheduleEvent, merge_schedule
from ..storage.gateway import MutationGateway
from ..suggestions.planner import generate_task_suggestions
from ..sync.coordinator import DerivedState, SyncCoordinator
from ..sync.record_store import RecordStore
from ..sync.subscriptions import SubscriptionManager
from .models import Task
from .ports import CalendarSource, LLMClient, RecordBackend
from .timeutil import day_key, local_now

logger = logging.getLogger(__name__)


class HubSession:
    def __init__(
            self,
            *,
            owner_id: str,
            backend: RecordBackend,
            llm: LLMClient,
            calendar: CalendarSource | None = None,
            settings: Any = None,
            clock: Callable[[], datetime] = local_now,
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id is required")

        self.owner_id = owner_id
        self.settings = settings
        self.backend = backend
        self.llm = llm
        self.calendar = calendar
        self.clock = clock

        self.store = RecordStore()
        self.subscriptions = SubscriptionManager(backend)
        self.gateway = MutationGateway(backend, owner_id, clock=clock)
        self.coordinator = SyncCoordinator(
            self.store,
            self.subscriptions,
            self.gateway,
            clock=clock,
            on_navigation_reset=self._on_navigation_reset,
            on_delivery_error=self._on_delivery_error,
        )

        self.external_events: list[ScheduleEvent] = []
        self.calendar_error: str | None = None
        self.delivery_errors: list[SubscriptionError] = []
        self._notices: list[str] = []
        self._runner: asyncio.Task[None] | None = None
        self._started = False

    # ---- coordinator hooks ----

    def _on_navigation_reset(self, project_id: str) -> None:
        self._notices.append(f"Project {project_id} was deleted; selection cleared.")

    def _on_delivery_error(self, err: SubscriptionError) -> None:
        self.delivery_errors.append(err)
        self._notices.append(f"Live updates stopped for {err.collection}: {err}")

    def pop_notices(self) -> list[str]:
        out, self._notices = self._notices, []
        return out

    # ---- lifecycle ----

    @property
    def started(self) -> bool:
        return self._started

    async def start(self, *, background: bool = True) -> None:
        """
        Connect all four feeds.

        With background=True a coordinator task consumes the channel; otherwise
        the caller applies queued snapshots with sync().
        """
        if self._started:
            return
        await self.subscriptions.start(self.owner_id)
        self._started = True
        if background:
            self._runner = asyncio.create_task(self.coordinator.run(), name="prodhub-coordinator")
        else:
            await self.sync()
        logger.info("Session started owner=%s background=%s", self.owner_id, background)

    async def sync(self) -> int:
        """Apply every queued message, including ones produced while applying."""
        return await self.coordinator.drain()

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner

        await self.subscriptions.stop()
        # Everything still queued belongs to a dead generation and is dropped.
        await self.coordinator.drain()
        self._started = False

        if self.calendar is not None:
            try:
                await self.calendar.aclose()
            except Exception:
                logger.warning("Closing calendar adapter failed", exc_info=True)

        aclose = getattr(self.backend, "aclose", None)
        if callable(aclose):
            try:
                await aclose()
            except Exception:
                logger.warning("Closing record backend failed", exc_info=True)
        logger.info("Session stopped owner=%s", self.owner_id)

    # ---- read side ----

    @property
    def derived(self) -> DerivedState:
        return self.coordinator.derived

    @property
    def selected_project_id(self) -> str | None:
        return self.coordinator.selected_project_id

    def select_project(self, project_id: str | None) -> None:
        self.coordinator.select_project(project_id)

    def schedule(self, today: datetime | None = None) -> list[ScheduleEvent]:
        return merge_schedule(
            self.store.projects.values(),
            self.store.tasks.values(),
            self.external_events,
            today or self.clock(),
        )

    def review(self, now: datetime | None = None) -> WeeklyReview:
        return weekly_review(
            self.store.tasks.values(),
            self.store.habits.values(),
            self.store.habit_entries.values(),
            now or self.clock(),
        )

    def overdue(self, today: datetime | None = None) -> list[Task]:
        return overdue_tasks(self.store.tasks.values(), today or self.clock())

    def upcoming(self, today: datetime | None = None) -> list[Task]:
        return upcoming_tasks(self.store.tasks.values(), today or self.clock())

    def task_list(
            self,
            *,
            task_filter: TaskFilter = TaskFilter.ALL,
            sort_by: TaskSort = TaskSort.DUE_DATE,
            project_id: str | None = None,
    ) -> list[Task]:
        tasks = self.store.tasks.values()
        if project_id is not None:
            tasks = [t for t in tasks if t.project_id == project_id]
        return filter_and_sort_tasks(tasks, self.store.projects, task_filter=task_filter, sort_by=sort_by)

    # ---- adapters ----

    async def refresh_calendar(
            self,
            access_token: str | None = None,
            *,
            time_min: datetime | None = None,
    ) -> list[ScheduleEvent]:
        """
        Replace the external events with a fresh fetch.

        A failed fetch degrades to zero external events and records the error in
        calendar_error; it never raises.
        """
        token = access_token or getattr(self.settings, "calendar_access_token", None)
        if self.calendar is None:
            self.external_events = []
            self.calendar_error = "Calendar is not configured."
            return []
        if not token:
            self.external_events = []
            self.calendar_error = "Calendar access token is missing."
            return []

        start = time_min or (self.clock() - timedelta(days=1))
        try:
            events = await self.calendar.fetch_events(token, time_min=start)
        except CalendarError as e:
            logger.warning("Calendar refresh failed: %s", e)
            self.external_events = []
            self.calendar_error = str(e)
            return []

        self.external_events = list(events)
        self.calendar_error = None
        logger.info("Calendar refreshed: %d events", len(self.external_events))
        return self.external_events

    async def suggest_tasks(self, project_id: str, instruction: str | None = None) -> list[str]:
        project = self.store.projects.get(project_id)
        if project is None:
            raise KeyError(project_id)
        return await generate_task_suggestions(
            self.llm, self.gateway, project, self.external_events, instruction
        )

    async def toggle_habit_today(self, habit_id: str, today: datetime | None = None) -> str:
        if habit_id not in self.store.habits:
            raise KeyError(habit_id)
        day = day_key(today or self.clock())
        current = entry_for_day(self.store.habit_entries.values(), habit_id, day)
        return await self.gateway.toggle_habit_day(habit_id, day, current)
