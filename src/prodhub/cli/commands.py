# src/prodhub/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import date
from typing import TypeVar, cast

from ..analytics.habits import canonical_entries
from ..analytics.review import TaskFilter, TaskSort
from ..core.models import Collection, Priority, ProjectCategory, Task
from ..core.session import HubSession
from ..core.timeutil import day_key, parse_day_key
from ..errors import CascadeError, SuggestionError

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[HubSession, list[str]], Awaitable[str]]
CommandHandler3 = Callable[[HubSession, list[str], CommandEmitter | None], Awaitable[str]]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CommandRegistry:
    """Slash-command registry used by the console (/help, /projects, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        session: HubSession,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return await h3(session, args, emit)

        h2 = cast(CommandHandler2, handler)
        return await h2(session, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument helpers ----


def _split_options(args: Sequence[str]) -> tuple[str, dict[str, str]]:
    """Split "words key=value" into ("words", {"key": "value"})."""
    words: list[str] = []
    opts: dict[str, str] = {}
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key and value:
            opts[key.lower()] = value
        else:
            words.append(a)
    return " ".join(words).strip(), opts


def _resolve(ref: str, items: Mapping[str, T], ordered: Sequence[str]) -> T | None:
    """A record by full id, 1-based list index, or unique id prefix."""
    ref = ref.strip()
    if ref in items:
        return items[ref]
    if ref.isdigit():
        idx = int(ref) - 1
        if 0 <= idx < len(ordered):
            return items.get(ordered[idx])
        return None
    matches = [k for k in items if k.startswith(ref)]
    if len(matches) == 1:
        return items[matches[0]]
    return None


def _fmt_day(d: date | None) -> str:
    return d.isoformat() if d is not None else "-"


def _task_line(i: int, t: Task, today: date, project_names: Mapping[str, str]) -> str:
    mark = "x" if t.completed else " "
    due = _fmt_day(t.due_date.date() if t.due_date else None)
    overdue = " OVERDUE" if (not t.completed and t.due_date is not None and t.due_date.date() < today) else ""
    project = project_names.get(t.project_id or "", "")
    proj = f" ({project})" if project else ""
    return f"{i}. [{mark}] {t.title}{proj} | {t.priority.value} | due {due}{overdue} | id={t.id[:8]}"


def _ordered_tasks(session: HubSession) -> list[Task]:
    return session.task_list(project_id=session.selected_project_id)


# ---- commands ----


async def cmd_help(session: HubSession, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(session: HubSession, args: list[str]) -> str:
    subs = session.subscriptions
    feeds = ", ".join(f"{c.value}={subs.state(c).value}" for c in Collection)
    store = session.store
    models = ", ".join(list(getattr(session.settings, "llm_models", []) or []))
    calendar = session.calendar_error or f"{len(session.external_events)} events"
    selected = session.selected_project_id
    return (
        "Status:\n"
        f"  Owner: {session.owner_id}\n"
        f"  Feeds: {feeds}\n"
        f"  Records: {len(store.projects)} projects, {len(store.tasks)} tasks, "
        f"{len(store.habits)} habits, {len(store.habit_entries)} habit entries\n"
        f"  Selected project: {selected or '-'}\n"
        f"  Weekly habit consistency: {session.derived.consistency}%\n"
        f"  Calendar: {calendar}\n"
        f"  Models (priority -> fallback): {models or '-'}"
    )


async def cmd_projects(session: HubSession, args: list[str]) -> str:
    projects = list(session.store.projects.values())
    if not projects:
        return "No projects yet. Use /add-project <name> [type=Course] [deadline=YYYY-MM-DD]."
    progress = session.derived.progress
    lines = ["Projects:"]
    for i, p in enumerate(projects, start=1):
        sel = "*" if p.id == session.selected_project_id else " "
        deadline = _fmt_day(p.deadline.date() if p.deadline else None)
        lines.append(
            f"{sel}{i}. {p.name} [{p.category.value}] {progress.get(p.id, p.progress)}% "
            f"| deadline {deadline} | id={p.id[:8]}"
        )
    return "\n".join(lines)


async def cmd_select(session: HubSession, args: list[str]) -> str:
    if not args:
        session.select_project(None)
        return "Selection cleared."
    projects = session.store.projects
    project = _resolve(args[0], projects, list(projects))
    if project is None:
        return f"No such project: {args[0]}"
    session.select_project(project.id)
    return f"Selected project: {project.name}"


async def cmd_add_project(session: HubSession, args: list[str]) -> str:
    name, opts = _split_options(args)
    if not name:
        return "Usage: /add-project <name> [type=Course|Conference|Seminar|Bootcamp|Personal] [deadline=YYYY-MM-DD]"
    deadline = None
    if "deadline" in opts:
        deadline = parse_day_key(opts["deadline"])
        if deadline is None:
            return f"Invalid deadline: {opts['deadline']} (expected YYYY-MM-DD)."
    category = ProjectCategory.from_raw(opts.get("type", ProjectCategory.COURSE.value))
    new_id = await session.gateway.create_project(name, category, deadline=deadline)
    return f"Project created: {name} (id={new_id[:8]})"


async def cmd_del_project(session: HubSession, args: list[str]) -> str:
    projects = session.store.projects
    ref = args[0] if args else session.selected_project_id
    if not ref:
        return "Usage: /del-project <n|id> (or select a project first)"
    project = _resolve(ref, projects, list(projects))
    if project is None:
        return f"No such project: {ref}"
    try:
        result = await session.gateway.delete_project(project.id)
    except CascadeError as e:
        return f"Delete stopped part-way: {len(e.deleted_ids)} tasks removed, {len(e.remaining_ids)} left. {e}"
    return f"Deleted project {project.name} and {len(result.child_ids)} tasks."


async def cmd_tasks(session: HubSession, args: list[str]) -> str:
    task_filter = TaskFilter.ALL
    sort_by = TaskSort.DUE_DATE
    for a in args:
        a = a.lower()
        if a in {f.value for f in TaskFilter}:
            task_filter = TaskFilter(a)
        elif a in {s.value for s in TaskSort}:
            sort_by = TaskSort(a)
        else:
            return "Usage: /tasks [all|active|completed] [due|priority|project]"

    tasks = session.task_list(
        task_filter=task_filter, sort_by=sort_by, project_id=session.selected_project_id
    )
    if not tasks:
        return "No tasks."
    today = session.clock().date()
    names = {pid: p.name for pid, p in session.store.projects.items()}
    lines = [f"Tasks ({task_filter.value}, by {sort_by.value}):"]
    lines.extend(_task_line(i, t, today, names) for i, t in enumerate(tasks, start=1))
    return "\n".join(lines)


async def cmd_add_task(session: HubSession, args: list[str]) -> str:
    title, opts = _split_options(args)
    if not title:
        return "Usage: /add-task <title> [priority=High|Medium|Low] [due=YYYY-MM-DD]"
    due = ""
    if "due" in opts:
        d = parse_day_key(opts["due"])
        if d is None:
            return f"Invalid due date: {opts['due']} (expected YYYY-MM-DD)."
        due = day_key(d)
    priority = Priority.from_raw(opts.get("priority", Priority.MEDIUM.value))
    new_id = await session.gateway.create_task(
        title, project_id=session.selected_project_id, due_date=due, priority=priority
    )
    return f"Task created: {title} (id={new_id[:8]})"


async def cmd_done(session: HubSession, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n|id>"
    ordered = _ordered_tasks(session)
    task = _resolve(args[0], session.store.tasks, [t.id for t in ordered])
    if task is None:
        return f"No such task: {args[0]}"
    await session.gateway.set_task_completed(task.id, not task.completed)
    return f"Task {'reopened' if task.completed else 'completed'}: {task.title}"


async def cmd_del_task(session: HubSession, args: list[str]) -> str:
    if not args:
        return "Usage: /del-task <n|id>"
    ordered = _ordered_tasks(session)
    task = _resolve(args[0], session.store.tasks, [t.id for t in ordered])
    if task is None:
        return f"No such task: {args[0]}"
    await session.gateway.delete_task(task.id)
    return f"Task deleted: {task.title}"


async def cmd_habits(session: HubSession, args: list[str]) -> str:
    habits = list(session.store.habits.values())
    if not habits:
        return "No habits yet. Use /add-habit <name>."
    today = day_key(session.clock())
    done_today = {
        hid for (hid, day), e in canonical_entries(session.store.habit_entries.values()).items()
        if day == today and e.completed
    }
    streaks = session.derived.streaks
    lines = [f"Habits (weekly consistency {session.derived.consistency}%):"]
    for i, h in enumerate(habits, start=1):
        mark = "x" if h.id in done_today else " "
        lines.append(f"{i}. [{mark}] {h.name} | streak {streaks.get(h.id, 0)} | id={h.id[:8]}")
    return "\n".join(lines)


async def cmd_add_habit(session: HubSession, args: list[str]) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /add-habit <name>"
    new_id = await session.gateway.create_habit(name)
    return f"Habit created: {name} (id={new_id[:8]})"


async def cmd_habit(session: HubSession, args: list[str]) -> str:
    if not args:
        return "Usage: /habit <n|id> (toggles today)"
    habits = session.store.habits
    habit = _resolve(args[0], habits, list(habits))
    if habit is None:
        return f"No such habit: {args[0]}"
    await session.toggle_habit_today(habit.id)
    return f"Toggled today for habit: {habit.name}"


async def cmd_del_habit(session: HubSession, args: list[str]) -> str:
    if not args:
        return "Usage: /del-habit <n|id>"
    habits = session.store.habits
    habit = _resolve(args[0], habits, list(habits))
    if habit is None:
        return f"No such habit: {args[0]}"
    try:
        result = await session.gateway.delete_habit(habit.id)
    except CascadeError as e:
        return f"Delete stopped part-way: {len(e.deleted_ids)} entries removed, {len(e.remaining_ids)} left. {e}"
    return f"Deleted habit {habit.name} and {len(result.child_ids)} entries."


async def cmd_schedule(session: HubSession, args: list[str]) -> str:
    events = session.schedule()
    if not events:
        return "Schedule is empty."
    lines = ["Schedule:"]
    for e in events:
        when = e.date.date().isoformat() if e.all_day or e.date is None else e.date.strftime("%Y-%m-%d %H:%M")
        flag = " OVERDUE" if e.overdue else ""
        lines.append(f"  {when} | {e.origin.value} | {e.title}{flag}")
    if session.calendar_error:
        lines.append(f"  (calendar: {session.calendar_error})")
    return "\n".join(lines)


async def cmd_calendar(session: HubSession, args: list[str], emit: CommandEmitter | None = None) -> str:
    if emit:
        emit("[CALENDAR] Fetching upcoming events...")
    events = await session.refresh_calendar(args[0] if args else None)
    if session.calendar_error:
        return f"Calendar unavailable: {session.calendar_error}"
    return f"Calendar refreshed: {len(events)} events."


async def cmd_review(session: HubSession, args: list[str]) -> str:
    review = session.review()
    lines = [
        f"Weekly review ({review.start.date().isoformat()} .. {review.end.date().isoformat()}):",
        f"  Habit consistency: {review.habit_consistency}%",
        f"  Completed tasks: {len(review.completed_tasks)}",
    ]
    lines.extend(f"  - {t.title}" for t in review.completed_tasks)
    return "\n".join(lines)


async def cmd_suggest(session: HubSession, args: list[str], emit: CommandEmitter | None = None) -> str:
    project_id = session.selected_project_id
    if project_id is None:
        return "Select a project first (/select <n|id>)."
    if emit:
        emit("[LLM] Generating task suggestions...")
    try:
        created = await session.suggest_tasks(project_id, " ".join(args).strip() or None)
    except SuggestionError as e:
        return f"Suggestions failed: {e}"
    return f"Added {len(created)} suggested tasks."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show feeds, record counts and calendar status.")
registry.register("projects", cmd_projects, help_text="List projects with progress.", aliases=["p"])
registry.register("select", cmd_select, help_text="Select a project: /select <n|id> (no args clears).")
registry.register(
    "add-project", cmd_add_project, help_text="Create a project: /add-project <name> [type=..] [deadline=..]."
)
registry.register("del-project", cmd_del_project, help_text="Delete a project and all its tasks.")
registry.register(
    "tasks", cmd_tasks, help_text="List tasks: /tasks [all|active|completed] [due|priority|project].", aliases=["t"]
)
registry.register(
    "add-task", cmd_add_task, help_text="Create a task: /add-task <title> [priority=..] [due=YYYY-MM-DD]."
)
registry.register("done", cmd_done, help_text="Toggle task completion: /done <n|id>.")
registry.register("del-task", cmd_del_task, help_text="Delete a task: /del-task <n|id>.")
registry.register("habits", cmd_habits, help_text="List habits with streaks.")
registry.register("add-habit", cmd_add_habit, help_text="Create a habit: /add-habit <name>.")
registry.register("habit", cmd_habit, help_text="Toggle today's entry: /habit <n|id>.")
registry.register("del-habit", cmd_del_habit, help_text="Delete a habit and all its entries.")
registry.register("schedule", cmd_schedule, help_text="Show the merged schedule.")
registry.register("calendar", cmd_calendar, help_text="Refresh external calendar events: /calendar [token].")
registry.register("review", cmd_review, help_text="Show the weekly review.")
registry.register("suggest", cmd_suggest, help_text="Suggest tasks for the selected project: /suggest [instruction].")
