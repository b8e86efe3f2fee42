# src/prodhub/suggestions/planner.py

"""
Project task suggestions.

Builds a planning prompt from the user's instruction, the project and the
related upcoming calendar events, asks the LLM for a strict JSON plan and turns
each item into a task of that project (empty due date, not completed).

Nothing is written unless the whole response parses into at least one task.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ..core.models import Priority, Project
from ..core.ports import LLMClient
from ..errors import SuggestionError
from ..llm.client import friendly_llm_error_message
from ..schedule.merger import ScheduleEvent
from ..storage.gateway import MutationGateway

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = "Break down the project into actionable steps."
MIN_KEYWORD_LEN = 3

SUGGESTION_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "priority": {"type": "string", "enum": [p.value for p in Priority]},
                },
                "required": ["title", "priority"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["tasks"],
    "additionalProperties": False,
}

SUGGESTION_SYSTEM_PROMPT = """
You are a project planning assistant.

Your primary goal is to generate a list of actionable to-do items based on the
user's main instruction. Use the other information only as background context.

Rules:
- Generate 5 to 7 to-do items.
- For each item give a short title and estimate its difficulty as "High", "Medium" or "Low".
- Do not create tasks that are identical to the calendar events; create tasks that lead up to them.

Output format:
Return STRICT JSON only. No extra text. No Markdown.
{ "tasks": [ { "title": "...", "priority": "High" } ] }
""".strip()


@dataclass(slots=True, frozen=True)
class SuggestedTask:
    title: str
    priority: Priority


def _project_keywords(name: str) -> list[str]:
    return [k for k in name.lower().split() if len(k) >= MIN_KEYWORD_LEN]


def related_events(project_name: str, events: Iterable[ScheduleEvent]) -> list[ScheduleEvent]:
    """Events whose title contains any project-name word longer than two characters."""
    keywords = _project_keywords(project_name)
    if not keywords:
        return []
    return [e for e in events if any(k in e.title.lower() for k in keywords)]


def build_suggestion_prompt(
        project: Project,
        events: Iterable[ScheduleEvent],
        instruction: str | None = None,
) -> str:
    lines: list[str] = [
        "Main instruction from user:",
        (instruction or "").strip() or DEFAULT_INSTRUCTION,
        "",
        "Background context:",
        f"Project: {project.name}",
        f"Project type: {project.category.value}",
    ]

    relevant = related_events(project.name, events)
    if relevant:
        lines.extend(["", "Upcoming related calendar events:"])
        for e in relevant:
            when = e.date.date().isoformat() if e.date is not None else "unknown date"
            lines.append(f'- "{e.title}" on {when}')

    return "\n".join(lines)


def _extract_json_object(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("{") and raw.endswith("}"):
        return raw
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last != -1 and last > first:
        return raw[first : last + 1]
    return raw


def parse_suggestions(raw: str) -> list[SuggestedTask]:
    """
    Parse the LLM response into suggested tasks.

    Items without a usable title are skipped; an unknown priority becomes Medium.
    Raises SuggestionError if the response is not a plan or yields no tasks.
    """
    raw = (raw or "").strip()
    if not raw:
        raise SuggestionError("No tasks were generated.")

    try:
        plan = json.loads(_extract_json_object(raw))
    except json.JSONDecodeError as e:
        logger.warning("Suggestion JSON parse failed. Raw=%r", raw[:2000])
        raise SuggestionError("The suggestion response was not valid JSON.") from e

    items = plan.get("tasks") if isinstance(plan, dict) else None
    if not isinstance(items, list):
        raise SuggestionError("The suggestion response has no task list.")

    out: list[SuggestedTask] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            continue
        out.append(SuggestedTask(title=title.strip(), priority=Priority.from_raw(item.get("priority"))))

    if not out:
        raise SuggestionError("No tasks were generated.")
    return out


async def generate_task_suggestions(
        llm: LLMClient,
        gateway: MutationGateway,
        project: Project,
        events: Iterable[ScheduleEvent] = (),
        instruction: str | None = None,
) -> list[str]:
    """Ask the LLM for a plan and create one task per item. Returns the new task ids."""
    prompt = build_suggestion_prompt(project, events, instruction)
    messages = [{"role": "user", "content": prompt}]
    response_format = {
        "type": "json_schema",
        "json_schema": {"name": "task_plan", "strict": True, "schema": SUGGESTION_RESPONSE_SCHEMA},
    }

    def _collect() -> str:
        return "".join(llm.stream_chat(messages, SUGGESTION_SYSTEM_PROMPT, response_format=response_format))

    try:
        raw = await asyncio.to_thread(_collect)
    except Exception as e:
        logger.warning("Suggestion LLM call failed: %s", e)
        raise SuggestionError(friendly_llm_error_message(e)) from e

    suggestions = parse_suggestions(raw)
    logger.info("Creating %d suggested tasks for project %s", len(suggestions), project.id)

    created: list[str] = []
    for s in suggestions:
        created.append(
            await gateway.create_task(s.title, project_id=project.id, due_date="", priority=s.priority)
        )
    return created
