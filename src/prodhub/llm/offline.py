# src/prodhub/llm/offline.py

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from typing import Any

from ..core.ports import ChatMessage

_PROJECT_RE = re.compile(r"^Project:\s*(.+)$", re.MULTILINE)


class OfflineLLMClient:
    """
    Offline deterministic LLM client used for demos when no external API is configured.

    Behavior:
    - Suggestion prompts (JSON response requested) -> a fixed three-step plan
      named after the project found in the prompt
    - Anything else -> a short "offline mode" notice
    """

    def stream_chat(
            self,
            messages: list[ChatMessage],
            system_prompt: str,
            *,
            response_format: dict[str, Any] | None = None,
    ) -> Iterable[str]:
        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        if response_format is None and "json" not in (system_prompt or "").lower():
            yield (
                "Offline demo mode: no external LLM is configured.\n"
                "Set PRODHUB_OPENROUTER_API_KEY (and PRODHUB_LLM_MODELS) to enable real suggestions."
            )
            return

        match = _PROJECT_RE.search(user_text)
        project = match.group(1).strip() if match else "the project"
        plan = {
            "tasks": [
                {"title": f"Outline goals for {project}", "priority": "High"},
                {"title": f"Schedule work sessions for {project}", "priority": "Medium"},
                {"title": f"Review progress on {project}", "priority": "Low"},
            ]
        }
        yield json.dumps(plan, ensure_ascii=False)
