# src/prodhub/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into a HubSession (backend/LLM/calendar).
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.ports import LLMClient, RecordBackend
from ..core.session import HubSession
from ..integrations.google_calendar import GoogleCalendarAdapter
from ..llm.client import OpenRouterLLMClient
from ..llm.offline import OfflineLLMClient
from ..storage.memory_backend import MemoryBackend
from ..storage.sqlite_backend import SqliteBackend

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_backend(settings: Settings) -> RecordBackend:
    if settings.backend == "memory":
        logger.info("Using in-memory backend (nothing is persisted)")
        return MemoryBackend()
    if settings.backend != "sqlite":
        logger.warning("Unknown backend %r; falling back to sqlite", settings.backend)
    return SqliteBackend(settings.db_path, poll_interval_seconds=settings.sync_poll_interval_seconds)


def create_llm_client(settings: Settings) -> LLMClient:
    if settings.openrouter_api_key and settings.openrouter_api_key.strip():
        return OpenRouterLLMClient(settings)
    # Demos / local runs without external services.
    logger.info("No LLM API key configured; task suggestions run offline")
    return OfflineLLMClient()


def create_session(*, settings: Settings | None = None) -> HubSession:
    """
    Create a HubSession from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    calendar = GoogleCalendarAdapter(
        calendar_id=settings.calendar_id,
        exclude_keywords=settings.calendar_exclude_keywords,
        max_pages=settings.calendar_max_pages,
        timeout_seconds=settings.http_timeout_seconds,
    )

    return HubSession(
        owner_id=settings.owner_id,
        backend=create_backend(settings),
        llm=create_llm_client(settings),
        calendar=calendar,
        settings=settings,
    )
