# tests/conftest.py

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from prodhub.core.session import HubSession

from .fakes import OWNER, FakeCalendarSource, FakeLLMClient, RecordingBackend


@pytest.fixture()
def now() -> datetime:
    """Fixed local wall-clock 'now' (noon, so day math is far from midnight)."""
    return datetime(2026, 3, 10, 12, 0).astimezone()


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with HubSession and the adapters.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        owner_id=OWNER,
        backend="memory",
        data_dir=tmp_path,
        db_path=tmp_path / "records.sqlite3",
        sync_poll_interval_seconds=0.01,
        llm_models=["test/model"],
        calendar_access_token="token-123",
        calendar_id="primary",
        calendar_exclude_keywords=["birthday"],
        calendar_max_pages=5,
        http_timeout_seconds=5.0,
    )


@pytest.fixture()
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def calendar() -> FakeCalendarSource:
    return FakeCalendarSource()


@pytest.fixture()
def session(
        settings: SimpleNamespace,
        backend: RecordingBackend,
        llm: FakeLLMClient,
        calendar: FakeCalendarSource,
        now: datetime,
) -> HubSession:
    """
    HubSession wired with deterministic fakes and a frozen clock.

    Tests call `await session.start(background=False)` and then `await session.sync()`
    to apply queued snapshots at points they control.
    """
    return HubSession(
        owner_id=OWNER,
        backend=backend,
        llm=llm,
        calendar=calendar,
        settings=settings,
        clock=lambda: now,
    )
