# tests/test_config.py

from __future__ import annotations

import os
from pathlib import Path

import pytest

from prodhub.config import Settings


def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("PRODHUB_") or key == "OPENROUTER_API_KEY":
            monkeypatch.delenv(key, raising=False)


def test_defaults_without_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_env(monkeypatch)
    s = Settings.from_env()

    assert s.owner_id == "local"
    assert s.backend == "sqlite"
    assert s.db_path == Path(".local/prodhub") / "records.sqlite3"
    assert s.openrouter_api_key is None
    assert s.llm_models
    assert s.calendar_access_token is None
    assert s.calendar_id == "primary"
    assert s.calendar_exclude_keywords == ["birthday"]
    assert s.calendar_max_pages == 5


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _clear_env(monkeypatch)
    monkeypatch.setenv("PRODHUB_OWNER_ID", " alice ")
    monkeypatch.setenv("PRODHUB_BACKEND", "MEMORY")
    monkeypatch.setenv("PRODHUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PRODHUB_LLM_MODELS", "a/one, b/two")
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    monkeypatch.setenv("PRODHUB_CALENDAR_EXCLUDE_KEYWORDS", "Birthday,Holiday")
    monkeypatch.setenv("PRODHUB_CALENDAR_MAX_PAGES", "0")
    monkeypatch.setenv("PRODHUB_SYNC_POLL_INTERVAL_SECONDS", "not-a-number")

    s = Settings.from_env()

    assert s.owner_id == "alice"
    assert s.backend == "memory"
    assert s.db_path == tmp_path / "records.sqlite3"
    assert s.llm_models == ["a/one", "b/two"]
    assert s.openrouter_api_key == "sk-test"
    assert s.calendar_exclude_keywords == ["birthday", "holiday"]
    assert s.calendar_max_pages == 1
    assert s.sync_poll_interval_seconds == 1.0
