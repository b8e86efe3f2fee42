# src/prodhub/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Components take settings explicitly; get_settings() is only used by the composition root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "PRODHUB"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_file() -> None:
    """Load .env locally. Safe no-op when there is no .env file."""
    load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Session / backing store ----
    owner_id: str
    backend: str  # "sqlite" | "memory"
    data_dir: Path
    db_path: Path
    sync_poll_interval_seconds: float

    # ---- LLM / OpenRouter (task suggestions) ----
    openrouter_api_key: Optional[str]
    openrouter_base_url: str
    llm_models: List[str]
    extra_headers: Dict[str, str]

    # ---- External calendar ----
    calendar_access_token: Optional[str]
    calendar_id: str
    calendar_exclude_keywords: List[str]
    calendar_max_pages: int
    http_timeout_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="prodhub") or "prodhub"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        owner_id = (_first_env(_k("OWNER_ID"), default="local") or "local").strip()
        backend = _env(_k("BACKEND"), "sqlite").strip().lower() or "sqlite"
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/prodhub"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "records.sqlite3")
        sync_poll_interval_seconds = _env_float(_k("SYNC_POLL_INTERVAL_SECONDS"), 1.0)

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        http_referer = _env(_k("HTTP_REFERER"), "https://example.com")
        title = _env(_k("APP_TITLE"), app_name)
        extra_headers = {
            "HTTP-Referer": http_referer,
            "X-Title": title,
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-2.0-flash-001",
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )

        calendar_access_token = _first_env(_k("CALENDAR_ACCESS_TOKEN"), default=None)
        calendar_id = _env(_k("CALENDAR_ID"), "primary").strip() or "primary"
        calendar_exclude_keywords = [
            kw.lower() for kw in _env_list(_k("CALENDAR_EXCLUDE_KEYWORDS"), ["birthday"])
        ]
        calendar_max_pages = max(1, _env_int(_k("CALENDAR_MAX_PAGES"), 5))
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 30.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            owner_id=owner_id,
            backend=backend,
            data_dir=data_dir,
            db_path=db_path,
            sync_poll_interval_seconds=sync_poll_interval_seconds,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            calendar_access_token=calendar_access_token,
            calendar_id=calendar_id,
            calendar_exclude_keywords=calendar_exclude_keywords,
            calendar_max_pages=calendar_max_pages,
            http_timeout_seconds=http_timeout_seconds,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    _load_dotenv_file()
    return Settings.from_env()
