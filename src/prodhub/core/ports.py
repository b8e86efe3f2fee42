# src/prodhub/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the backing store, calendar provider and LLM provider swappable
and makes testing easier.
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from .models import Record

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

SnapshotCallback = Callable[[list[Record]], None]
ErrorCallback = Callable[[Exception], None]


class LLMClient(Protocol):
    """Streaming chat completion client (OpenAI/OpenRouter-compatible)."""

    def stream_chat(
            self,
            messages: list[ChatMessage],
            system_prompt: str,
            *,
            response_format: dict[str, Any] | None = None,
    ) -> Iterable[str]: ...


class ListenerHandle(Protocol):
    """Live feed handle returned by RecordBackend.listen()."""

    async def close(self) -> None: ...


class WriteBatch(Protocol):
    """All-or-nothing group of writes; nothing is applied until commit()."""

    def delete(self, collection: str, record_id: str) -> None: ...
    async def commit(self) -> None: ...


class RecordBackend(Protocol):
    """
    Backing record store, addressed by (partition, collection, record id).

    listen() must deliver a complete replacement snapshot of the collection
    on every change (and once right after connecting), in emission order.
    """

    async def listen(
            self,
            partition: str,
            collection: str,
            on_snapshot: SnapshotCallback,
            on_error: ErrorCallback,
    ) -> ListenerHandle: ...

    async def add(self, partition: str, collection: str, data: Record) -> str: ...
    async def update(self, partition: str, collection: str, record_id: str, fields: Record) -> None: ...
    async def delete(self, partition: str, collection: str, record_id: str) -> None: ...
    async def query(self, partition: str, collection: str, field: str, value: Any) -> list[Record]: ...

    # Returns None when the store has no atomic batch support.
    def batch(self, partition: str) -> WriteBatch | None: ...


class CalendarSource(Protocol):
    """External calendar provider, already normalized to schedule events."""

    async def fetch_events(self, access_token: str, *, time_min: datetime) -> list[Any]: ...
    async def aclose(self) -> None: ...
