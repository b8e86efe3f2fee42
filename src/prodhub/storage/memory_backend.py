# src/prodhub/storage/memory_backend.py

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..core.models import Record
from ..core.ports import ErrorCallback, SnapshotCallback

logger = logging.getLogger(__name__)

_Key = tuple[str, str]  # (partition, collection)


@dataclass(slots=True)
class _Listener:
    key: _Key
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback
    closed: bool = False


@dataclass(slots=True)
class MemoryListenerHandle:
    _backend: MemoryBackend
    _listener: _Listener

    async def close(self) -> None:
        self._backend._remove_listener(self._listener)


@dataclass(slots=True)
class MemoryWriteBatch:
    """Collects deletes; commit() applies them together and pushes one snapshot per collection."""

    _backend: MemoryBackend
    _partition: str
    _deletes: list[tuple[str, str]] = field(default_factory=list)
    _committed: bool = False

    def delete(self, collection: str, record_id: str) -> None:
        if self._committed:
            raise RuntimeError("batch already committed")
        self._deletes.append((collection, record_id))

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("batch already committed")
        self._committed = True
        self._backend._apply_batch(self._partition, self._deletes)


class MemoryBackend:
    """
    In-process record store with live snapshot feeds.

    Used for tests, demos and `PRODHUB_BACKEND=memory`. Snapshots are pushed
    synchronously from inside each write (and once on listen), always as a full
    copy of the collection in insertion order.
    """

    def __init__(self, *, supports_batch: bool = True) -> None:
        self._data: dict[_Key, dict[str, Record]] = {}
        self._listeners: list[_Listener] = []
        self._supports_batch = supports_batch

    # ---- helpers ----

    def _collection(self, partition: str, collection: str) -> dict[str, Record]:
        if not partition:
            raise ValueError("partition is required")
        return self._data.setdefault((partition, collection), {})

    def _snapshot(self, key: _Key) -> list[Record]:
        return [copy.deepcopy(r) for r in self._data.get(key, {}).values()]

    def _notify(self, keys: Iterable[_Key]) -> None:
        for key in dict.fromkeys(keys):
            for listener in list(self._listeners):
                if listener.closed or listener.key != key:
                    continue
                try:
                    listener.on_snapshot(self._snapshot(key))
                except Exception as e:
                    logger.exception("Snapshot listener for %s failed", key)
                    listener.on_error(e)

    def _remove_listener(self, listener: _Listener) -> None:
        listener.closed = True
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _apply_batch(self, partition: str, deletes: list[tuple[str, str]]) -> None:
        touched: list[_Key] = []
        for collection, record_id in deletes:
            self._collection(partition, collection).pop(record_id, None)
            touched.append((partition, collection))
        logger.debug("Batch committed partition=%s deletes=%d", partition, len(deletes))
        self._notify(touched)

    # ---- RecordBackend ----

    async def listen(
            self,
            partition: str,
            collection: str,
            on_snapshot: SnapshotCallback,
            on_error: ErrorCallback,
    ) -> MemoryListenerHandle:
        self._collection(partition, collection)
        listener = _Listener(key=(partition, collection), on_snapshot=on_snapshot, on_error=on_error)
        self._listeners.append(listener)
        on_snapshot(self._snapshot(listener.key))
        return MemoryListenerHandle(self, listener)

    async def add(self, partition: str, collection: str, data: Record) -> str:
        records = self._collection(partition, collection)
        record_id = uuid.uuid4().hex[:20]
        rec = copy.deepcopy(dict(data))
        rec["id"] = record_id
        records[record_id] = rec
        self._notify([(partition, collection)])
        return record_id

    async def update(self, partition: str, collection: str, record_id: str, fields: Record) -> None:
        records = self._collection(partition, collection)
        if record_id not in records:
            raise KeyError(f"{collection}/{record_id} does not exist")
        changes = {k: copy.deepcopy(v) for k, v in fields.items() if k != "id"}
        records[record_id].update(changes)
        self._notify([(partition, collection)])

    async def delete(self, partition: str, collection: str, record_id: str) -> None:
        # Deleting a missing record is a no-op, as in most document stores.
        self._collection(partition, collection).pop(record_id, None)
        self._notify([(partition, collection)])

    async def query(self, partition: str, collection: str, field: str, value: Any) -> list[Record]:
        return [
            copy.deepcopy(r)
            for r in self._collection(partition, collection).values()
            if r.get(field) == value
        ]

    def batch(self, partition: str) -> MemoryWriteBatch | None:
        if not self._supports_batch:
            return None
        return MemoryWriteBatch(self, partition)

    # ---- seeding / inspection ----

    def put(self, partition: str, collection: str, record: Record) -> None:
        """Insert a record with a caller-chosen id, without notifying listeners."""
        rec = copy.deepcopy(dict(record))
        if not rec.get("id"):
            raise ValueError("record id is required")
        self._collection(partition, collection)[rec["id"]] = rec

    def records(self, partition: str, collection: str) -> list[Record]:
        return self._snapshot((partition, collection))
