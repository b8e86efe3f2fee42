# src/prodhub/storage/sqlite_backend.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..core.models import Record
from ..core.ports import ErrorCallback, SnapshotCallback

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Feed:
    partition: str
    collection: str
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback
    last_revision: int = -1
    task: asyncio.Task[None] | None = None
    closed: bool = False


@dataclass(slots=True)
class SqliteListenerHandle:
    _backend: SqliteBackend
    _feed: _Feed

    async def close(self) -> None:
        await self._backend._close_feed(self._feed)


@dataclass(slots=True)
class SqliteWriteBatch:
    _backend: SqliteBackend
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
        self._backend._delete_many(self._partition, self._deletes)


class SqliteBackend:
    """
    SQLite record store with polled snapshot feeds.

    Records are JSON documents keyed by (partition, collection, id). Every write
    bumps a per-(partition, collection) revision in the same transaction, and a
    feed re-reads its collection whenever that revision moves. Writes made
    through this instance are pushed to local feeds right away; writes from
    other processes show up on the next poll.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(
            self,
            db_path: str | Path = "prodhub.sqlite3",
            *,
            poll_interval_seconds: float = 2.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._poll_s = max(0.05, float(poll_interval_seconds))
        self._feeds: list[_Feed] = []
        self._ensure_schema()
        logger.info("SqliteBackend ready db=%s", self._db_path)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    partition TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (partition, collection, id)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS revisions (
                    partition TEXT NOT NULL,
                    collection TEXT NOT NULL,
                    revision INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (partition, collection)
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(records)")
            cols = {row["name"] for row in cur.fetchall()}
            if "updated_at" not in cols:
                cur.execute("ALTER TABLE records ADD COLUMN updated_at REAL NOT NULL DEFAULT 0")
                logger.info("SqliteBackend migration: added column updated_at")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_created ON records(partition, collection, created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _encode(data: Record) -> str:
        return json.dumps({k: v for k, v in data.items() if k != "id"}, ensure_ascii=False)

    @staticmethod
    def _decode(row: sqlite3.Row) -> Record:
        try:
            val = json.loads(row["data"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Undecodable record %s/%s", row["collection"], row["id"])
            val = {}
        rec = val if isinstance(val, dict) else {}
        rec["id"] = str(row["id"])
        return rec

    @staticmethod
    def _bump(cur: sqlite3.Cursor, partition: str, collection: str) -> None:
        cur.execute(
            """
            INSERT INTO revisions(partition, collection, revision) VALUES (?, ?, 1)
            ON CONFLICT(partition, collection) DO UPDATE SET revision = revision + 1
            """,
            (partition, collection),
        )

    def _revision(self, partition: str, collection: str) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT revision FROM revisions WHERE partition = ? AND collection = ?",
                (partition, collection),
            ).fetchone()
            return int(row["revision"]) if row else 0
        finally:
            conn.close()

    def _rows(self, partition: str, collection: str) -> list[Record]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT collection, id, data
                FROM records
                WHERE partition = ? AND collection = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (partition, collection),
            )
            return [self._decode(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _delete_many(self, partition: str, deletes: list[tuple[str, str]]) -> None:
        if not partition:
            raise ValueError("partition is required")
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            touched: dict[str, None] = {}
            for collection, record_id in deletes:
                cur.execute(
                    "DELETE FROM records WHERE partition = ? AND collection = ? AND id = ?",
                    (partition, collection, record_id),
                )
                touched[collection] = None
            for collection in touched:
                self._bump(cur, partition, collection)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.debug("Deleted %d records partition=%s", len(deletes), partition)
        self._push(partition, touched)

    # ---- feeds ----

    def _emit(self, feed: _Feed) -> None:
        """Deliver a snapshot if the collection moved since the last one."""
        revision = self._revision(feed.partition, feed.collection)
        if revision == feed.last_revision:
            return
        records = self._rows(feed.partition, feed.collection)
        feed.last_revision = revision
        feed.on_snapshot(records)

    def _push(self, partition: str, collections: Iterable[str]) -> None:
        wanted = set(collections)
        for feed in list(self._feeds):
            if feed.closed or feed.partition != partition or feed.collection not in wanted:
                continue
            try:
                self._emit(feed)
            except Exception as e:
                self._fail(feed, e)

    def _fail(self, feed: _Feed, exc: Exception) -> None:
        logger.exception("Feed %s/%s failed", feed.partition, feed.collection)
        feed.closed = True
        if feed in self._feeds:
            self._feeds.remove(feed)
        feed.on_error(exc)

    async def _poll(self, feed: _Feed) -> None:
        """
        Poll the revision table for changes made by other writers.

        On the first failure the feed reports the error and stops; there is no
        retry. To stop the feed, cancel the task.
        """
        while not feed.closed:
            await asyncio.sleep(self._poll_s)
            if feed.closed:
                return
            try:
                self._emit(feed)
            except Exception as e:
                self._fail(feed, e)
                return

    async def _close_feed(self, feed: _Feed) -> None:
        feed.closed = True
        if feed in self._feeds:
            self._feeds.remove(feed)
        task, feed.task = feed.task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def aclose(self) -> None:
        for feed in list(self._feeds):
            await self._close_feed(feed)

    # ---- RecordBackend ----

    async def listen(
            self,
            partition: str,
            collection: str,
            on_snapshot: SnapshotCallback,
            on_error: ErrorCallback,
    ) -> SqliteListenerHandle:
        if not partition:
            raise ValueError("partition is required")
        feed = _Feed(partition=partition, collection=collection, on_snapshot=on_snapshot, on_error=on_error)
        feed.last_revision = self._revision(partition, collection)
        on_snapshot(self._rows(partition, collection))
        self._feeds.append(feed)
        feed.task = asyncio.create_task(self._poll(feed), name=f"prodhub-feed-{collection}")
        return SqliteListenerHandle(self, feed)

    async def add(self, partition: str, collection: str, data: Record) -> str:
        if not partition:
            raise ValueError("partition is required")
        record_id = uuid.uuid4().hex[:20]
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO records(partition, collection, id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (partition, collection, record_id, self._encode(data), now, now),
            )
            self._bump(cur, partition, collection)
            conn.commit()
        finally:
            conn.close()
        logger.debug("Record added %s/%s", collection, record_id)
        self._push(partition, [collection])
        return record_id

    async def update(self, partition: str, collection: str, record_id: str, fields: Record) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            row = cur.execute(
                "SELECT collection, id, data FROM records WHERE partition = ? AND collection = ? AND id = ?",
                (partition, collection, record_id),
            ).fetchone()
            if row is None:
                raise KeyError(f"{collection}/{record_id} does not exist")
            rec = self._decode(row)
            rec.update({k: v for k, v in fields.items() if k != "id"})
            cur.execute(
                """
                UPDATE records SET data = ?, updated_at = ?
                WHERE partition = ? AND collection = ? AND id = ?
                """,
                (self._encode(rec), time.time(), partition, collection, record_id),
            )
            self._bump(cur, partition, collection)
            conn.commit()
        finally:
            conn.close()
        self._push(partition, [collection])

    async def delete(self, partition: str, collection: str, record_id: str) -> None:
        self._delete_many(partition, [(collection, record_id)])

    async def query(self, partition: str, collection: str, field: str, value: Any) -> list[Record]:
        # Documents are opaque JSON here; filtering in Python keeps the schema generic.
        return [r for r in self._rows(partition, collection) if r.get(field) == value]

    def batch(self, partition: str) -> SqliteWriteBatch:
        return SqliteWriteBatch(self, partition)

    def count(self, partition: str, collection: str) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute(
                "SELECT COUNT(*) FROM records WHERE partition = ? AND collection = ?",
                (partition, collection),
            ).fetchone()
            return int(n)
        finally:
            conn.close()
