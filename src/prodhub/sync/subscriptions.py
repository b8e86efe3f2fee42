# src/prodhub/sync/subscriptions.py

from __future__ import annotations

"""
Live collection feeds.

One subscription per collection, scoped to the session owner's partition.
Backend callbacks never touch the RecordStore directly: every snapshot (or
delivery failure) becomes a message on a single asyncio.Queue, which the
SyncCoordinator consumes.

State machine per subscription:
  disconnected -> connecting -> active
  active -> disconnected   (stop(), session end, or a delivery error)

Each connect bumps a generation counter. Messages carry the generation they
were produced under, so anything still queued after a teardown is recognised
as stale and dropped instead of being applied.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

from ..core.models import Collection, Record
from ..core.ports import ListenerHandle, RecordBackend
from ..errors import SubscriptionError

logger = logging.getLogger(__name__)


class SubscriptionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"


@dataclass(slots=True, frozen=True)
class SnapshotMessage:
    collection: Collection
    records: tuple[Record, ...]
    generation: int


@dataclass(slots=True, frozen=True)
class DeliveryFailure:
    collection: Collection
    error: Exception
    generation: int


SyncMessage = SnapshotMessage | DeliveryFailure


@dataclass(slots=True)
class Subscription:
    collection: Collection
    state: SubscriptionState = SubscriptionState.DISCONNECTED
    generation: int = 0
    handle: ListenerHandle | None = None
    last_error: Exception | None = None
    delivered: int = 0


class SubscriptionManager:
    def __init__(
            self,
            backend: RecordBackend,
            *,
            channel: asyncio.Queue[SyncMessage] | None = None,
    ) -> None:
        self._backend = backend
        self._channel: asyncio.Queue[SyncMessage] = channel or asyncio.Queue()
        self._subs: dict[Collection, Subscription] = {c: Subscription(c) for c in Collection}
        self._partition: str | None = None

    @property
    def channel(self) -> asyncio.Queue[SyncMessage]:
        return self._channel

    @property
    def partition(self) -> str | None:
        return self._partition

    def state(self, collection: Collection) -> SubscriptionState:
        return self._subs[collection].state

    def subscription(self, collection: Collection) -> Subscription:
        return self._subs[collection]

    def is_current(self, message: SyncMessage) -> bool:
        return message.generation == self._subs[message.collection].generation

    # ---- callbacks handed to the backend ----

    def _snapshot_callback(self, collection: Collection, generation: int):
        def on_snapshot(records: list[Record]) -> None:
            sub = self._subs[collection]
            # A feed that reported an error stays dead until it is reconnected.
            if generation != sub.generation or sub.state == SubscriptionState.DISCONNECTED:
                return
            sub.delivered += 1
            self._channel.put_nowait(
                SnapshotMessage(collection=collection, records=tuple(records), generation=generation)
            )

        return on_snapshot

    def _error_callback(self, collection: Collection, generation: int):
        def on_error(exc: Exception) -> None:
            sub = self._subs[collection]
            if generation != sub.generation:
                return
            # No retry: the feed is dead until the session reconnects it.
            sub.state = SubscriptionState.DISCONNECTED
            sub.last_error = exc
            logger.warning("Snapshot feed for %s failed: %s", collection.value, exc)
            self._channel.put_nowait(
                DeliveryFailure(collection=collection, error=exc, generation=generation)
            )

        return on_error

    # ---- lifecycle ----

    async def connect(self, partition: str, collection: Collection) -> None:
        sub = self._subs[collection]
        if sub.state != SubscriptionState.DISCONNECTED:
            return
        if sub.handle is not None:
            # Feed died on a delivery error; release it before reconnecting.
            await self.disconnect(collection)

        sub.generation += 1
        sub.state = SubscriptionState.CONNECTING
        sub.last_error = None
        generation = sub.generation
        logger.debug("Connecting %s feed (partition=%s gen=%d)", collection.value, partition, generation)

        try:
            handle = await self._backend.listen(
                partition,
                collection.value,
                self._snapshot_callback(collection, generation),
                self._error_callback(collection, generation),
            )
        except Exception as e:
            sub.state = SubscriptionState.DISCONNECTED
            sub.last_error = e
            logger.exception("listen() failed for %s", collection.value)
            raise SubscriptionError(collection.value, f"connect failed: {e}") from e

        sub.handle = handle
        # A delivery error may already have arrived while connecting.
        if sub.state == SubscriptionState.CONNECTING and sub.generation == generation:
            sub.state = SubscriptionState.ACTIVE

    async def start(self, partition: str) -> None:
        """Open all four feeds for the partition. On failure, nothing is left connected."""
        if not partition:
            raise ValueError("partition is required")
        if self._partition is not None and self._partition != partition:
            await self.stop()
        self._partition = partition

        try:
            for collection in Collection:
                await self.connect(partition, collection)
        except SubscriptionError:
            await self.stop()
            raise
        logger.info("Subscriptions active for partition=%s", partition)

    async def disconnect(self, collection: Collection) -> None:
        sub = self._subs[collection]
        # Invalidate first so anything already queued for this generation is stale.
        sub.generation += 1
        sub.state = SubscriptionState.DISCONNECTED
        handle, sub.handle = sub.handle, None
        if handle is not None:
            try:
                await handle.close()
            except Exception:
                logger.warning("Closing %s feed failed", collection.value, exc_info=True)

    async def stop(self) -> None:
        for collection in Collection:
            await self.disconnect(collection)
        if self._partition is not None:
            logger.info("Subscriptions stopped for partition=%s", self._partition)
        self._partition = None
