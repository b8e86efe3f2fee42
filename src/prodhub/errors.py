# src/prodhub/errors.py

"""Error types raised across the sync, mutation and adapter boundaries."""

from __future__ import annotations


class ProdHubError(RuntimeError):
    """Base class for all prodhub errors."""


class SubscriptionError(ProdHubError):
    """A live collection feed failed to connect or stopped delivering snapshots."""

    def __init__(self, collection: str, message: str) -> None:
        super().__init__(f"{collection}: {message}")
        self.collection = collection


class MutationError(ProdHubError):
    """A write against the backing store failed. Nothing was retried."""

    def __init__(self, operation: str, collection: str, record_id: str | None, message: str) -> None:
        target = f"{collection}/{record_id}" if record_id else collection
        super().__init__(f"{operation} {target} failed: {message}")
        self.operation = operation
        self.collection = collection
        self.record_id = record_id


class CascadeError(MutationError):
    """
    A non-atomic cascade stopped part-way.

    deleted_ids / remaining_ids describe the children that were and were not removed,
    so callers can detect (and clean up) orphaned records.
    """

    def __init__(
        self,
        collection: str,
        record_id: str,
        *,
        deleted_ids: list[str],
        remaining_ids: list[str],
        message: str,
    ) -> None:
        super().__init__("cascade delete", collection, record_id, message)
        self.deleted_ids = list(deleted_ids)
        self.remaining_ids = list(remaining_ids)


class CalendarError(ProdHubError):
    """Fetching or decoding external calendar events failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SuggestionError(ProdHubError):
    """The text-generation collaborator returned nothing usable."""
