"""Abstract interfaces for the remote document store."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True, order=True)
class Timestamp:
    """Native timestamp type of the remote store (UTC seconds + nanoseconds)."""

    seconds: int
    nanos: int = 0

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        """Convert an aware or naive (treated as UTC) datetime."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - _EPOCH
        return cls(
            seconds=delta.days * 86400 + delta.seconds,
            nanos=delta.microseconds * 1000,
        )

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime."""
        base = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
        return base.replace(microsecond=self.nanos // 1000)


class WriteKind(str, Enum):
    """Kind of write in a batch."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOp:
    """Single write inside a batch."""

    kind: WriteKind
    collection: str
    doc_id: str
    data: Document | None = None

    @classmethod
    def create(cls, collection: str, doc_id: str, data: Document) -> "WriteOp":
        return cls(WriteKind.CREATE, collection, doc_id, data)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: Document) -> "WriteOp":
        return cls(WriteKind.UPDATE, collection, doc_id, data)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "WriteOp":
        return cls(WriteKind.DELETE, collection, doc_id)


@dataclass(frozen=True)
class Query:
    """
    Collection query with an optional equality filter and ordering.

    Documents missing the order_by field sort last.
    """

    collection: str
    where_field: str | None = None
    where_value: Any = None
    order_by: str | None = None
    descending: bool = False

    def matches(self, document: Document) -> bool:
        """Check whether a document satisfies the equality filter."""
        if self.where_field is None:
            return True
        return document.get(self.where_field) == self.where_value


class Subscription(ABC):
    """Handle to an active snapshot subscription."""

    @abstractmethod
    def unsubscribe(self) -> None:
        """
        Detach the snapshot callback.

        Takes effect synchronously: no callback is invoked after this returns.
        """
        pass

    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether the subscription still delivers snapshots."""
        pass


class RemoteDocumentStore(ABC):
    """Abstract interface for a real-time document store."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and prepare storage."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and drop subscriptions."""
        pass

    @abstractmethod
    async def create(self, collection: str, doc_id: str, document: Document) -> None:
        """
        Create a document.

        Raises:
            DatabaseError: If the document already exists or the write fails
        """
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """
        Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist
            DatabaseError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        pass

    @abstractmethod
    async def batch_write(self, ops: list[WriteOp]) -> None:
        """
        Apply writes atomically: either all of them or none.

        Raises:
            DatabaseError: If any write fails (nothing is applied)
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Subscribe to full snapshots of a query.

        The initial snapshot is delivered before this returns; later snapshots
        follow every committed write touching the query's collection.
        """
        pass
