"""Remote document store backed by SQLite."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from .config import SCHEMA_VERSION
from .exceptions import DatabaseError, DocumentNotFoundError, SchemaError
from .interfaces import (
    Document,
    ErrorCallback,
    Query,
    RemoteDocumentStore,
    SnapshotCallback,
    Subscription,
    Timestamp,
    WriteKind,
    WriteOp,
)

logger = logging.getLogger(__name__)

_TIMESTAMP_KEY = "__timestamp__"


def _encode_default(value: Any) -> Any:
    if isinstance(value, Timestamp):
        return {_TIMESTAMP_KEY: [value.seconds, value.nanos]}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _TIMESTAMP_KEY in obj:
        seconds, nanos = obj[_TIMESTAMP_KEY]
        return Timestamp(seconds=seconds, nanos=nanos)
    return obj


def encode_document(document: Document) -> str:
    """Serialize a document to JSON, encoding native timestamps."""
    return json.dumps(document, default=_encode_default, ensure_ascii=False)


def decode_document(data: str) -> Document:
    """Deserialize a JSON document, restoring native timestamps."""
    return json.loads(data, object_hook=_decode_hook)


class DocumentSubscription(Subscription):
    """Snapshot subscription registered on a DocumentDatabase."""

    def __init__(
        self,
        database: "DocumentDatabase",
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        self.query = query
        self._database = database
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._database._subscriptions.remove(self)

    def deliver(self, documents: list[Document]) -> None:
        """Invoke the snapshot callback unless unsubscribed."""
        if not self._active:
            return
        try:
            self._on_snapshot(documents)
        except Exception as e:
            logger.error(f"Snapshot callback failed for '{self.query.collection}': {e}")

    def fail(self, error: Exception) -> None:
        """Report a query error to the subscriber."""
        if not self._active:
            return
        if self._on_error is None:
            logger.error(f"Subscription error on '{self.query.collection}': {error}")
            return
        self._on_error(error)


class DocumentDatabase(RemoteDocumentStore):
    """SQLite database implementing the real-time document store contract."""

    def __init__(self, db_path: str, wal_mode: bool = True) -> None:
        """
        Initialize database connection settings.

        Args:
            db_path: Path to SQLite database file (use ":memory:" for in-memory)
            wal_mode: Enable WAL mode for concurrent access
        """
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._connection: aiosqlite.Connection | None = None
        self._subscriptions: list[DocumentSubscription] = []
        # One connection: transactions and reads must not interleave
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database schema and connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row

            # WAL is not supported in :memory:
            if self.wal_mode and self.db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")

        await self._create_schema()

    async def _create_schema(self) -> None:
        """Create database schema with tables and indexes."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            current_version = result[0] if result and result[0] is not None else 0

            if current_version > SCHEMA_VERSION:
                raise SchemaError(
                    f"Database schema version {current_version} is newer than "
                    f"supported version {SCHEMA_VERSION}"
                )
            if current_version < SCHEMA_VERSION:
                await self._apply_migrations(conn, current_version)

            await conn.commit()

    async def _apply_migrations(
        self, conn: aiosqlite.Connection, from_version: int
    ) -> None:
        """
        Apply database migrations.

        Args:
            conn: Database connection
            from_version: Current schema version
        """
        if from_version < 1:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_collection "
                "ON documents(collection)"
            )

            # No foreign key so history survives deletion
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    action TEXT NOT NULL,
                    fields TEXT
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_document "
                "ON document_history(collection, doc_id)"
            )

            await conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Get exclusive use of the database connection.

        Raises:
            DatabaseError: If connection is not initialized
        """
        if self._connection is None:
            raise DatabaseError("Database not initialized")
        async with self._lock:
            yield self._connection

    async def get_schema_version(self) -> int:
        """Get current schema version."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            result = await cursor.fetchone()
            return result[0] if result and result[0] is not None else 0

    async def close(self) -> None:
        """Close database connection and drop all subscriptions."""
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def create(self, collection: str, doc_id: str, document: Document) -> None:
        await self.batch_write([WriteOp.create(collection, doc_id, document)])

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        await self.batch_write([WriteOp.update(collection, doc_id, fields)])

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.batch_write([WriteOp.delete(collection, doc_id)])

    async def batch_write(self, ops: list[WriteOp]) -> None:
        """
        Apply writes in a single transaction.

        Raises:
            DocumentNotFoundError: If an update targets a missing document
            DatabaseError: If any write fails; nothing is committed
        """
        if not ops:
            return

        async with self._get_connection() as conn:
            try:
                for op in ops:
                    await self._apply(conn, op)
                await conn.commit()
            except DatabaseError:
                await conn.rollback()
                raise
            except aiosqlite.IntegrityError as e:
                await conn.rollback()
                raise DatabaseError(f"Document already exists: {e}") from e
            except Exception as e:
                await conn.rollback()
                raise DatabaseError(f"Failed to write batch: {e}") from e

        await self._notify({op.collection for op in ops})

    async def _apply(self, conn: aiosqlite.Connection, op: WriteOp) -> None:
        """Apply one write inside the current transaction."""
        now = datetime.now(timezone.utc).isoformat()

        if op.kind == WriteKind.CREATE:
            document = {**(op.data or {}), "id": op.doc_id}
            await conn.execute(
                """
                INSERT INTO documents (collection, id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (op.collection, op.doc_id, encode_document(document), now, now),
            )
            await self._record_history(conn, op, "created", now)

        elif op.kind == WriteKind.UPDATE:
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (op.collection, op.doc_id),
            )
            row = await cursor.fetchone()
            if row is None:
                raise DocumentNotFoundError(
                    f"Document {op.collection}/{op.doc_id} not found"
                )
            document = {**decode_document(row["data"]), **(op.data or {}), "id": op.doc_id}
            await conn.execute(
                """
                UPDATE documents SET data = ?, updated_at = ?
                WHERE collection = ? AND id = ?
                """,
                (encode_document(document), now, op.collection, op.doc_id),
            )
            await self._record_history(conn, op, "updated", now)

        elif op.kind == WriteKind.DELETE:
            cursor = await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (op.collection, op.doc_id),
            )
            if cursor.rowcount:
                await self._record_history(conn, op, "deleted", now)

    async def _record_history(
        self, conn: aiosqlite.Connection, op: WriteOp, action: str, timestamp: str
    ) -> None:
        await conn.execute(
            """
            INSERT INTO document_history (collection, doc_id, timestamp, action, fields)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                op.collection,
                op.doc_id,
                timestamp,
                action,
                json.dumps(sorted(op.data)) if op.data else None,
            ),
        )

    async def get(self, collection: str, doc_id: str) -> Document | None:
        """
        Get a document by ID.

        Returns:
            The document, or None if it does not exist
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            )
            row = await cursor.fetchone()
            return decode_document(row["data"]) if row else None

    async def query(self, query: Query) -> list[Document]:
        """
        Run a query and return the matching documents.

        Args:
            query: Collection, equality filter and ordering

        Returns:
            Matching documents in query order
        """
        sql = "SELECT data FROM documents WHERE collection = ?"
        params: list[Any] = [query.collection]

        if query.where_field is not None:
            path = f"$.{query.where_field}"
            if query.where_value is None:
                sql += " AND json_extract(data, ?) IS NULL"
                params.append(path)
            else:
                sql += " AND json_extract(data, ?) = ?"
                params.extend([path, query.where_value])

        sql += " ORDER BY created_at ASC, id ASC"

        async with self._get_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()

        documents = [decode_document(row["data"]) for row in rows]
        if query.order_by is None:
            return documents

        present = [doc for doc in documents if doc.get(query.order_by) is not None]
        missing = [doc for doc in documents if doc.get(query.order_by) is None]
        present.sort(key=lambda doc: doc[query.order_by], reverse=query.descending)
        return present + missing

    async def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Subscribe to snapshots of a query.

        Raises:
            DatabaseError: If the initial snapshot cannot be read
        """
        documents = await self.query(query)
        subscription = DocumentSubscription(self, query, on_snapshot, on_error)
        self._subscriptions.append(subscription)
        logger.info(f"Subscribed to '{query.collection}' ({len(documents)} documents)")
        subscription.deliver(documents)
        return subscription

    async def _notify(self, collections: set[str]) -> None:
        """Push a fresh snapshot to every subscription on the touched collections."""
        for subscription in list(self._subscriptions):
            if subscription.query.collection not in collections:
                continue
            try:
                documents = await self.query(subscription.query)
            except Exception as e:
                subscription.fail(e)
                continue
            subscription.deliver(documents)

    async def get_history(self, collection: str, doc_id: str) -> list[dict[str, Any]]:
        """
        Get the write history of a document.

        Returns:
            List of history entries, oldest first
        """
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT timestamp, action, fields
                FROM document_history
                WHERE collection = ? AND doc_id = ?
                ORDER BY id ASC
                """,
                (collection, doc_id),
            )
            rows = await cursor.fetchall()

            return [
                {
                    "timestamp": row[0],
                    "action": row[1],
                    "fields": json.loads(row[2]) if row[2] else [],
                }
                for row in rows
            ]
