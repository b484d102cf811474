"""
SQLite document store implementation.

Lightweight document store using SQLite with async support via aiosqlite.
Documents are stored as JSON text and queried through SQLite's JSON1
functions, so scans, filters and counts run inside the database.

Use it to rehearse a backfill locally against an exported snapshot of
the production collections before running it for real.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import aiosqlite

from tenantfill.exceptions import BatchWriteError, StoreError
from tenantfill.observability import (
    ATTR_COLLECTION,
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    Tracer,
    create_tracer,
)
from tenantfill.serialization import json_dumps, json_loads
from tenantfill.stores.interface import (
    Document,
    DocumentStore,
    FieldFilter,
    FilterOp,
    Mutation,
    ScanOptions,
    ScanPage,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (collection, id)
);
"""


def _json_path(field_name: str) -> str:
    # field names are validated identifiers (see validate_field_name)
    return f"json_extract(data, '$.{field_name}')"


def _filter_sql(f: FieldFilter) -> tuple[str, list[Any]]:
    path = _json_path(f.field)
    if f.op is FilterOp.EXISTS:
        return f"{path} IS NOT NULL", []
    if f.op is FilterOp.NOT_EXISTS:
        return f"{path} IS NULL", []
    if f.op is FilterOp.EQ:
        if f.value is None:
            return f"{path} IS NULL", []
        return f"{path} = ?", [f.value]
    if f.op is FilterOp.NE:
        return f"{path} IS NOT ?", [f.value]
    values = list(f.value)
    if not values:
        return "0", []
    placeholders = ", ".join("?" for _ in values)
    return f"{path} IN ({placeholders})", values


class SQLiteDocumentStore(DocumentStore):
    """
    SQLite implementation of the document store.

    Uses aiosqlite for async database operations. All collections share
    one ``documents`` table keyed by ``(collection, id)``.

    SQLite-specific adaptations:
    - Documents stored as JSON TEXT (datetimes as ISO 8601 strings)
    - Field access through ``json_extract``
    - Resume positions compared with row values ``(sort_value, id)``

    Example:
        >>> async with SQLiteDocumentStore(":memory:") as store:
        ...     await store.initialize()
        ...     await store.put("chats", "c1", {"users": ["u1"]})
        ...     page = await store.scan("chats", ScanOptions(limit=10))
    """

    def __init__(
        self,
        database: str,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite document store.

        Args:
            database: Database file, or ":memory:"
            wal_mode: Switch the journal to WAL on connect
            busy_timeout: Milliseconds to wait on a locked database
            tracer: Tracer to use instead of creating one
            enable_tracing: Create an OpenTelemetry tracer when no tracer is given
        """
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __aenter__(self) -> SQLiteDocumentStore:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """
        Close the connection. A closed store can be reopened.
        """
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """
        Create the documents table if it does not exist.

        Connects first when needed. Running it again changes nothing.
        """
        if self._connection is None:
            await self._connect()

        assert self._connection is not None
        await self._connection.executescript(SCHEMA)
        await self._connection.commit()
        logger.info("Initialized SQLite document store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    async def scan(self, collection: str, options: ScanOptions) -> ScanPage:
        with self._tracer.span(
            "tenantfill.sqlite_store.scan",
            {
                ATTR_COLLECTION: collection,
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
            },
        ):
            conn = self._ensure_connected()
            sort_expr = _json_path(options.order_by) if options.order_by else "id"
            conditions = ["collection = ?"]
            params: list[Any] = [collection]

            if options.order_by:
                conditions.append(f"{sort_expr} IS NOT NULL")
            for f in options.filters:
                clause, values = _filter_sql(f)
                conditions.append(clause)
                params.extend(values)

            direction = "DESC" if options.descending else "ASC"
            comparison = "<" if options.descending else ">"
            if options.after_key is not None:
                if options.order_by:
                    sort_value, after_id = options.after_key
                    conditions.append(f"({sort_expr}, id) {comparison} (?, ?)")
                    params.extend([sort_value, after_id])
                else:
                    (after_id,) = options.after_key
                    conditions.append(f"id {comparison} ?")
                    params.append(after_id)

            where_clause = " AND ".join(conditions)
            query = (
                f"SELECT id, data, {sort_expr} AS sort_value FROM documents "  # nosec B608
                f"WHERE {where_clause} "
                f"ORDER BY sort_value {direction}, id {direction} LIMIT ?"
            )
            params.append(options.limit)

            try:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StoreError(f"Failed to scan {collection}: {e}") from e

            documents = []
            for row in rows:
                key = (row["sort_value"], row["id"]) if options.order_by else (row["id"],)
                documents.append(Document(id=row["id"], data=json_loads(row["data"]), sort_key=key))

            last_key = documents[-1].sort_key if documents else None
            return ScanPage(documents=documents, last_key=last_key)

    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        with self._tracer.span(
            "tenantfill.sqlite_store.get_by_id",
            {
                ATTR_COLLECTION: collection,
                ATTR_DOCUMENT_ID: document_id,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            conn = self._ensure_connected()
            try:
                cursor = await conn.execute(
                    "SELECT data FROM documents WHERE collection = ? AND id = ?",
                    (collection, document_id),
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise StoreError(f"Failed to read {collection}/{document_id}: {e}") from e
            if row is None:
                return None
            return Document(id=document_id, data=json_loads(row["data"]))

    async def atomic_batch_write(
        self,
        collection: str,
        mutations: Sequence[tuple[str, Mutation]],
        *,
        upsert: bool = False,
    ) -> None:
        with self._tracer.span(
            "tenantfill.sqlite_store.atomic_batch_write",
            {
                ATTR_COLLECTION: collection,
                ATTR_DOCUMENT_COUNT: len(mutations),
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            conn = self._ensure_connected()
            document_ids = [document_id for document_id, _ in mutations]

            try:
                for document_id, fields in mutations:
                    cursor = await conn.execute(
                        "SELECT data FROM documents WHERE collection = ? AND id = ?",
                        (collection, document_id),
                    )
                    row = await cursor.fetchone()
                    if row is None and not upsert:
                        raise BatchWriteError(
                            collection,
                            document_ids,
                            f"document does not exist: {document_id}",
                        )
                    current = json_loads(row["data"]) if row is not None else {}
                    current.update(fields)
                    await conn.execute(
                        """
                        INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
                        ON CONFLICT (collection, id) DO UPDATE SET data = excluded.data
                        """,
                        (collection, document_id, json_dumps(current)),
                    )
                await conn.commit()
            except BatchWriteError:
                await conn.rollback()
                raise
            except (aiosqlite.Error, TypeError, ValueError) as e:
                await conn.rollback()
                raise BatchWriteError(collection, document_ids, str(e)) from e

            logger.debug("Committed %d mutations to %s", len(mutations), collection)

    async def count(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
    ) -> int:
        conn = self._ensure_connected()
        conditions = ["collection = ?"]
        params: list[Any] = [collection]
        for f in filters:
            clause, values = _filter_sql(f)
            conditions.append(clause)
            params.extend(values)

        where_clause = " AND ".join(conditions)
        try:
            cursor = await conn.execute(
                f"SELECT COUNT(*) FROM documents WHERE {where_clause}",  # nosec B608
                params,
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to count {collection}: {e}") from e
        return int(row[0]) if row else 0

    async def put(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        conn = self._ensure_connected()
        await conn.execute(
            """
            INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, id) DO UPDATE SET data = excluded.data
            """,
            (collection, document_id, json_dumps(dict(data))),
        )
        await conn.commit()


__all__ = ["SQLiteDocumentStore", "SCHEMA"]
