"""
Persisted history of backfill runs.

Every ``process_all`` run of an engine can be recorded as a history
entry: started as ``running``, updated with progress after each page and
finished as ``completed``, ``failed`` or ``cancelled``. The history feeds
summary statistics and daily trends for the last 30 days.

This module provides:
- MigrationHistoryEntry: One recorded run (pydantic model)
- MigrationSummary, MigrationTrend: Derived reports
- MigrationHistoryRepository: Protocol for history persistence
- InMemoryMigrationHistoryRepository: For tests and development
- PostgreSQLMigrationHistoryRepository: SQLAlchemy async implementation

Database Table:
    ``migration_history``, see ``MIGRATION_HISTORY_SCHEMA``.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenantfill.exceptions import DocumentNotFoundError
from tenantfill.observability import ATTR_DB_SYSTEM, ATTR_JOB_ID, Tracer, create_tracer
from tenantfill.repositories import execute_with_connection
from tenantfill.serialization import json_dumps, json_loads

logger = logging.getLogger(__name__)

HISTORY_COLLECTION = "migration_history"

MIGRATION_HISTORY_SCHEMA = """
CREATE TABLE IF NOT EXISTS migration_history (
    id UUID PRIMARY KEY,
    migration_type VARCHAR(100) NOT NULL,
    migration_name VARCHAR(255) NOT NULL,
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ,
    status VARCHAR(20) NOT NULL,
    total_items INTEGER NOT NULL DEFAULT 0,
    successful_items INTEGER NOT NULL DEFAULT 0,
    error_items INTEGER NOT NULL DEFAULT 0,
    skipped_items INTEGER NOT NULL DEFAULT 0,
    batch_size INTEGER NOT NULL,
    processing_rate DOUBLE PRECISION,
    error_details JSONB,
    metadata JSONB
);
CREATE INDEX IF NOT EXISTS idx_migration_history_start_time
    ON migration_history (start_time DESC);
CREATE INDEX IF NOT EXISTS idx_migration_history_type
    ON migration_history (migration_type, start_time DESC);
"""


class HistoryStatus(str, Enum):
    """Lifecycle status of a recorded run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not HistoryStatus.RUNNING


class MigrationHistoryEntry(BaseModel):
    """
    One recorded run of a backfill job.

    Attributes:
        id: Run identifier
        migration_type: Job id
        migration_name: Job display name
        start_time: When the run started (UTC)
        end_time: When the run finished, None while running
        status: Lifecycle status
        total_items: Records counted at start
        successful_items: Records updated
        error_items: Records that failed
        skipped_items: Records skipped
        batch_size: Page size of the run
        processing_rate: Records per second at the last update
        error_details: Failure messages recorded on completion
        metadata: Free-form run details
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    migration_type: str
    migration_name: str
    start_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    status: HistoryStatus = HistoryStatus.RUNNING
    total_items: int = 0
    successful_items: int = 0
    error_items: int = 0
    skipped_items: int = 0
    batch_size: int = 10
    processing_rate: float | None = None
    error_details: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration(self) -> timedelta | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass(frozen=True)
class MigrationSummary:
    """Aggregate statistics over every recorded run."""

    total_migrations: int = 0
    successful_migrations: int = 0
    failed_migrations: int = 0
    total_items_processed: int = 0
    average_processing_rate: float = 0.0
    most_recent_migration: MigrationHistoryEntry | None = None
    migrations_by_type: dict[str, int] = field(default_factory=dict)
    migrations_by_status: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class MigrationTrend:
    """
    Runs started on one UTC day.

    Attributes:
        date: ``YYYY-MM-DD``
        migrations: Runs started that day
        items_processed: Sum of their total items
        success_rate: Percent of those runs that completed
        average_rate: Mean processing rate of runs that reported one
    """

    date: str
    migrations: int
    items_processed: int
    success_rate: float
    average_rate: float


def summarize(entries: Sequence[MigrationHistoryEntry]) -> MigrationSummary:
    """Build a MigrationSummary from history entries."""
    if not entries:
        return MigrationSummary()

    completed = [
        e for e in entries if e.status is HistoryStatus.COMPLETED and e.duration is not None
    ]
    average_rate = (
        sum(e.processing_rate or 0.0 for e in completed) / len(completed) if completed else 0.0
    )
    return MigrationSummary(
        total_migrations=len(entries),
        successful_migrations=sum(1 for e in entries if e.status is HistoryStatus.COMPLETED),
        failed_migrations=sum(1 for e in entries if e.status is HistoryStatus.FAILED),
        total_items_processed=sum(e.total_items for e in entries),
        average_processing_rate=average_rate,
        most_recent_migration=max(entries, key=lambda e: e.start_time),
        migrations_by_type=dict(Counter(e.migration_type for e in entries)),
        migrations_by_status=dict(Counter(e.status.value for e in entries)),
    )


def compute_trends(entries: Sequence[MigrationHistoryEntry]) -> list[MigrationTrend]:
    """Group entries by UTC start date, oldest day first."""
    days: dict[str, list[MigrationHistoryEntry]] = {}
    for entry in sorted(entries, key=lambda e: e.start_time):
        key = entry.start_time.astimezone(UTC).date().isoformat()
        days.setdefault(key, []).append(entry)

    trends = []
    for day, runs in days.items():
        rates = [r.processing_rate for r in runs if r.processing_rate]
        successful = sum(1 for r in runs if r.status is HistoryStatus.COMPLETED)
        trends.append(
            MigrationTrend(
                date=day,
                migrations=len(runs),
                items_processed=sum(r.total_items for r in runs),
                success_rate=successful / len(runs) * 100,
                average_rate=sum(rates) / len(rates) if rates else 0.0,
            )
        )
    return trends


@runtime_checkable
class MigrationHistoryRepository(Protocol):
    """
    Protocol for run history persistence.

    Implementations store one entry per run. Unknown run ids raise
    ``DocumentNotFoundError`` on update.
    """

    async def start(
        self,
        migration_type: str,
        migration_name: str,
        total_items: int,
        batch_size: int,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """Record a new running entry and return its id."""
        ...

    async def update_progress(
        self,
        run_id: UUID,
        *,
        successful_items: int | None = None,
        error_items: int | None = None,
        skipped_items: int | None = None,
        processing_rate: float | None = None,
    ) -> None:
        """Update counters of a running entry; None leaves a value unchanged."""
        ...

    async def complete(
        self,
        run_id: UUID,
        status: HistoryStatus,
        error_details: list[str] | None = None,
    ) -> None:
        """Finish an entry with a terminal status."""
        ...

    async def get(self, run_id: UUID) -> MigrationHistoryEntry | None:
        """Fetch one entry."""
        ...

    async def get_history(
        self,
        limit: int = 50,
        migration_type: str | None = None,
    ) -> list[MigrationHistoryEntry]:
        """Most recent entries first."""
        ...

    async def get_summary(self) -> MigrationSummary:
        """Aggregate statistics over all entries."""
        ...

    async def get_trends(self, days: int = 30) -> list[MigrationTrend]:
        """Daily trends for runs started in the last ``days`` days."""
        ...

    async def cleanup_old(self, days_to_keep: int = 90) -> int:
        """Delete entries started before the cutoff. Returns the count."""
        ...


def _require_terminal(status: HistoryStatus) -> None:
    if not status.is_terminal:
        raise ValueError(f"Cannot complete a run with status {status.value}")


class InMemoryMigrationHistoryRepository:
    """
    In-memory implementation of MigrationHistoryRepository.

    Example:
        >>> repo = InMemoryMigrationHistoryRepository()
        >>> run_id = await repo.start("chats", "Chat Companies", 120, 10)
        >>> await repo.complete(run_id, HistoryStatus.COMPLETED)
    """

    def __init__(self, *, now: Callable[[], datetime] | None = None) -> None:
        self._entries: dict[UUID, MigrationHistoryEntry] = {}
        self._now = now or (lambda: datetime.now(UTC))

    async def start(
        self,
        migration_type: str,
        migration_name: str,
        total_items: int,
        batch_size: int,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        entry = MigrationHistoryEntry(
            migration_type=migration_type,
            migration_name=migration_name,
            start_time=self._now(),
            total_items=total_items,
            batch_size=batch_size,
            metadata=metadata or {},
        )
        self._entries[entry.id] = entry
        return entry.id

    async def update_progress(
        self,
        run_id: UUID,
        *,
        successful_items: int | None = None,
        error_items: int | None = None,
        skipped_items: int | None = None,
        processing_rate: float | None = None,
    ) -> None:
        updates = {
            name: value
            for name, value in (
                ("successful_items", successful_items),
                ("error_items", error_items),
                ("skipped_items", skipped_items),
                ("processing_rate", processing_rate),
            )
            if value is not None
        }
        self._entries[run_id] = self._existing(run_id).model_copy(update=updates)

    async def complete(
        self,
        run_id: UUID,
        status: HistoryStatus,
        error_details: list[str] | None = None,
    ) -> None:
        _require_terminal(status)
        updates: dict[str, Any] = {"status": status, "end_time": self._now()}
        if error_details:
            updates["error_details"] = list(error_details)
        self._entries[run_id] = self._existing(run_id).model_copy(update=updates)

    async def get(self, run_id: UUID) -> MigrationHistoryEntry | None:
        return self._entries.get(run_id)

    async def get_history(
        self,
        limit: int = 50,
        migration_type: str | None = None,
    ) -> list[MigrationHistoryEntry]:
        entries = [
            e
            for e in self._entries.values()
            if migration_type is None or e.migration_type == migration_type
        ]
        entries.sort(key=lambda e: e.start_time, reverse=True)
        return entries[:limit]

    async def get_summary(self) -> MigrationSummary:
        return summarize(list(self._entries.values()))

    async def get_trends(self, days: int = 30) -> list[MigrationTrend]:
        since = self._now() - timedelta(days=days)
        return compute_trends([e for e in self._entries.values() if e.start_time >= since])

    async def cleanup_old(self, days_to_keep: int = 90) -> int:
        cutoff = self._now() - timedelta(days=days_to_keep)
        old = [run_id for run_id, e in self._entries.items() if e.start_time < cutoff]
        for run_id in old:
            del self._entries[run_id]
        return len(old)

    def clear(self) -> None:
        self._entries.clear()

    def _existing(self, run_id: UUID) -> MigrationHistoryEntry:
        entry = self._entries.get(run_id)
        if entry is None:
            raise DocumentNotFoundError(HISTORY_COLLECTION, str(run_id))
        return entry


_SELECT_COLUMNS = """
    id, migration_type, migration_name, start_time, end_time, status,
    total_items, successful_items, error_items, skipped_items, batch_size,
    processing_rate, error_details, metadata
"""


class PostgreSQLMigrationHistoryRepository:
    """
    PostgreSQL implementation of MigrationHistoryRepository.

    Persists entries to the ``migration_history`` table using SQLAlchemy
    ``text()`` queries. Summaries and trends are computed from the
    fetched rows.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> repo = PostgreSQLMigrationHistoryRepository(engine)
        >>> await repo.initialize()
        >>> run_id = await repo.start("chats", "Chat Companies", 120, 10)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def initialize(self) -> None:
        """Create the table and indexes if they do not exist."""
        async with execute_with_connection(self._conn, transactional=True) as conn:
            for statement in MIGRATION_HISTORY_SCHEMA.split(";"):
                if statement.strip():
                    await conn.execute(text(statement))
        logger.info("Initialized migration_history schema")

    async def start(
        self,
        migration_type: str,
        migration_name: str,
        total_items: int,
        batch_size: int,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        with self._tracer.span(
            "tenantfill.history_repo.start",
            {ATTR_JOB_ID: migration_type, ATTR_DB_SYSTEM: "postgresql"},
        ):
            run_id = uuid4()
            query = text("""
                INSERT INTO migration_history (
                    id, migration_type, migration_name, start_time, status,
                    total_items, successful_items, error_items, skipped_items,
                    batch_size, metadata
                ) VALUES (
                    :id, :migration_type, :migration_name, :start_time, :status,
                    :total_items, 0, 0, 0, :batch_size, :metadata
                )
            """)
            params = {
                "id": run_id,
                "migration_type": migration_type,
                "migration_name": migration_name,
                "start_time": datetime.now(UTC),
                "status": HistoryStatus.RUNNING.value,
                "total_items": total_items,
                "batch_size": batch_size,
                "metadata": json_dumps(metadata) if metadata else None,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)
            return run_id

    async def update_progress(
        self,
        run_id: UUID,
        *,
        successful_items: int | None = None,
        error_items: int | None = None,
        skipped_items: int | None = None,
        processing_rate: float | None = None,
    ) -> None:
        with self._tracer.span(
            "tenantfill.history_repo.update_progress",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE migration_history SET
                    successful_items = COALESCE(:successful_items, successful_items),
                    error_items = COALESCE(:error_items, error_items),
                    skipped_items = COALESCE(:skipped_items, skipped_items),
                    processing_rate = COALESCE(:processing_rate, processing_rate)
                WHERE id = :id
            """)
            params = {
                "id": run_id,
                "successful_items": successful_items,
                "error_items": error_items,
                "skipped_items": skipped_items,
                "processing_rate": processing_rate,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
            if result.rowcount == 0:
                raise DocumentNotFoundError(HISTORY_COLLECTION, str(run_id))

    async def complete(
        self,
        run_id: UUID,
        status: HistoryStatus,
        error_details: list[str] | None = None,
    ) -> None:
        _require_terminal(status)
        with self._tracer.span(
            "tenantfill.history_repo.complete",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE migration_history SET
                    end_time = :end_time,
                    status = :status,
                    error_details = COALESCE(:error_details, error_details)
                WHERE id = :id
            """)
            params = {
                "id": run_id,
                "end_time": datetime.now(UTC),
                "status": status.value,
                "error_details": json_dumps(error_details) if error_details else None,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
            if result.rowcount == 0:
                raise DocumentNotFoundError(HISTORY_COLLECTION, str(run_id))

    async def get(self, run_id: UUID) -> MigrationHistoryEntry | None:
        with self._tracer.span(
            "tenantfill.history_repo.get",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_SELECT_COLUMNS} FROM migration_history WHERE id = :id")  # nosec B608
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"id": run_id})
                row = result.fetchone()
            if row is None:
                return None
            return self._row_to_entry(row)

    async def get_history(
        self,
        limit: int = 50,
        migration_type: str | None = None,
    ) -> list[MigrationHistoryEntry]:
        with self._tracer.span(
            "tenantfill.history_repo.get_history",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            params: dict[str, Any] = {"limit": limit}
            where_clause = ""
            if migration_type:
                where_clause = "WHERE migration_type = :migration_type"
                params["migration_type"] = migration_type

            # where_clause is one of two hardcoded strings
            query = text(f"""
                SELECT {_SELECT_COLUMNS}
                FROM migration_history
                {where_clause}
                ORDER BY start_time DESC
                LIMIT :limit
            """)  # nosec B608 - no user input in SQL construction

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, params)
                rows = result.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def get_summary(self) -> MigrationSummary:
        with self._tracer.span(
            "tenantfill.history_repo.get_summary",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_SELECT_COLUMNS} FROM migration_history")  # nosec B608
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query)
                rows = result.fetchall()
            return summarize([self._row_to_entry(row) for row in rows])

    async def get_trends(self, days: int = 30) -> list[MigrationTrend]:
        with self._tracer.span(
            "tenantfill.history_repo.get_trends",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                SELECT {_SELECT_COLUMNS}
                FROM migration_history
                WHERE start_time >= :since
                ORDER BY start_time ASC
            """)  # nosec B608
            since = datetime.now(UTC) - timedelta(days=days)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"since": since})
                rows = result.fetchall()
            return compute_trends([self._row_to_entry(row) for row in rows])

    async def cleanup_old(self, days_to_keep: int = 90) -> int:
        with self._tracer.span(
            "tenantfill.history_repo.cleanup_old",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("DELETE FROM migration_history WHERE start_time < :cutoff")
            cutoff = datetime.now(UTC) - timedelta(days=days_to_keep)
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, {"cutoff": cutoff})
            deleted = int(result.rowcount or 0)
            if deleted:
                logger.info("Deleted %d history entries older than %d days", deleted, days_to_keep)
            return deleted

    def _row_to_entry(self, row: Sequence[Any]) -> MigrationHistoryEntry:
        """
        Convert a database row to a MigrationHistoryEntry.

        JSONB columns may arrive as strings or already decoded depending
        on the driver.
        """
        error_details = row[12]
        if isinstance(error_details, str):
            error_details = json_loads(error_details)
        metadata = row[13]
        if isinstance(metadata, str):
            metadata = json_loads(metadata)

        return MigrationHistoryEntry(
            id=row[0],
            migration_type=row[1],
            migration_name=row[2],
            start_time=row[3],
            end_time=row[4],
            status=HistoryStatus(row[5]),
            total_items=row[6],
            successful_items=row[7],
            error_items=row[8],
            skipped_items=row[9],
            batch_size=row[10],
            processing_rate=row[11],
            error_details=error_details or [],
            metadata=metadata or {},
        )


__all__ = [
    "HISTORY_COLLECTION",
    "MIGRATION_HISTORY_SCHEMA",
    "HistoryStatus",
    "InMemoryMigrationHistoryRepository",
    "MigrationHistoryEntry",
    "MigrationHistoryRepository",
    "MigrationSummary",
    "MigrationTrend",
    "PostgreSQLMigrationHistoryRepository",
    "compute_trends",
    "summarize",
]
