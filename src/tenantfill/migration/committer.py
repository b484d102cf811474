"""
Per-page staging and atomic commit of owner updates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tenantfill.exceptions import BatchWriteError
from tenantfill.migration.exceptions import CommitError, DuplicateMutationError
from tenantfill.migration.models import Resolution
from tenantfill.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_COLLECTION,
    ATTR_JOB_ID,
    ATTR_MUTATION_COUNT,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """
    Result of a commit.

    Attributes:
        committed_count: Mutations written (0 for an empty page)
        batch_number: Page the mutations belonged to, None if nothing was staged
    """

    committed_count: int
    batch_number: int | None = None

    @property
    def written(self) -> bool:
        """True if an atomic write was actually issued."""
        return self.committed_count > 0


class BatchCommitter:
    """
    Accumulates the updates of one page and writes them in one batch.

    Each staged mutation is extended with provenance fields recording
    where the owner came from. Staging the same record twice before a
    commit is refused. A commit with nothing staged never reaches the
    store.

    Example:
        >>> committer = BatchCommitter(store, "chats", job_id="chats")
        >>> committer.stage_update("chat-1", {"company_id": "CO-1"}, resolution=r, batch_number=3)
        >>> (await committer.commit()).committed_count
        1
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        job_id: str,
        now: Callable[[], datetime] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._collection = collection
        self._job_id = job_id
        self._now = now or (lambda: datetime.now(UTC))
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._staged: dict[str, dict[str, Any]] = {}
        self._batch_number: int | None = None

    @property
    def pending(self) -> int:
        """Number of staged mutations."""
        return len(self._staged)

    @property
    def staged(self) -> list[tuple[str, dict[str, Any]]]:
        return [(record_id, dict(fields)) for record_id, fields in self._staged.items()]

    def stage_update(
        self,
        record_id: str,
        mutation: Mapping[str, Any],
        *,
        resolution: Resolution,
        batch_number: int,
    ) -> dict[str, Any]:
        """
        Stage an update for one record.

        Args:
            record_id: Target record id
            mutation: Fields to set (the owner field)
            resolution: Where the owner came from
            batch_number: Page the record belongs to

        Returns:
            The full staged mutation including provenance fields

        Raises:
            DuplicateMutationError: If the record is already staged
        """
        if record_id in self._staged:
            raise DuplicateMutationError(record_id, batch_number, job_id=self._job_id)

        fields = dict(mutation)
        fields.update(
            {
                "migration_source": self._job_id,
                "migration_owner_id": resolution.owner_id,
                "migration_reference_id": resolution.reference_id,
                "migration_resolver_index": resolution.resolver_index,
                "migration_candidates_checked": resolution.candidates_checked,
                "migration_batch": batch_number,
                "migration_timestamp": self._now(),
            }
        )
        self._staged[record_id] = fields
        self._batch_number = batch_number
        return dict(fields)

    async def commit(self) -> CommitResult:
        """
        Write every staged mutation in one atomic batch.

        Staged mutations are cleared whether the write succeeds or not.

        Raises:
            CommitError: If the store rejected the batch. Nothing was
                applied; the rejected mutations are on the exception.
        """
        if not self._staged:
            logger.warning("No updates to commit for %s", self._collection)
            return CommitResult(committed_count=0)

        mutations = self.staged
        batch_number = self._batch_number if self._batch_number is not None else 0
        self.discard()
        return await self._write(batch_number, mutations)

    async def replay(
        self,
        batch_number: int,
        mutations: Sequence[tuple[str, Mapping[str, Any]]],
    ) -> CommitResult:
        """
        Re-issue mutations from an earlier failed commit.

        Provenance fields are written as they were originally staged.

        Raises:
            CommitError: If the store rejected the batch again
        """
        if not mutations:
            return CommitResult(committed_count=0, batch_number=batch_number)
        return await self._write(
            batch_number, [(record_id, dict(fields)) for record_id, fields in mutations]
        )

    def discard(self) -> list[tuple[str, dict[str, Any]]]:
        """Drop everything staged and return it."""
        dropped = self.staged
        self._staged.clear()
        self._batch_number = None
        return dropped

    async def _write(
        self,
        batch_number: int,
        mutations: list[tuple[str, dict[str, Any]]],
    ) -> CommitResult:
        with self._tracer.span(
            "tenantfill.committer.commit",
            {
                ATTR_COLLECTION: self._collection,
                ATTR_JOB_ID: self._job_id,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_MUTATION_COUNT: len(mutations),
            },
        ):
            try:
                await self._store.atomic_batch_write(self._collection, mutations)
            except BatchWriteError as e:
                logger.error(
                    "Commit of batch %d to %s failed: %s",
                    batch_number,
                    self._collection,
                    e,
                )
                raise CommitError(batch_number, mutations, str(e), job_id=self._job_id) from e

        logger.info(
            "Committed %d updates to %s (batch %d)",
            len(mutations),
            self._collection,
            batch_number,
        )
        return CommitResult(committed_count=len(mutations), batch_number=batch_number)


__all__ = ["BatchCommitter", "CommitResult"]
