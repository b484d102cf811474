"""
First-match owner resolution.

A source record lists candidate identifiers in priority order (for a
chat, its participants). OwnerResolver walks them in that order, looks
each one up in the reference collection and returns the owner of the
first reference record whose owner field validates. Later candidates are
never consulted once a match is found, so candidate order decides the
result.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from tenantfill.exceptions import StoreError
from tenantfill.migration.cache import ReadThroughCache
from tenantfill.migration.models import LogStatus, ReferenceRecord, Resolution
from tenantfill.migration.retry import LinearBackoffRetryPolicy, RetryPolicy, retry_read
from tenantfill.migration.stats import AuditLog, StatsAggregator
from tenantfill.migration.validation import (
    DEFAULT_MIN_LENGTH,
    DEFAULT_OWNER_FIELD,
    classify_candidate,
    validate_owner_field,
)
from tenantfill.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_CANDIDATE_COUNT,
    ATTR_COLLECTION,
    ATTR_DOCUMENT_ID,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import DocumentStore

logger = logging.getLogger(__name__)


class OwnerResolver:
    """
    Resolves a record's owner from its ordered candidate identifiers.

    Lookups go through the read-through cache unless ``cache_enabled`` is
    switched off, in which case every candidate is read from the store.
    Counters are updated on the shared StatsAggregator and every step is
    written to the AuditLog.

    Example:
        >>> resolver = OwnerResolver(store, cache, stats, audit)
        >>> resolution = await resolver.resolve(["u1", "u2"], subject_id="chat-1", batch_number=1)
        >>> resolution.owner_id if resolution else None
        'CO-1'
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: ReadThroughCache,
        stats: StatsAggregator,
        audit: AuditLog,
        *,
        reference_collection: str = "iboard_users",
        owner_field: str = DEFAULT_OWNER_FIELD,
        min_owner_length: int = DEFAULT_MIN_LENGTH,
        retry_policy: RetryPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._cache = cache
        self._stats = stats
        self._audit = audit
        self._reference_collection = reference_collection
        self._owner_field = owner_field
        self._min_owner_length = min_owner_length
        self._retry_policy = retry_policy or LinearBackoffRetryPolicy()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.cache_enabled = True

    async def resolve(
        self,
        candidates: Sequence[Any],
        *,
        subject_id: str,
        batch_number: int,
    ) -> Resolution | None:
        """
        Find the first candidate whose reference record carries a valid owner.

        Args:
            candidates: Candidate identifiers in priority order, raw values
            subject_id: Id of the record being resolved (for the audit log)
            batch_number: Page number (for the audit log)

        Returns:
            Resolution for the first valid match, or None if every
            candidate was rejected, missing or ownerless.
        """
        with self._tracer.span(
            "tenantfill.resolver.resolve",
            {
                ATTR_DOCUMENT_ID: subject_id,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_CANDIDATE_COUNT: len(candidates),
            },
        ):
            self._audit.record(
                subject_id,
                LogStatus.SUCCESS,
                f"Batch {batch_number}: Starting candidate validation for "
                f"{len(candidates)} candidates",
                batch_number=batch_number,
            )

            visited = 0
            for index, candidate in enumerate(candidates):
                visited = index + 1
                resolution = await self._check_candidate(
                    index, candidate, subject_id=subject_id, batch_number=batch_number
                )
                if resolution is not None:
                    self._stats.increment(total_candidates_checked=visited)
                    return resolution

            self._stats.increment(no_valid_candidate_found=1, total_candidates_checked=visited)
            self._audit.record(
                subject_id,
                LogStatus.ERROR,
                f"Batch {batch_number}: All {visited} candidates checked - "
                f"no reference with valid {self._owner_field} found",
                batch_number=batch_number,
                candidates_checked=visited,
            )
            logger.debug("No valid candidate for %s after %d checks", subject_id, visited)
            return None

    async def _check_candidate(
        self,
        index: int,
        candidate: Any,
        *,
        subject_id: str,
        batch_number: int,
    ) -> Resolution | None:
        check = classify_candidate(candidate)
        if not check.is_valid:
            if check.is_wrong_type:
                self._stats.increment(validation_errors=1)
            self._audit.record(
                subject_id,
                LogStatus.VALIDATION,
                f"Batch {batch_number}: Invalid candidate at index {index} - {check.reason}",
                batch_number=batch_number,
                candidate_index=index,
                issue=check.issue.value,
            )
            return None

        reference_id: str = check.value
        try:
            reference = await self.lookup(reference_id)
        except StoreError as e:
            logger.error(
                "Lookup of %s/%s failed for %s: %s",
                self._reference_collection,
                reference_id,
                subject_id,
                e,
            )
            self._audit.record(
                subject_id,
                LogStatus.ERROR,
                f"Batch {batch_number}: Lookup failed for candidate {reference_id} "
                f"at index {index}: {e}",
                batch_number=batch_number,
                candidate_index=index,
                reference_id=reference_id,
            )
            return None

        if reference is None:
            logger.warning(
                "Candidate %s not found in %s (record %s, index %d)",
                reference_id,
                self._reference_collection,
                subject_id,
                index,
            )
            self._audit.record(
                subject_id,
                LogStatus.WARNING,
                f"Batch {batch_number}: Candidate {reference_id} not found in "
                f"{self._reference_collection} at index {index} - continuing to next index",
                batch_number=batch_number,
                candidate_index=index,
                reference_id=reference_id,
            )
            return None

        self._stats.increment(valid_users_found=1)
        owner = validate_owner_field(
            reference.raw_fields, self._owner_field, min_length=self._min_owner_length
        )

        if owner.is_valid:
            self._stats.increment(users_with_owner=1)
            self._audit.record(
                subject_id,
                LogStatus.SUCCESS,
                f"Batch {batch_number}: Found reference with valid {self._owner_field} "
                f"at index {index} - stopping further checks",
                batch_number=batch_number,
                candidate_index=index,
                reference_id=reference.id,
                owner_id=owner.value,
            )
            return Resolution(
                owner_id=owner.value,
                resolver_index=index,
                candidates_checked=index + 1,
                reference_id=reference.id,
            )

        self._stats.increment(users_without_owner=1)
        if not owner.has_property:
            self._stats.increment(data_integrity_issues=1)
        elif owner.is_wrong_type:
            self._stats.increment(validation_errors=1)
        self._audit.record(
            subject_id,
            LogStatus.VALIDATION,
            f"Batch {batch_number}: Reference {reference.id} at index {index} has no valid "
            f"{self._owner_field} - {owner.reason}",
            batch_number=batch_number,
            candidate_index=index,
            reference_id=reference.id,
            issue=owner.issue.value,
        )
        return None

    async def lookup(self, reference_id: str) -> ReferenceRecord | None:
        """
        Read a reference record, through the cache when enabled.

        Store errors are retried as the retry policy allows.

        Raises:
            StoreError: If the store read still fails
        """

        async def load() -> ReferenceRecord | None:
            with self._tracer.span(
                "tenantfill.resolver.lookup",
                {ATTR_COLLECTION: self._reference_collection, ATTR_DOCUMENT_ID: reference_id},
            ):
                document = await retry_read(
                    lambda: self._store.get_by_id(self._reference_collection, reference_id),
                    self._retry_policy,
                    f"Lookup of {self._reference_collection}/{reference_id}",
                )
            if document is None:
                return None
            return ReferenceRecord.from_document(document, owner_field=self._owner_field)

        if not self.cache_enabled:
            return await load()
        return await self._cache.get_or_load(
            f"{self._reference_collection}:{reference_id}",
            load,
            tags=(self._reference_collection,),
        )


__all__ = ["OwnerResolver"]
