"""
MigrationEngine - drives one backfill job page by page.

The engine owns the scan cursor, the run statistics, the audit log and
the run state machine. Operators (or ``process_all``) call
``process_next_page`` repeatedly; each call fetches one page, resolves
an owner for every record that lacks a valid one, commits the page's
updates in one atomic write and publishes a stats snapshot.

State machine:
    IDLE -> RUNNING (page in flight)
    RUNNING -> IDLE (page done, more data)
    RUNNING -> COMPLETED (cursor exhausted)
    RUNNING -> ERROR (commit failure or unexpected page error)
    any -> IDLE (reset, not while a page is in flight)

Commit failures: the cursor has already moved past the failed page. The
page's mutations are kept in ``failed_pages`` and are only written again
when an operator calls ``retry_failed_pages``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator, Callable
from typing import Any
from uuid import UUID

from tenantfill.migration.cache import CacheStats, ReadThroughCache
from tenantfill.migration.committer import BatchCommitter
from tenantfill.migration.config import CacheConfig, EngineConfig, JobConfig
from tenantfill.migration.exceptions import CommitError, EngineStateError, IssueCategory
from tenantfill.migration.history import HistoryStatus, MigrationHistoryRepository
from tenantfill.migration.models import (
    BatchCursor,
    EngineState,
    FailedPage,
    LogEntry,
    LogStatus,
    PageResult,
    SourceRecord,
    StatsSnapshot,
)
from tenantfill.migration.pager import PageFetcher
from tenantfill.migration.resolver import OwnerResolver
from tenantfill.migration.retry import LinearBackoffRetryPolicy
from tenantfill.migration.stats import AuditLog, StatsAggregator
from tenantfill.migration.toggles import SettingToggles
from tenantfill.migration.validation import validate_owner_field
from tenantfill.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_COLLECTION,
    ATTR_ERROR_TYPE,
    ATTR_JOB_ID,
    ATTR_PAGE_SIZE,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import DocumentStore

logger = logging.getLogger(__name__)

StatsHandler = Callable[[StatsSnapshot], None]

SYSTEM_SUBJECT = "system"

_STAGED = "staged"
_SKIPPED = "skipped"
_ERROR = "error"


class MigrationEngine:
    """
    Backfills a job's owner field across its target collection.

    Example:
        >>> engine = MigrationEngine(store, get_job("chats"))
        >>> await engine.count_total()
        >>> result = await engine.process_next_page()
        >>> result.updated
        7
        >>> final = await engine.process_all()
        >>> final.updated_items

    Subscribe to stats either with a callback or a stream:
        >>> unsubscribe = engine.on_stats_update(print)
        >>> async for snapshot in engine.stream_stats():
        ...     render(snapshot)
    """

    def __init__(
        self,
        store: DocumentStore,
        job: JobConfig,
        *,
        config: EngineConfig | None = None,
        cache: ReadThroughCache | None = None,
        cache_config: CacheConfig | None = None,
        toggles: SettingToggles | None = None,
        history: MigrationHistoryRepository | None = None,
        clock: Callable[[], float] = time.monotonic,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Document store holding the target and reference collections
            job: Job to run (must have a candidates field)
            config: Paging, throttle and log limits
            cache: Shared read-through cache (a new one is created if None)
            cache_config: Bounds for a newly created cache
            toggles: Setting toggles; ``cache_enabled`` switches the cache
            history: Optional repository recording ``process_all`` runs
            clock: Monotonic time source for rates and cache ages
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        if not job.is_runnable:
            raise ValueError(f"Job {job.job_id} has no candidates field and cannot be run")

        self._store = store
        self._job = job
        self._config = config or EngineConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._history = history

        self._stats = StatsAggregator(clock=clock)
        self._audit = AuditLog(max_entries=self._config.log_capacity)
        self._cache = cache or ReadThroughCache(cache_config, clock=clock)
        self._toggles = toggles or SettingToggles(
            store, collection=self._config.settings_collection
        )
        read_retry = LinearBackoffRetryPolicy(
            max_retries=self._config.read_retries, delay=self._config.read_retry_delay
        )
        self._resolver = OwnerResolver(
            store,
            self._cache,
            self._stats,
            self._audit,
            reference_collection=job.reference_collection,
            owner_field=job.owner_field,
            min_owner_length=self._config.min_owner_length,
            retry_policy=read_retry,
            tracer=self._tracer,
        )
        self._fetcher = PageFetcher(store, job, retry_policy=read_retry, tracer=self._tracer)
        self._committer = BatchCommitter(
            store,
            job.target_collection,
            job_id=job.job_id,
            tracer=self._tracer,
        )

        self._cursor = BatchCursor(page_size=self._config.page_size)
        self._state = EngineState.IDLE
        self._pause_requested = asyncio.Event()
        self._failed_pages: list[FailedPage] = []
        self._last_error: str | None = None
        self._handlers: list[StatsHandler] = []
        self._streams: set[asyncio.Queue[StatsSnapshot]] = set()
        self._history_run_id: UUID | None = None
        self._generation = 0

    # -- Properties -----------------------------------------------------

    @property
    def job(self) -> JobConfig:
        return self._job

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def cursor(self) -> BatchCursor:
        """Copy of the current scan position."""
        return BatchCursor(
            last_seen_key=self._cursor.last_seen_key,
            page_size=self._cursor.page_size,
            exhausted=self._cursor.exhausted,
        )

    @property
    def cache(self) -> ReadThroughCache:
        return self._cache

    @property
    def toggles(self) -> SettingToggles:
        return self._toggles

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def failed_pages(self) -> tuple[FailedPage, ...]:
        """Pages whose commit failed and that have not been retried successfully."""
        return tuple(self._failed_pages)

    @property
    def is_paused(self) -> bool:
        return self._pause_requested.is_set()

    def snapshot(self) -> StatsSnapshot:
        return self._stats.snapshot()

    # -- Page processing --------------------------------------------------

    async def process_next_page(self) -> PageResult:
        """
        Process one page of the target collection.

        Returns:
            PageResult for the page. When the scan is already exhausted
            the result is empty and the engine stays COMPLETED.

        Raises:
            EngineStateError: If a page is already in flight
            CommitError: If the page's atomic write failed. The page is
                queued in ``failed_pages`` and the engine moves to ERROR.
        """
        if not (self._state.can_process or self._state is EngineState.COMPLETED):
            raise EngineStateError(self._state, "process next page", job_id=self._job.job_id)

        if self._state is EngineState.COMPLETED or self._cursor.exhausted:
            self._state = EngineState.COMPLETED
            self._audit.record(SYSTEM_SUBJECT, LogStatus.SUCCESS, "No more data to process")
            logger.info("Job %s: no more data to process", self._job.job_id)
            return PageResult(batch_number=0, is_last_page=True, stats=self.snapshot())

        self._state = EngineState.RUNNING
        try:
            result = await self._run_page()
        except CommitError as e:
            self._handle_commit_failure(e)
            raise
        except Exception as e:
            self._state = EngineState.ERROR
            self._last_error = str(e)
            self._audit.record(
                SYSTEM_SUBJECT,
                LogStatus.ERROR,
                f"Error processing batch: {e}",
                error_type=type(e).__name__,
            )
            logger.exception("Job %s: page processing failed", self._job.job_id)
            self._publish()
            raise

        self._state = EngineState.COMPLETED if self._cursor.exhausted else EngineState.IDLE
        self._last_error = None
        self._publish()
        return result

    async def _run_page(self) -> PageResult:
        batch_number = self._stats.stats.current_batch + 1

        with self._tracer.span(
            "tenantfill.engine.process_page",
            {
                ATTR_JOB_ID: self._job.job_id,
                ATTR_COLLECTION: self._job.target_collection,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_PAGE_SIZE: self._cursor.page_size,
            },
        ):
            self._resolver.cache_enabled = self._toggles.is_enabled("cache_enabled")
            self._audit.record(
                SYSTEM_SUBJECT,
                LogStatus.SUCCESS,
                f"Starting batch {batch_number} - processing up to "
                f"{self._cursor.page_size} records",
                batch_number=batch_number,
            )

            page = await self._fetcher.next_page(self._cursor)
            self._cursor = page.new_cursor

            if page.is_empty:
                self._audit.record(
                    SYSTEM_SUBJECT,
                    LogStatus.SUCCESS,
                    f"Batch {batch_number}: No more records found - migration complete",
                    batch_number=batch_number,
                )
                return PageResult(batch_number=batch_number, is_last_page=True, stats=self.snapshot())

            outcomes: Counter[str] = Counter()
            for record in page.records:
                outcomes[await self._process_record(record, batch_number)] += 1

            page_counts = {
                "processed_items": len(page.records),
                "skipped_items": outcomes[_SKIPPED],
                "error_items": outcomes[_ERROR],
                "current_batch": 1,
            }
            try:
                commit = await self._committer.commit()
            except CommitError:
                self._stats.increment(**page_counts)
                raise

            self._stats.increment(updated_items=commit.committed_count, **page_counts)
            if commit.written:
                self._audit.record(
                    SYSTEM_SUBJECT,
                    LogStatus.SUCCESS,
                    f"Batch {batch_number}: Successfully committed {commit.committed_count} updates",
                    batch_number=batch_number,
                )
            else:
                self._audit.record(
                    SYSTEM_SUBJECT,
                    LogStatus.WARNING,
                    f"Batch {batch_number}: No updates to commit",
                    batch_number=batch_number,
                )

            if page.is_last_page:
                self._audit.record(
                    SYSTEM_SUBJECT,
                    LogStatus.SUCCESS,
                    f"Batch {batch_number}: Reached end of collection - no more data to process",
                    batch_number=batch_number,
                )

            result = PageResult(
                batch_number=batch_number,
                fetched=len(page.records),
                processed=len(page.records),
                updated=commit.committed_count,
                skipped=outcomes[_SKIPPED],
                errors=outcomes[_ERROR],
                committed=commit.written,
                is_last_page=page.is_last_page,
                stats=self.snapshot(),
            )
            self._audit.record(
                SYSTEM_SUBJECT,
                LogStatus.SUCCESS,
                f"Batch {batch_number} completed: Processed {result.processed}, "
                f"Updated {result.updated}, Skipped {result.skipped}, Errors {result.errors}",
                batch_number=batch_number,
            )
            logger.info(
                "Job %s batch %d: processed=%d updated=%d skipped=%d errors=%d",
                self._job.job_id,
                batch_number,
                result.processed,
                result.updated,
                result.skipped,
                result.errors,
            )
            return result

    async def _process_record(self, record: SourceRecord, batch_number: int) -> str:
        """Handle one record. Never raises; returns the record's outcome."""
        owner_field = self._job.owner_field
        candidates_field = self._job.candidates_field
        try:
            current = validate_owner_field(
                record.raw_fields, owner_field, min_length=self._config.min_owner_length
            )
            self._audit.record(
                record.id,
                LogStatus.VALIDATION,
                f"Batch {batch_number}: Record validation - {current.reason}",
                batch_number=batch_number,
                issue=current.issue.value,
            )
            if current.is_valid:
                self._audit.record(
                    record.id,
                    LogStatus.SKIPPED,
                    f"Batch {batch_number}: Record already has valid {owner_field}: "
                    f"{current.value}",
                    batch_number=batch_number,
                    owner_id=current.value,
                )
                return _SKIPPED
            if current.is_wrong_type:
                self._stats.increment(validation_errors=1)

            if candidates_field not in record.raw_fields:
                self._stats.increment(data_integrity_issues=1)
                return self._record_error(
                    record.id,
                    batch_number,
                    f"Record missing '{candidates_field}' property",
                    IssueCategory.DATA_INTEGRITY_ISSUE,
                )
            if record.owner_candidates is None:
                self._stats.increment(data_integrity_issues=1)
                raw = record.raw_fields[candidates_field]
                return self._record_error(
                    record.id,
                    batch_number,
                    f"'{candidates_field}' property is not a list (type: {type(raw).__name__})",
                    IssueCategory.DATA_INTEGRITY_ISSUE,
                )
            if not record.owner_candidates:
                return self._record_error(
                    record.id,
                    batch_number,
                    f"'{candidates_field}' list is empty",
                    IssueCategory.NO_VALID_CANDIDATE,
                )

            self._audit.record(
                record.id,
                LogStatus.SUCCESS,
                f"Batch {batch_number}: Found {len(record.owner_candidates)} candidates - "
                "starting resolution",
                batch_number=batch_number,
            )
            resolution = await self._resolver.resolve(
                record.owner_candidates, subject_id=record.id, batch_number=batch_number
            )
            if resolution is None:
                self._audit.record(
                    record.id,
                    LogStatus.SKIPPED,
                    f"Batch {batch_number}: No candidate with valid {owner_field} found",
                    batch_number=batch_number,
                )
                return _SKIPPED

            final = validate_owner_field(
                {owner_field: resolution.owner_id},
                owner_field,
                min_length=self._config.min_owner_length,
            )
            if not final.is_valid:
                self._stats.increment(validation_errors=1)
                return self._record_error(
                    record.id,
                    batch_number,
                    f"Final validation failed for {owner_field}: {final.reason}",
                    IssueCategory.VALIDATION_ERROR,
                )

            self._committer.stage_update(
                record.id,
                {owner_field: final.value},
                resolution=resolution,
                batch_number=batch_number,
            )
            self._audit.record(
                record.id,
                LogStatus.SUCCESS,
                f"Batch {batch_number}: Record will be updated with {owner_field}: "
                f"{final.value} (from {resolution.reference_id} at index "
                f"{resolution.resolver_index})",
                batch_number=batch_number,
                owner_id=final.value,
                reference_id=resolution.reference_id,
                resolver_index=resolution.resolver_index,
                candidates_checked=resolution.candidates_checked,
            )
            return _STAGED
        except Exception as e:
            logger.debug("Job %s: error processing %s", self._job.job_id, record.id, exc_info=True)
            self._stats.increment(data_integrity_issues=1)
            return self._record_error(
                record.id,
                batch_number,
                f"Error processing record: {e}",
                IssueCategory.DATA_INTEGRITY_ISSUE,
            )

    def _record_error(
        self,
        record_id: str,
        batch_number: int,
        message: str,
        category: IssueCategory,
    ) -> str:
        logger.log(category.log_level, "Job %s: %s: %s", self._job.job_id, record_id, message)
        self._audit.record(
            record_id,
            LogStatus.ERROR,
            f"Batch {batch_number}: {message}",
            batch_number=batch_number,
            category=category.value,
        )
        return _ERROR

    def _handle_commit_failure(self, error: CommitError) -> None:
        failed = FailedPage(
            batch_number=error.batch_number,
            record_ids=tuple(error.record_ids),
            mutations=tuple(error.mutations),
            error=error.original_error,
        )
        self._failed_pages.append(failed)
        self._state = EngineState.ERROR
        self._last_error = str(error)
        self._audit.record(
            SYSTEM_SUBJECT,
            LogStatus.ERROR,
            f"Batch {error.batch_number}: Commit failed for {len(failed.record_ids)} records: "
            f"{error.original_error}",
            batch_number=error.batch_number,
            record_ids=list(failed.record_ids),
            category=error.category.value if error.category else None,
        )
        with self._tracer.span(
            "tenantfill.engine.commit_failed",
            {
                ATTR_JOB_ID: self._job.job_id,
                ATTR_BATCH_NUMBER: error.batch_number,
                ATTR_ERROR_TYPE: type(error).__name__,
            },
        ):
            logger.error(
                "Job %s: batch %d queued for retry after commit failure",
                self._job.job_id,
                error.batch_number,
            )
        self._publish()

    # -- Loop control ---------------------------------------------------------

    async def process_all(self, *, max_pages: int | None = None) -> StatsSnapshot:
        """
        Process pages until the scan is exhausted, paused or ``max_pages`` is hit.

        Waits ``throttle_seconds`` between pages. A pause takes effect
        after the page in flight, or at the end of the current wait. A
        reset during the loop stops it and records the run as cancelled.

        Returns:
            Stats snapshot taken when the loop stopped

        Raises:
            EngineStateError: If a page is already in flight
            CommitError: If a page's commit failed (the loop stops)
        """
        if self._state is EngineState.RUNNING:
            raise EngineStateError(self._state, "process all", job_id=self._job.job_id)
        if max_pages is not None and max_pages < 1:
            raise ValueError(f"max_pages must be positive, got {max_pages}")

        if self._state is EngineState.COMPLETED or self._cursor.exhausted:
            await self.process_next_page()
            return self.snapshot()

        self._pause_requested.clear()
        self._stats.start_loop()
        generation = self._generation
        await self._start_history()
        pages = 0

        try:
            while True:
                await self.process_next_page()
                pages += 1
                await self._update_history()

                if self._state is EngineState.COMPLETED:
                    break
                if self._stop_requested(generation, pages):
                    break
                if max_pages is not None and pages >= max_pages:
                    break
                await asyncio.sleep(self._config.throttle_seconds)
                if self._stop_requested(generation, pages):
                    break
        except Exception as e:
            await self._finish_history(HistoryStatus.FAILED, [str(e)])
            self._stats.stop_loop()
            raise

        final = self.snapshot()
        self._stats.stop_loop()
        if generation != self._generation:
            # stats were zeroed by reset; keep the last recorded progress
            await self._finish_history(HistoryStatus.CANCELLED, record_progress=False)
            logger.info("Job %s: loop stopped by reset after %d pages", self._job.job_id, pages)
            return final

        status = (
            HistoryStatus.COMPLETED
            if self._state is EngineState.COMPLETED
            else HistoryStatus.CANCELLED
        )
        await self._finish_history(status)
        logger.info(
            "Job %s: loop stopped after %d pages (%s)", self._job.job_id, pages, status.value
        )
        return final

    def _stop_requested(self, generation: int, pages: int) -> bool:
        if generation != self._generation:
            return True
        if not self._pause_requested.is_set():
            return False
        self._audit.record(SYSTEM_SUBJECT, LogStatus.WARNING, "Processing paused")
        logger.info("Job %s paused after %d pages", self._job.job_id, pages)
        return True

    def pause(self) -> None:
        """Stop ``process_all`` before its next page."""
        self._pause_requested.set()
        self._audit.record(SYSTEM_SUBJECT, LogStatus.WARNING, "Pause requested")

    def reset(self) -> None:
        """
        Return to IDLE with cursor, stats, logs and failed pages cleared.

        The cache is kept; use ``clear_cache`` to drop it. A running
        ``process_all`` loop stops before its next page.

        Raises:
            EngineStateError: If a page is in flight
        """
        if self._state is EngineState.RUNNING:
            raise EngineStateError(self._state, "reset", job_id=self._job.job_id)

        self._pause_requested.set()
        self._cursor.reset()
        self._stats.reset()
        self._audit.clear()
        self._committer.discard()
        self._failed_pages.clear()
        self._last_error = None
        self._generation += 1
        self._state = EngineState.IDLE
        self._audit.record(SYSTEM_SUBJECT, LogStatus.SUCCESS, "Migration reset")
        logger.info("Job %s reset", self._job.job_id)
        self._publish()

    async def retry_failed_pages(self) -> int:
        """
        Re-issue the writes of every queued failed page.

        Pages that fail again stay queued with the new error.

        Returns:
            Number of records written

        Raises:
            EngineStateError: If a page is in flight
        """
        if self._state is EngineState.RUNNING:
            raise EngineStateError(self._state, "retry failed pages", job_id=self._job.job_id)

        written = 0
        remaining: list[FailedPage] = []
        for failed in self._failed_pages:
            try:
                result = await self._committer.replay(failed.batch_number, failed.mutations)
            except CommitError as e:
                remaining.append(
                    FailedPage(
                        batch_number=failed.batch_number,
                        record_ids=failed.record_ids,
                        mutations=failed.mutations,
                        error=e.original_error,
                    )
                )
                self._audit.record(
                    SYSTEM_SUBJECT,
                    LogStatus.ERROR,
                    f"Batch {failed.batch_number}: Retry failed: {e.original_error}",
                    batch_number=failed.batch_number,
                )
                continue

            self._stats.increment(updated_items=result.committed_count)
            written += result.committed_count
            self._audit.record(
                SYSTEM_SUBJECT,
                LogStatus.SUCCESS,
                f"Batch {failed.batch_number}: Retry committed {result.committed_count} updates",
                batch_number=failed.batch_number,
            )

        self._failed_pages = remaining
        if not remaining and self._state is EngineState.ERROR:
            self._state = EngineState.COMPLETED if self._cursor.exhausted else EngineState.IDLE
            self._last_error = None
        self._publish()
        return written

    async def count_total(self) -> int:
        """Count the target collection and set ``total_items`` for display."""
        total = await self._store.count(self._job.target_collection)
        self._stats.set_total(total)
        self._audit.record(
            SYSTEM_SUBJECT,
            LogStatus.SUCCESS,
            f"Found {total} records in {self._job.target_collection}",
        )
        self._publish()
        return total

    # -- Cache ---------------------------------------------------------------

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()
        self._audit.record(SYSTEM_SUBJECT, LogStatus.SUCCESS, "Cache cleared")

    def cleanup_expired_cache_entries(self) -> int:
        removed = self._cache.cleanup_expired()
        self._audit.record(
            SYSTEM_SUBJECT,
            LogStatus.SUCCESS,
            f"Cleaned {removed} expired cache entries",
        )
        return removed

    async def set_cache_enabled(self, enabled: bool) -> None:
        """
        Switch cache use for subsequent pages.

        Raises:
            ToggleError: If the setting could not be persisted (rolled back)
        """
        await self._toggles.set("cache_enabled", enabled)

    # -- Observation -----------------------------------------------------------

    def recent_logs(self, limit: int | None = None) -> list[LogEntry]:
        """Most recent audit entries, newest last."""
        return self._audit.recent(limit)

    def log_counts(self) -> dict[LogStatus, int]:
        return self._audit.counts_by_status()

    def on_stats_update(self, handler: StatsHandler) -> Callable[[], None]:
        """
        Call ``handler`` with a snapshot after every stats change.

        Returns:
            A function that removes the handler
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return unsubscribe

    async def stream_stats(self, *, include_current: bool = True) -> AsyncIterator[StatsSnapshot]:
        """
        Yield snapshots as stats change until the consumer stops iterating.

        Slow consumers drop their oldest pending snapshot instead of
        blocking the engine.
        """
        queue: asyncio.Queue[StatsSnapshot] = asyncio.Queue(maxsize=100)
        self._streams.add(queue)
        logger.debug("Stats stream opened (total: %d)", len(self._streams))
        try:
            if include_current:
                yield self.snapshot()
            while True:
                yield await queue.get()
        finally:
            self._streams.discard(queue)
            logger.debug("Stats stream closed (remaining: %d)", len(self._streams))

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for handler in list(self._handlers):
            try:
                handler(snapshot)
            except Exception:
                logger.exception("Stats handler %r failed", handler)
        for queue in self._streams:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(snapshot)

    # -- History -----------------------------------------------------------

    async def _start_history(self) -> None:
        if self._history is None:
            return
        snapshot = self.snapshot()
        self._history_run_id = await self._history.start(
            self._job.job_id,
            self._job.name,
            snapshot.total_items,
            self._cursor.page_size,
            metadata=self._history_metadata(),
        )

    async def _update_history(self) -> None:
        if self._history is None or self._history_run_id is None:
            return
        await self._record_history_progress(self._history, self._history_run_id)

    async def _finish_history(
        self,
        status: HistoryStatus,
        error_details: list[str] | None = None,
        *,
        record_progress: bool = True,
    ) -> None:
        if self._history is None or self._history_run_id is None:
            return
        run_id, self._history_run_id = self._history_run_id, None
        if record_progress:
            await self._record_history_progress(self._history, run_id)
        await self._history.complete(run_id, status, error_details)

    async def _record_history_progress(
        self, history: MigrationHistoryRepository, run_id: UUID
    ) -> None:
        snapshot = self.snapshot()
        await history.update_progress(
            run_id,
            successful_items=snapshot.updated_items,
            error_items=snapshot.error_items,
            skipped_items=snapshot.skipped_items,
            processing_rate=snapshot.processing_rate,
        )

    def _history_metadata(self) -> dict[str, Any]:
        return {
            "target_collection": self._job.target_collection,
            "reference_collection": self._job.reference_collection,
            "owner_field": self._job.owner_field,
            "candidates_field": self._job.candidates_field,
        }


__all__ = ["MigrationEngine", "StatsHandler"]
