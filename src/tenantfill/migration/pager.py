"""
Forward-only, page-sized scans of a job's target collection.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from tenantfill.migration.config import JobConfig
from tenantfill.migration.models import BatchCursor, SourceRecord
from tenantfill.migration.retry import LinearBackoffRetryPolicy, RetryPolicy, retry_read
from tenantfill.observability import (
    ATTR_COLLECTION,
    ATTR_DOCUMENT_COUNT,
    ATTR_PAGE_SIZE,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import DocumentStore, FieldFilter, ScanOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    """
    One page of a scan.

    Attributes:
        records: Source records in scan order
        new_cursor: Cursor positioned after the last record
        is_last_page: True when the scan has no more data
    """

    records: list[SourceRecord] = field(default_factory=list)
    new_cursor: BatchCursor = field(default_factory=BatchCursor)
    is_last_page: bool = False

    def __len__(self) -> int:
        return len(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records


class PageFetcher:
    """
    Reads a job's target collection one page at a time.

    The cursor passed in is never modified; the returned page carries a
    new cursor that has moved past every record of the page. A short page
    (fewer records than the page size) or an empty page exhausts the
    cursor, and fetching from an exhausted cursor returns an empty page
    without touching the store. Failed scans are retried as the retry
    policy allows.

    Example:
        >>> fetcher = PageFetcher(store, job)
        >>> cursor = BatchCursor(page_size=10)
        >>> while not cursor.exhausted:
        ...     page = await fetcher.next_page(cursor)
        ...     cursor = page.new_cursor
    """

    def __init__(
        self,
        store: DocumentStore,
        job: JobConfig,
        *,
        filters: tuple[FieldFilter, ...] = (),
        retry_policy: RetryPolicy | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if job.candidates_field is None:
            raise ValueError(f"Job {job.job_id} has no candidates field to resolve from")
        self._store = store
        self._job = job
        self._filters = filters
        self._retry_policy = retry_policy or LinearBackoffRetryPolicy()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def next_page(self, cursor: BatchCursor) -> Page:
        if cursor.exhausted:
            return Page(records=[], new_cursor=dataclasses.replace(cursor), is_last_page=True)

        with self._tracer.span(
            "tenantfill.pager.next_page",
            {ATTR_COLLECTION: self._job.target_collection, ATTR_PAGE_SIZE: cursor.page_size},
        ) as span:
            options = ScanOptions(
                limit=cursor.page_size,
                order_by=self._job.order_by,
                descending=self._job.descending,
                after_key=cursor.last_seen_key,
                filters=self._filters,
            )
            scan = await retry_read(
                lambda: self._store.scan(self._job.target_collection, options),
                self._retry_policy,
                f"Scan of {self._job.target_collection}",
            )
            if span is not None:
                span.set_attribute(ATTR_DOCUMENT_COUNT, len(scan))

        if scan.is_empty:
            logger.info("No more records in %s", self._job.target_collection)
            return Page(
                records=[],
                new_cursor=dataclasses.replace(cursor, exhausted=True),
                is_last_page=True,
            )

        assert self._job.candidates_field is not None
        records = [
            SourceRecord.from_document(
                document,
                owner_field=self._job.owner_field,
                candidates_field=self._job.candidates_field,
                candidates_is_list=self._job.candidates_is_list,
            )
            for document in scan.documents
        ]
        is_last_page = len(records) < cursor.page_size
        new_cursor = dataclasses.replace(
            cursor,
            last_seen_key=scan.last_key,
            exhausted=is_last_page,
        )
        logger.debug(
            "Fetched %d records from %s (last page: %s)",
            len(records),
            self._job.target_collection,
            is_last_page,
        )
        return Page(records=records, new_cursor=new_cursor, is_last_page=is_last_page)


__all__ = ["Page", "PageFetcher"]
