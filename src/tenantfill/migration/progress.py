"""
Sampled completion progress across backfill jobs.

ProgressAggregator answers "how much of the data is already fixed",
independently of any engine run: it reads up to ``sample_limit`` records
of each job's target collection and counts those whose owner field
validates. It never writes and never reads engine state. Job
dependencies only influence display order; they never block a job.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from datetime import UTC, datetime

from tenantfill.migration.config import DEFAULT_JOBS, JobConfig, get_job
from tenantfill.migration.models import JobProgress, JobStatus, OverallProgress
from tenantfill.migration.validation import DEFAULT_MIN_LENGTH, validate_owner_field
from tenantfill.observability import (
    ATTR_COLLECTION,
    ATTR_JOB_ID,
    ATTR_SAMPLE_LIMIT,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import DocumentStore, ScanOptions

logger = logging.getLogger(__name__)


class ProgressAggregator:
    """
    Polls job collections and derives per-job and overall progress.

    Read failures never propagate: the job is reported with status
    ``error`` and the failure message.

    Example:
        >>> aggregator = ProgressAggregator(store)
        >>> progress = await aggregator.sample(get_job("chats"))
        >>> progress.status
        <JobStatus.IN_PROGRESS: 'in_progress'>
        >>> aggregator.start_polling(interval=30)
    """

    def __init__(
        self,
        store: DocumentStore,
        jobs: Mapping[str, JobConfig] = DEFAULT_JOBS,
        *,
        sample_limit: int = 1000,
        min_owner_length: int = DEFAULT_MIN_LENGTH,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if sample_limit < 1:
            raise ValueError(f"sample_limit must be positive, got {sample_limit}")
        self._store = store
        self._jobs = dict(jobs)
        self._sample_limit = sample_limit
        self._min_owner_length = min_owner_length
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._latest: dict[str, JobProgress] = {}
        self._last_updated: datetime | None = None
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def jobs(self) -> dict[str, JobConfig]:
        return dict(self._jobs)

    @property
    def last_updated(self) -> datetime | None:
        """When ``sample_all`` last finished."""
        return self._last_updated

    @property
    def latest(self) -> dict[str, JobProgress]:
        """Most recent sample of every job that has been sampled."""
        return dict(self._latest)

    async def sample(self, job: JobConfig) -> JobProgress:
        """Sample one job's target collection."""
        with self._tracer.span(
            "tenantfill.progress.sample",
            {
                ATTR_JOB_ID: job.job_id,
                ATTR_COLLECTION: job.target_collection,
                ATTR_SAMPLE_LIMIT: self._sample_limit,
            },
        ):
            try:
                page = await self._store.scan(
                    job.target_collection,
                    ScanOptions(limit=self._sample_limit, filters=job.sample_filters),
                )
            except Exception as e:
                logger.warning("Progress sample of %s failed: %s", job.job_id, e)
                progress = JobProgress.failed(job.job_id, str(e))
            else:
                enriched = sum(
                    1
                    for document in page.documents
                    if validate_owner_field(
                        document.data, job.owner_field, min_length=self._min_owner_length
                    ).is_valid
                )
                progress = JobProgress.from_counts(job.job_id, len(page), enriched)
                logger.debug(
                    "Job %s: %d/%d enriched (%.1f%%)",
                    job.job_id,
                    enriched,
                    len(page),
                    progress.progress_percent,
                )

        self._latest[job.job_id] = progress
        return progress

    async def get_job_progress(self, job_id: str, *, refresh: bool = False) -> JobProgress:
        """
        Latest progress of one job, sampling it if needed.

        Raises:
            JobNotFoundError: If the job is not configured
        """
        job = get_job(job_id, self._jobs)
        if not refresh and job_id in self._latest:
            return self._latest[job_id]
        return await self.sample(job)

    async def sample_all(self) -> list[JobProgress]:
        """Sample every configured job concurrently."""
        results = await asyncio.gather(*(self.sample(job) for job in self._jobs.values()))
        self._last_updated = datetime.now(UTC)
        logger.info("Sampled progress of %d jobs", len(results))
        return list(results)

    def overall(self) -> OverallProgress:
        """Totals over the latest sample of every job."""
        samples = list(self._latest.values())
        if not samples:
            return OverallProgress()

        def count(status: JobStatus) -> int:
            return sum(1 for p in samples if p.status is status)

        return OverallProgress(
            total_jobs=len(samples),
            completed_jobs=count(JobStatus.COMPLETED),
            in_progress_jobs=count(JobStatus.IN_PROGRESS),
            not_started_jobs=count(JobStatus.NOT_STARTED),
            error_jobs=count(JobStatus.ERROR),
            overall_progress=sum(p.progress_percent for p in samples) / len(samples),
            total_data_points=sum(p.total_sampled for p in samples),
            enriched_data_points=sum(p.already_enriched for p in samples),
        )

    def ordered_jobs(self) -> list[JobConfig]:
        """
        Jobs with every dependency listed before its dependents.

        Ties keep catalogue order. Dependencies on jobs outside the
        catalogue are ignored.

        Raises:
            ValueError: If the dependencies form a cycle
        """
        remaining = dict(self._jobs)
        ordered: list[JobConfig] = []
        placed: set[str] = set()

        while remaining:
            ready = [
                job
                for job in remaining.values()
                if all(dep in placed or dep not in self._jobs for dep in job.dependencies)
            ]
            if not ready:
                raise ValueError(f"Dependency cycle between jobs: {sorted(remaining)}")
            for job in ready:
                ordered.append(job)
                placed.add(job.job_id)
                del remaining[job.job_id]

        return ordered

    def start_polling(self, interval: float = 30.0) -> None:
        """Run ``sample_all`` now and then every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if self.is_polling:
            return
        self._poll_task = asyncio.create_task(self._poll(interval))

    async def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _poll(self, interval: float) -> None:
        while True:
            await self.sample_all()
            await asyncio.sleep(interval)


__all__ = ["ProgressAggregator"]
