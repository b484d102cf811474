"""
Configuration classes for the backfill engine.

This module provides:
- CacheConfig: Bounds of the read-through cache
- EngineConfig: Paging, throttling and logging limits of an engine run
- JobConfig: Collections and field names of one backfill job
- DEFAULT_JOBS: The built-in job catalogue
- get_job: Catalogue lookup by id
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from tenantfill.migration.exceptions import JobNotFoundError
from tenantfill.stores.interface import FieldFilter, FilterOp, validate_field_name


@dataclass(frozen=True)
class CacheConfig:
    """
    Bounds of the read-through cache.

    Attributes:
        capacity: Maximum number of entries held at once
        ttl_seconds: Default entry lifetime, measured from insertion
        cleanup_interval_seconds: Period of the optional background sweep
    """

    capacity: int = 1000
    ttl_seconds: float = 600.0
    cleanup_interval_seconds: float = 300.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.capacity < 1:
            raise ValueError(f"capacity must be positive, got {self.capacity}")
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {self.ttl_seconds}")
        if self.cleanup_interval_seconds <= 0:
            raise ValueError(
                f"cleanup_interval_seconds must be positive, got {self.cleanup_interval_seconds}"
            )


@dataclass(frozen=True)
class EngineConfig:
    """
    Limits of a single engine run.

    Attributes:
        page_size: Records fetched and committed per page
        throttle_seconds: Pause between pages in ``process_all``
        log_capacity: Audit entries kept for display
        min_owner_length: Shortest accepted owner identifier
        settings_collection: Collection where setting toggles are confirmed
        read_retries: Retries of a failed page scan or reference lookup
        read_retry_delay: Base delay between read retries, multiplied by the attempt
    """

    page_size: int = 10
    throttle_seconds: float = 0.1
    log_capacity: int = 500
    min_owner_length: int = 3
    settings_collection: str = "migration_settings"
    read_retries: int = 2
    read_retry_delay: float = 1.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.page_size < 1:
            raise ValueError(
                f"page_size must be positive, got {self.page_size}. "
                "Use a value like 10 (default) to keep atomic writes small."
            )
        if self.throttle_seconds < 0:
            raise ValueError(f"throttle_seconds must be >= 0, got {self.throttle_seconds}")
        if self.log_capacity < 1:
            raise ValueError(f"log_capacity must be positive, got {self.log_capacity}")
        if self.min_owner_length < 1:
            raise ValueError(f"min_owner_length must be positive, got {self.min_owner_length}")
        if self.read_retries < 0:
            raise ValueError(f"read_retries must be >= 0, got {self.read_retries}")
        if self.read_retry_delay < 0:
            raise ValueError(f"read_retry_delay must be >= 0, got {self.read_retry_delay}")


@dataclass(frozen=True)
class JobConfig:
    """
    Declarative description of one backfill job.

    Collection and field names live here so the engine never hard-codes
    them.

    Attributes:
        job_id: Unique job identifier (also written as ``migration_source``)
        name: Display name
        target_collection: Collection whose records get the owner field
        owner_field: Field being backfilled
        reference_collection: Collection candidate identifiers point into
        candidates_field: Field holding the candidate identifiers. None for
            jobs that are only sampled for progress.
        candidates_is_list: False when the field holds a single identifier
        order_by: Stable scan order field, None to order by document id
        descending: Scan direction
        sample_filters: Predicates applied when sampling progress
        dependencies: Job ids shown as prerequisites (display only)
        description: Free text
        category: Display grouping
    """

    job_id: str
    name: str
    target_collection: str
    owner_field: str = "company_id"
    reference_collection: str = "iboard_users"
    candidates_field: str | None = None
    candidates_is_list: bool = True
    order_by: str | None = None
    descending: bool = False
    sample_filters: tuple[FieldFilter, ...] = ()
    dependencies: tuple[str, ...] = ()
    description: str = ""
    category: str = "data"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.job_id:
            raise ValueError("job_id must not be empty")
        if not self.target_collection:
            raise ValueError("target_collection must not be empty")
        validate_field_name(self.owner_field)
        if self.candidates_field is not None:
            validate_field_name(self.candidates_field)
        if self.order_by is not None:
            validate_field_name(self.order_by)
        if self.job_id in self.dependencies:
            raise ValueError(f"Job {self.job_id} cannot depend on itself")

    @property
    def is_runnable(self) -> bool:
        """True if the engine can backfill this job (it has candidates)."""
        return self.candidates_field is not None


DEFAULT_JOBS: Mapping[str, JobConfig] = {
    job.job_id: job
    for job in (
        JobConfig(
            job_id="companies",
            name="Company Creation",
            target_collection="iboard_users",
            sample_filters=(FieldFilter("license_key", FilterOp.EXISTS),),
            description="Create companies and assign users by license key",
            category="core",
        ),
        JobConfig(
            job_id="products",
            name="Product Companies",
            target_collection="products",
            candidates_field="seller_id",
            candidates_is_list=False,
            dependencies=("companies",),
            description="Update products with seller company ids",
        ),
        JobConfig(
            job_id="bookings",
            name="Booking Companies",
            target_collection="booking",
            candidates_field="seller_id",
            candidates_is_list=False,
            dependencies=("companies",),
            description="Update bookings with company information",
        ),
        JobConfig(
            job_id="quotations",
            name="Quotation Companies",
            target_collection="quotation_request",
            candidates_field="seller_id",
            candidates_is_list=False,
            dependencies=("companies",),
            description="Update quotations with company data",
        ),
        JobConfig(
            job_id="followers",
            name="Follower Companies",
            target_collection="followers",
            candidates_field="seller_id",
            candidates_is_list=False,
            dependencies=("companies",),
            description="Update followers with seller companies",
        ),
        JobConfig(
            job_id="chats",
            name="Chat Companies",
            target_collection="chats",
            candidates_field="users",
            dependencies=("companies",),
            description="Update chats with company ids from their users",
            category="communication",
        ),
    )
}


def get_job(job_id: str, jobs: Mapping[str, JobConfig] = DEFAULT_JOBS) -> JobConfig:
    """
    Look up a job by id.

    Raises:
        JobNotFoundError: If the id is not in the catalogue
    """
    try:
        return jobs[job_id]
    except KeyError:
        raise JobNotFoundError(job_id) from None


__all__ = [
    "CacheConfig",
    "DEFAULT_JOBS",
    "EngineConfig",
    "JobConfig",
    "get_job",
]
