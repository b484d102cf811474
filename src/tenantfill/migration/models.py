"""
Data models for the tenant backfill engine.

Models in this module:

Enums:
    - EngineState: Engine run state machine
    - JobStatus: Sampled completion status of a job
    - LogStatus: Status of an audit log entry
    - ValidationIssue: Why an owner field or candidate failed validation

Records:
    - SourceRecord: Target-collection record that may need an owner
    - ReferenceRecord: Record a candidate identifier points at

Run state:
    - BatchCursor: Resumable scan position
    - MigrationStats: Running counters for one run
    - StatsSnapshot: Immutable view of MigrationStats
    - CacheEntry: One slot of the read-through cache
    - LogEntry: Structured audit log event

Results:
    - ValidationResult: Outcome of an owner-field check
    - Resolution: Owner found by the resolver
    - PageResult: What one page of processing did
    - FailedPage: Page whose commit failed, kept for retry
    - JobProgress: Sampled completion of one job
    - OverallProgress: Totals across every sampled job
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tenantfill.stores.interface import Document


class EngineState(Enum):
    """
    Run state of a MigrationEngine.

    Transitions:
        IDLE -> RUNNING (processing a page)
        RUNNING -> IDLE (page done, or paused)
        RUNNING -> COMPLETED (cursor exhausted)
        RUNNING -> ERROR (page commit failed)
        any -> IDLE (reset)
    """

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def can_process(self) -> bool:
        """True if a page may be started from this state."""
        return self in (EngineState.IDLE, EngineState.ERROR)


class JobStatus(Enum):
    """Completion status of a job, derived from a sample."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class LogStatus(str, Enum):
    """Status of an audit log entry."""

    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    WARNING = "warning"
    VALIDATION = "validation"


class ValidationIssue(Enum):
    """Reason an owner field or candidate identifier is not usable."""

    NONE = "none"
    PROPERTY_MISSING = "property_missing"
    VALUE_NULL = "value_null"
    VALUE_UNDEFINED = "value_undefined"
    WRONG_TYPE = "wrong_type"
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    INTERNAL_ERROR = "internal_error"

    @property
    def is_missing_value(self) -> bool:
        """Null and undefined share the same completeness bucket."""
        return self in (ValidationIssue.VALUE_NULL, ValidationIssue.VALUE_UNDEFINED)


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of validating an owner field or a candidate identifier.

    Attributes:
        is_valid: Whether the value can be used as an owner identifier.
        has_property: Whether the field exists on the record at all.
        value: Trimmed string when valid, otherwise the raw value.
        type: Python type name of the raw value.
        reason: Human-readable explanation, ``"valid: <value>"`` on success.
        issue: Machine-readable failure reason.
    """

    is_valid: bool
    has_property: bool
    value: Any
    type: str
    reason: str
    issue: ValidationIssue = ValidationIssue.NONE

    @property
    def is_missing_value(self) -> bool:
        return self.issue.is_missing_value

    @property
    def is_wrong_type(self) -> bool:
        return self.issue is ValidationIssue.WRONG_TYPE


@dataclass(frozen=True)
class SourceRecord:
    """
    A target-collection record that may need its owner backfilled.

    Attributes:
        id: Document id.
        owner_candidates: Candidate identifiers in priority order, kept
            as stored. None when the candidate field is absent or is not
            a list.
        owner_value: Owner field value as stored, None when absent.
        raw_fields: Full document body.
    """

    id: str
    owner_candidates: tuple[Any, ...] | None
    owner_value: Any
    raw_fields: Mapping[str, Any]

    @classmethod
    def from_document(
        cls,
        document: Document,
        *,
        owner_field: str,
        candidates_field: str,
        candidates_is_list: bool = True,
    ) -> SourceRecord:
        raw = document.data.get(candidates_field)
        if not candidates_is_list:
            candidates = (raw,) if candidates_field in document.data else None
        else:
            candidates = tuple(raw) if isinstance(raw, (list, tuple)) else None
        return cls(
            id=document.id,
            owner_candidates=candidates,
            owner_value=document.data.get(owner_field),
            raw_fields=document.data,
        )


@dataclass(frozen=True)
class ReferenceRecord:
    """
    A record a candidate identifier resolves to (e.g. a user profile).

    Attributes:
        id: Document id.
        owner_field_value: Owner field value as stored, None when absent.
        raw_fields: Full document body, used for owner-field validation.
    """

    id: str
    owner_field_value: Any
    raw_fields: Mapping[str, Any]

    @classmethod
    def from_document(cls, document: Document, *, owner_field: str) -> ReferenceRecord:
        return cls(
            id=document.id,
            owner_field_value=document.data.get(owner_field),
            raw_fields=document.data,
        )


@dataclass
class BatchCursor:
    """
    Resumable position of a forward-only scan.

    Mutable because the engine owns exactly one cursor per run and
    replaces its position after every page.

    Attributes:
        last_seen_key: Sort key of the last consumed record, None at start.
        page_size: Records per page.
        exhausted: True once the scan has no more data.
    """

    last_seen_key: Any = None
    page_size: int = 10
    exhausted: bool = False

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")

    def reset(self) -> None:
        """Return to the start of the collection."""
        self.last_seen_key = None
        self.exhausted = False


@dataclass(frozen=True)
class StatsSnapshot:
    """
    Immutable view of MigrationStats at one point in time.

    Handed to observers and returned from engine operations so callers
    never hold a reference to the engine's live counters.
    """

    total_items: int = 0
    processed_items: int = 0
    updated_items: int = 0
    skipped_items: int = 0
    error_items: int = 0
    valid_users_found: int = 0
    users_with_owner: int = 0
    users_without_owner: int = 0
    total_candidates_checked: int = 0
    no_valid_candidate_found: int = 0
    validation_errors: int = 0
    data_integrity_issues: int = 0
    current_batch: int = 0
    processing_rate: float = 0.0

    @property
    def progress_percent(self) -> float:
        """Processed share of the counted total (0-100)."""
        if self.total_items == 0:
            return 0.0
        return min(100.0, (self.processed_items / self.total_items) * 100)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["progress_percent"] = self.progress_percent
        return data


@dataclass
class MigrationStats:
    """
    Running counters for one engine run.

    Counters only move forward while a run is active; ``increment``
    rejects negative deltas. ``total_items`` is display-only and set
    from a store count.
    """

    total_items: int = 0
    processed_items: int = 0
    updated_items: int = 0
    skipped_items: int = 0
    error_items: int = 0
    valid_users_found: int = 0
    users_with_owner: int = 0
    users_without_owner: int = 0
    total_candidates_checked: int = 0
    no_valid_candidate_found: int = 0
    validation_errors: int = 0
    data_integrity_issues: int = 0
    current_batch: int = 0

    def increment(self, **deltas: int) -> None:
        """
        Add to one or more counters.

        Raises:
            ValueError: If a counter name is unknown or a delta is negative
        """
        for name, delta in deltas.items():
            if name == "total_items" or not hasattr(self, name):
                raise ValueError(f"Unknown counter: {name}")
            if delta < 0:
                raise ValueError(f"Counter {name} cannot decrease (delta {delta})")
        for name, delta in deltas.items():
            setattr(self, name, getattr(self, name) + delta)

    def snapshot(self, processing_rate: float = 0.0) -> StatsSnapshot:
        return StatsSnapshot(
            **{f.name: getattr(self, f.name) for f in fields(self)},
            processing_rate=processing_rate,
        )


@dataclass
class CacheEntry:
    """
    One slot of the read-through cache.

    Attributes:
        key: Cache key.
        value: Cached value.
        inserted_at: Clock reading when stored.
        last_accessed_at: Clock reading of the last hit (LRU order).
        ttl: Lifetime in seconds, measured from insertion.
        access_count: Number of hits.
        tags: Labels for group invalidation.
    """

    key: str
    value: Any
    inserted_at: float
    last_accessed_at: float
    ttl: float
    access_count: int = 0
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


class LogEntry(BaseModel):
    """
    Structured audit event.

    Attributes:
        subject_id: Record id the event is about, ``"system"`` for page
            and run events.
        status: Event status.
        message: Human-readable description.
        timestamp: When the event happened (UTC).
        metadata: Extra details (batch number, indices, owner ids).
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    status: LogStatus
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class Resolution:
    """
    First valid owner found among a record's candidates.

    Attributes:
        owner_id: Validated, trimmed owner identifier.
        resolver_index: Index of the winning candidate.
        candidates_checked: Number of candidates visited (index + 1).
        reference_id: Id of the reference record that carried the owner.
    """

    owner_id: str
    resolver_index: int
    candidates_checked: int
    reference_id: str


@dataclass(frozen=True)
class PageResult:
    """
    What one call to ``process_next_page`` did.

    Attributes:
        batch_number: Page number within the run, 0 when nothing was read.
        fetched: Records returned by the scan.
        processed: Records handled (every fetched record).
        updated: Records whose mutation was committed.
        skipped: Records already valid or without a usable candidate.
        errors: Records that could not be handled.
        committed: Whether an atomic write was issued and succeeded.
        is_last_page: Whether the scan is now exhausted.
        stats: Run statistics after the page.
    """

    batch_number: int
    fetched: int = 0
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    committed: bool = False
    is_last_page: bool = False
    stats: StatsSnapshot = field(default_factory=StatsSnapshot)


@dataclass(frozen=True)
class FailedPage:
    """
    A page whose commit failed, held until an operator retries it.

    Attributes:
        batch_number: Page number within the run.
        record_ids: Ids of the records whose updates were rejected.
        mutations: The rejected ``(record_id, fields)`` pairs.
        error: Failure message from the store.
        failed_at: When the commit failed.
    """

    batch_number: int
    record_ids: tuple[str, ...]
    mutations: tuple[tuple[str, dict[str, Any]], ...]
    error: str
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class JobProgress:
    """
    Sampled completion of one migration job.

    Derived on every poll and never persisted.

    Attributes:
        job_id: Job identifier.
        total_sampled: Records read from the job's target collection.
        already_enriched: Sampled records whose owner field validates.
        progress_percent: ``already_enriched / total_sampled * 100``.
        status: Derived completion status.
        error: Read failure message when status is ERROR.
        sampled_at: When the sample was taken.
    """

    job_id: str
    total_sampled: int
    already_enriched: int
    progress_percent: float
    status: JobStatus
    error: str | None = None
    sampled_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_counts(cls, job_id: str, total_sampled: int, already_enriched: int) -> JobProgress:
        if total_sampled == 0:
            percent = 0.0
        else:
            percent = already_enriched / total_sampled * 100
        if percent >= 100:
            status = JobStatus.COMPLETED
        elif percent > 0:
            status = JobStatus.IN_PROGRESS
        else:
            status = JobStatus.NOT_STARTED
        return cls(
            job_id=job_id,
            total_sampled=total_sampled,
            already_enriched=already_enriched,
            progress_percent=percent,
            status=status,
        )

    @classmethod
    def failed(cls, job_id: str, error: str) -> JobProgress:
        return cls(
            job_id=job_id,
            total_sampled=0,
            already_enriched=0,
            progress_percent=0.0,
            status=JobStatus.ERROR,
            error=error,
        )


@dataclass(frozen=True)
class OverallProgress:
    """
    Totals across every sampled job.

    Attributes:
        total_jobs: Jobs with a sample.
        completed_jobs: Jobs at 100%.
        in_progress_jobs: Jobs between 0% and 100%.
        not_started_jobs: Jobs at 0%.
        error_jobs: Jobs whose sample failed.
        overall_progress: Mean progress percent over all sampled jobs.
        total_data_points: Sum of sampled records.
        enriched_data_points: Sum of already-enriched records.
    """

    total_jobs: int = 0
    completed_jobs: int = 0
    in_progress_jobs: int = 0
    not_started_jobs: int = 0
    error_jobs: int = 0
    overall_progress: float = 0.0
    total_data_points: int = 0
    enriched_data_points: int = 0


__all__ = [
    "BatchCursor",
    "CacheEntry",
    "EngineState",
    "FailedPage",
    "JobProgress",
    "JobStatus",
    "LogEntry",
    "LogStatus",
    "MigrationStats",
    "OverallProgress",
    "PageResult",
    "ReferenceRecord",
    "Resolution",
    "SourceRecord",
    "StatsSnapshot",
    "ValidationIssue",
    "ValidationResult",
]
