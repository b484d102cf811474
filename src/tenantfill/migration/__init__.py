"""
Owner-field backfill for tenant-scoped document collections.

This module fills a missing or invalid owner field (``company_id`` by
default) on records of a target collection by resolving it from a
reference collection through each record's candidate ids.

Key Components:
    - MigrationEngine: Runs one job page by page with pause, reset and retry
    - PageFetcher: Forward-only cursor pagination over the target collection
    - OwnerResolver: First-match owner resolution through the cache
    - retry_read: Bounded retry of store reads with linear backoff
    - ReadThroughCache: Bounded TTL + LRU cache for reference lookups
    - BatchCommitter: Stages a page's updates and writes them atomically
    - ProgressAggregator: Sampled completion progress across jobs
    - MigrationHistoryRepository: Records of past engine runs

Engine States:
    1. IDLE: Ready to process the next page
    2. RUNNING: A page is in flight
    3. COMPLETED: The scan is exhausted
    4. ERROR: The last page failed; processing may resume

Usage:
    >>> from tenantfill.migration import MigrationEngine, get_job
    >>> from tenantfill.stores import SQLiteDocumentStore
    >>>
    >>> store = SQLiteDocumentStore("data.db")
    >>> await store.initialize()
    >>> engine = MigrationEngine(store, get_job("chats"))
    >>> await engine.count_total()
    >>> final = await engine.process_all()
    >>> print(f"Updated {final.updated_items} records")
"""

from tenantfill.migration.cache import CacheListener, CacheStats, ReadThroughCache
from tenantfill.migration.committer import BatchCommitter, CommitResult
from tenantfill.migration.config import (
    DEFAULT_JOBS,
    CacheConfig,
    EngineConfig,
    JobConfig,
    get_job,
)
from tenantfill.migration.engine import MigrationEngine, StatsHandler
from tenantfill.migration.exceptions import (
    CommitError,
    DuplicateMutationError,
    EngineStateError,
    ErrorSeverity,
    IssueCategory,
    JobNotFoundError,
    MigrationError,
)
from tenantfill.migration.history import (
    HistoryStatus,
    InMemoryMigrationHistoryRepository,
    MigrationHistoryEntry,
    MigrationHistoryRepository,
    MigrationSummary,
    MigrationTrend,
    PostgreSQLMigrationHistoryRepository,
)
from tenantfill.migration.models import (
    BatchCursor,
    CacheEntry,
    EngineState,
    FailedPage,
    JobProgress,
    JobStatus,
    LogEntry,
    LogStatus,
    MigrationStats,
    OverallProgress,
    PageResult,
    ReferenceRecord,
    Resolution,
    SourceRecord,
    StatsSnapshot,
    ValidationIssue,
    ValidationResult,
)
from tenantfill.migration.pager import Page, PageFetcher
from tenantfill.migration.progress import ProgressAggregator
from tenantfill.migration.resolver import OwnerResolver
from tenantfill.migration.retry import (
    LinearBackoffRetryPolicy,
    NoRetryPolicy,
    RetryPolicy,
    retry_read,
)
from tenantfill.migration.stats import AuditLog, StatsAggregator
from tenantfill.migration.toggles import DEFAULT_SETTINGS, SettingToggles
from tenantfill.migration.validation import (
    UNDEFINED,
    classify_candidate,
    validate_owner_field,
)

__all__ = [
    # Engine
    "MigrationEngine",
    "StatsHandler",
    # Components
    "AuditLog",
    "BatchCommitter",
    "CommitResult",
    "OwnerResolver",
    "Page",
    "PageFetcher",
    "ProgressAggregator",
    "ReadThroughCache",
    "CacheListener",
    "CacheStats",
    "SettingToggles",
    "StatsAggregator",
    # Read retry
    "LinearBackoffRetryPolicy",
    "NoRetryPolicy",
    "RetryPolicy",
    "retry_read",
    # Config
    "CacheConfig",
    "EngineConfig",
    "JobConfig",
    "DEFAULT_JOBS",
    "DEFAULT_SETTINGS",
    "get_job",
    # Models
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
    # Validation
    "UNDEFINED",
    "classify_candidate",
    "validate_owner_field",
    # History
    "HistoryStatus",
    "InMemoryMigrationHistoryRepository",
    "MigrationHistoryEntry",
    "MigrationHistoryRepository",
    "MigrationSummary",
    "MigrationTrend",
    "PostgreSQLMigrationHistoryRepository",
    # Exceptions
    "CommitError",
    "DuplicateMutationError",
    "EngineStateError",
    "ErrorSeverity",
    "IssueCategory",
    "JobNotFoundError",
    "MigrationError",
]
