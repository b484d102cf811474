"""
tenantfill - Owner-field backfill for tenant-scoped document stores.

This library provides:
- Document stores with SQLite and In-Memory backends
- Cursor-paginated, resumable backfill engine with atomic page commits
- Read-through TTL/LRU cache for reference lookups
- Sampled per-job progress and run history
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tenantfill")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tenantfill.exceptions import (
    BatchWriteError,
    DocumentNotFoundError,
    StoreError,
    TenantfillError,
    ToggleError,
)
from tenantfill.migration import (
    DEFAULT_JOBS,
    CacheConfig,
    EngineConfig,
    EngineState,
    JobConfig,
    MigrationEngine,
    ProgressAggregator,
    ReadThroughCache,
    get_job,
    validate_owner_field,
)
from tenantfill.stores import (
    Document,
    DocumentStore,
    InMemoryDocumentStore,
    SQLiteDocumentStore,
)

__all__ = [
    "__version__",
    # Exceptions
    "TenantfillError",
    "StoreError",
    "DocumentNotFoundError",
    "BatchWriteError",
    "ToggleError",
    # Stores
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    # Migration
    "MigrationEngine",
    "EngineState",
    "EngineConfig",
    "CacheConfig",
    "JobConfig",
    "DEFAULT_JOBS",
    "get_job",
    "ProgressAggregator",
    "ReadThroughCache",
    "validate_owner_field",
]
