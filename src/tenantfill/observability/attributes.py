"""
Standard span attributes for tenantfill.

Attribute constants shared by every component so spans for the same
concept carry the same key. Database attributes follow OpenTelemetry
semantic conventions.

Example:
    >>> from tenantfill.observability.attributes import ATTR_COLLECTION, ATTR_PAGE_SIZE
    >>>
    >>> with tracer.span(
    ...     "tenantfill.pager.next_page",
    ...     {ATTR_COLLECTION: "chats", ATTR_PAGE_SIZE: 10},
    ... ):
    ...     pass
"""

# =============================================================================
# Store Attributes
# =============================================================================

ATTR_COLLECTION = "tenantfill.collection"
"""Name of the document collection being read or written."""

ATTR_DOCUMENT_ID = "tenantfill.document.id"
"""Identifier of a single document."""

ATTR_DOCUMENT_COUNT = "tenantfill.document.count"
"""Number of documents in an operation (integer)."""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_JOB_ID = "tenantfill.job.id"
"""Identifier of the migration job (e.g., 'chats')."""

ATTR_BATCH_NUMBER = "tenantfill.batch.number"
"""1-based number of the page being processed (integer)."""

ATTR_PAGE_SIZE = "tenantfill.page.size"
"""Configured page size for a scan (integer)."""

ATTR_CANDIDATE_COUNT = "tenantfill.candidate.count"
"""Number of owner candidates on a record (integer)."""

ATTR_MUTATION_COUNT = "tenantfill.mutation.count"
"""Number of staged mutations in a commit (integer)."""

ATTR_SAMPLE_LIMIT = "tenantfill.sample.limit"
"""Maximum records read by a progress sample (integer)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'postgresql', 'memory')."""

ATTR_DB_NAME = "db.name"
"""Database name or path."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'SELECT', 'UPDATE')."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails."""


__all__ = [
    "ATTR_COLLECTION",
    "ATTR_DOCUMENT_ID",
    "ATTR_DOCUMENT_COUNT",
    "ATTR_JOB_ID",
    "ATTR_BATCH_NUMBER",
    "ATTR_PAGE_SIZE",
    "ATTR_CANDIDATE_COUNT",
    "ATTR_MUTATION_COUNT",
    "ATTR_SAMPLE_LIMIT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
