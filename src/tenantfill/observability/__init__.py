"""
Observability utilities for tenantfill.

Provides the composition-based ``Tracer`` abstraction and the standard
span attribute names used across stores and migration components.

Example:
    >>> from tenantfill.observability import create_tracer, ATTR_COLLECTION
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("tenantfill.store.scan", {ATTR_COLLECTION: "chats"}):
    ...     pass
"""

from tenantfill.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_CANDIDATE_COUNT,
    ATTR_COLLECTION,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    ATTR_ERROR_TYPE,
    ATTR_JOB_ID,
    ATTR_MUTATION_COUNT,
    ATTR_PAGE_SIZE,
    ATTR_SAMPLE_LIMIT,
)
from tenantfill.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanAttributes,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanAttributes",
    "create_tracer",
    # Attributes
    "ATTR_BATCH_NUMBER",
    "ATTR_CANDIDATE_COUNT",
    "ATTR_COLLECTION",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DOCUMENT_COUNT",
    "ATTR_DOCUMENT_ID",
    "ATTR_ERROR_TYPE",
    "ATTR_JOB_ID",
    "ATTR_MUTATION_COUNT",
    "ATTR_PAGE_SIZE",
    "ATTR_SAMPLE_LIMIT",
]
