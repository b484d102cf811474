"""
Document store implementations for tenantfill.

Provides the abstract DocumentStore contract consumed by the migration
engine and two backends:

- InMemoryDocumentStore: For tests and development
- SQLiteDocumentStore: aiosqlite-backed store with JSON documents
"""

from tenantfill.stores.in_memory import InMemoryDocumentStore
from tenantfill.stores.interface import (
    Document,
    DocumentStore,
    FieldFilter,
    FilterOp,
    Mutation,
    ScanOptions,
    ScanPage,
    validate_field_name,
)
from tenantfill.stores.sqlite import SQLiteDocumentStore

__all__ = [
    "Document",
    "DocumentStore",
    "FieldFilter",
    "FilterOp",
    "Mutation",
    "ScanOptions",
    "ScanPage",
    "validate_field_name",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
]
