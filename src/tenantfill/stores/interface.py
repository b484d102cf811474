"""
Document store interface and core data structures.

The migration engine never talks to a concrete database. It consumes the
narrow contract defined here: forward page scans, point reads, atomic
multi-document updates and counts.

This module provides:
- Document: A stored record with its identifier and scan position
- FieldFilter: Predicate applied to a scan or count
- ScanOptions: Configuration for one page-sized scan
- ScanPage: Result of a scan
- DocumentStore: Abstract base class for store implementations
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Mutation = Mapping[str, Any]
"""Partial document: field name to new value."""


def validate_field_name(name: str) -> str:
    """
    Check that a field name is a plain identifier.

    Field names end up inside query paths for SQL backends, so anything
    other than letters, digits and underscores is rejected.

    Raises:
        ValueError: If the name is not a plain identifier
    """
    if not isinstance(name, str) or not FIELD_NAME_PATTERN.match(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return name


class FilterOp(Enum):
    """Comparison operators supported by FieldFilter."""

    EQ = "=="
    NE = "!="
    IN = "in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


@dataclass(frozen=True)
class FieldFilter:
    """
    Predicate on a single top-level document field.

    ``EXISTS`` and ``NOT_EXISTS`` test for the presence of a non-null
    value and ignore ``value``.

    Example:
        >>> FieldFilter("status", FilterOp.EQ, "active")
        >>> FieldFilter("company_id", FilterOp.NOT_EXISTS)
    """

    field: str
    op: FilterOp = FilterOp.EQ
    value: Any = None

    def __post_init__(self) -> None:
        validate_field_name(self.field)
        if self.op is FilterOp.IN and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValueError("FilterOp.IN requires a list, tuple or set value")

    def matches(self, data: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against a document body."""
        present = data.get(self.field) is not None
        if self.op is FilterOp.EXISTS:
            return present
        if self.op is FilterOp.NOT_EXISTS:
            return not present
        actual = data.get(self.field)
        if self.op is FilterOp.EQ:
            return bool(actual == self.value)
        if self.op is FilterOp.NE:
            return bool(actual != self.value)
        return actual in self.value


@dataclass(frozen=True)
class Document:
    """
    A stored document.

    Attributes:
        id: Document identifier, unique within its collection
        data: Document body (top-level fields)
        sort_key: Opaque position of this document in the scan that
            returned it. Pass it back as ``ScanOptions.after_key`` to
            resume after this document.
    """

    id: str
    data: Mapping[str, Any]
    sort_key: Any = None

    def get(self, name: str, default: Any = None) -> Any:
        """Shortcut for ``document.data.get(name, default)``."""
        return self.data.get(name, default)


@dataclass(frozen=True)
class ScanOptions:
    """
    Options for a single page-sized scan.

    Attributes:
        limit: Maximum documents to return
        order_by: Field to order by. ``None`` orders by document id.
            Documents that lack the field are not part of the scan.
        descending: Order direction
        after_key: ``sort_key`` of the last document already consumed
        filters: Predicates every returned document satisfies

    Example:
        >>> options = ScanOptions(limit=10, order_by="created_at", descending=True)
    """

    limit: int = 100
    order_by: str | None = None
    descending: bool = False
    after_key: Any = None
    filters: tuple[FieldFilter, ...] = ()

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be positive, got {self.limit}")
        if self.order_by is not None:
            validate_field_name(self.order_by)


@dataclass(frozen=True)
class ScanPage:
    """
    One page of scan results.

    Attributes:
        documents: Documents in scan order
        last_key: ``sort_key`` of the last document, or None for an empty page
    """

    documents: list[Document] = field(default_factory=list)
    last_key: Any = None

    def __len__(self) -> int:
        return len(self.documents)

    @property
    def is_empty(self) -> bool:
        """True when the scan returned no documents."""
        return not self.documents


class DocumentStore(ABC):
    """
    Abstract base class for document stores.

    Implementations:
    - InMemoryDocumentStore: For tests and development
    - SQLiteDocumentStore: aiosqlite-backed store with JSON documents

    Write semantics follow the managed document stores the console runs
    against: ``atomic_batch_write`` updates existing documents field by
    field and either applies every mutation of the batch or none.
    """

    @abstractmethod
    async def scan(self, collection: str, options: ScanOptions) -> ScanPage:
        """
        Read one ordered page of a collection.

        Args:
            collection: Collection name
            options: Ordering, filters, page size and resume position

        Returns:
            ScanPage with at most ``options.limit`` documents, strictly
            after ``options.after_key`` in scan order
        """
        pass

    @abstractmethod
    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        """
        Read a single document.

        Returns:
            The document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def atomic_batch_write(
        self,
        collection: str,
        mutations: Sequence[tuple[str, Mutation]],
        *,
        upsert: bool = False,
    ) -> None:
        """
        Apply field updates to several documents atomically.

        Args:
            collection: Collection name
            mutations: ``(document_id, fields)`` pairs; fields are merged
                into the existing document
            upsert: Create documents that do not exist instead of failing

        Raises:
            BatchWriteError: If any mutation cannot be applied. No mutation
                of the batch is persisted in that case.
        """
        pass

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
    ) -> int:
        """Count documents in a collection matching all filters."""
        pass

    @abstractmethod
    async def put(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        """Create or fully replace a document."""
        pass


__all__ = [
    "Document",
    "DocumentStore",
    "FieldFilter",
    "FilterOp",
    "Mutation",
    "ScanOptions",
    "ScanPage",
    "validate_field_name",
]
