"""
In-memory document store implementation.

Useful for testing and development. Not suitable for production
as all documents are lost when the process terminates.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from tenantfill.exceptions import BatchWriteError
from tenantfill.observability import (
    ATTR_COLLECTION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_COUNT,
    ATTR_DOCUMENT_ID,
    Tracer,
    create_tracer,
)
from tenantfill.stores.interface import (
    Document,
    DocumentStore,
    FieldFilter,
    Mutation,
    ScanOptions,
    ScanPage,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """
    In-memory implementation of the document store.

    Documents are kept in nested dictionaries keyed by collection and id.
    Reads return deep copies so callers can never mutate stored state.

    Besides the DocumentStore contract it exposes call counters and a
    one-shot write failure hook so tests can observe how many store round
    trips an operation made and exercise commit failures.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.put("iboard_users", "u1", {"company_id": "CO-1"})
        >>> doc = await store.get_by_id("iboard_users", "u1")
        >>> doc.get("company_id")
        'CO-1'

    Attributes:
        read_calls: Number of get_by_id calls
        scan_calls: Number of scan calls
        write_calls: Number of atomic_batch_write calls (including failed ones)
    """

    def __init__(
        self,
        initial: Mapping[str, Mapping[str, Mapping[str, Any]]] | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            initial: Optional ``{collection: {id: data}}`` seed data
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
                Ignored if tracer is explicitly provided.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._pending_failure: Exception | None = None
        self.read_calls = 0
        self.scan_calls = 0
        self.write_calls = 0

        for collection, documents in (initial or {}).items():
            for document_id, data in documents.items():
                self._collections.setdefault(collection, {})[document_id] = copy.deepcopy(
                    dict(data)
                )

    async def scan(self, collection: str, options: ScanOptions) -> ScanPage:
        with self._tracer.span(
            "tenantfill.memory_store.scan",
            {ATTR_COLLECTION: collection, ATTR_DB_SYSTEM: "memory"},
        ):
            self.scan_calls += 1
            keyed: list[tuple[Any, str, dict[str, Any]]] = []
            for document_id, data in self._collections.get(collection, {}).items():
                if options.order_by is not None and data.get(options.order_by) is None:
                    continue
                if not all(f.matches(data) for f in options.filters):
                    continue
                keyed.append((self._sort_key(document_id, data, options.order_by), document_id, data))

            keyed.sort(key=lambda item: item[0], reverse=options.descending)

            if options.after_key is not None:
                after = options.after_key
                if options.descending:
                    keyed = [item for item in keyed if item[0] < after]
                else:
                    keyed = [item for item in keyed if item[0] > after]

            documents = [
                Document(id=document_id, data=copy.deepcopy(data), sort_key=key)
                for key, document_id, data in keyed[: options.limit]
            ]
            last_key = documents[-1].sort_key if documents else None
            return ScanPage(documents=documents, last_key=last_key)

    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        with self._tracer.span(
            "tenantfill.memory_store.get_by_id",
            {ATTR_COLLECTION: collection, ATTR_DOCUMENT_ID: document_id},
        ):
            self.read_calls += 1
            data = self._collections.get(collection, {}).get(document_id)
            if data is None:
                return None
            return Document(id=document_id, data=copy.deepcopy(data))

    async def atomic_batch_write(
        self,
        collection: str,
        mutations: Sequence[tuple[str, Mutation]],
        *,
        upsert: bool = False,
    ) -> None:
        with self._tracer.span(
            "tenantfill.memory_store.atomic_batch_write",
            {ATTR_COLLECTION: collection, ATTR_DOCUMENT_COUNT: len(mutations)},
        ):
            async with self._lock:
                self.write_calls += 1
                document_ids = [document_id for document_id, _ in mutations]

                if self._pending_failure is not None:
                    failure, self._pending_failure = self._pending_failure, None
                    raise BatchWriteError(collection, document_ids, str(failure)) from failure

                documents = self._collections.setdefault(collection, {})
                missing = [d for d in document_ids if d not in documents]
                if missing and not upsert:
                    raise BatchWriteError(
                        collection,
                        document_ids,
                        f"documents do not exist: {', '.join(missing)}",
                    )

                # Build every new version first so a bad mutation leaves nothing applied
                staged: dict[str, dict[str, Any]] = {}
                for document_id, fields in mutations:
                    base = staged.get(document_id) or documents.get(document_id, {})
                    updated = copy.deepcopy(base)
                    updated.update(copy.deepcopy(dict(fields)))
                    staged[document_id] = updated

                documents.update(staged)
                logger.debug("Applied %d mutations to %s", len(mutations), collection)

    async def count(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
    ) -> int:
        documents = self._collections.get(collection, {})
        return sum(1 for data in documents.values() if all(f.matches(data) for f in filters))

    async def put(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        async with self._lock:
            self._collections.setdefault(collection, {})[document_id] = copy.deepcopy(dict(data))

    def fail_next_write(self, error: Exception | str = "injected write failure") -> None:
        """
        Make the next atomic_batch_write fail without applying anything.

        Args:
            error: Exception (or message) reported as the failure cause
        """
        self._pending_failure = error if isinstance(error, Exception) else RuntimeError(error)

    def get_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        """Return a deep copy of every document in a collection, keyed by id."""
        return copy.deepcopy(self._collections.get(collection, {}))

    def clear(self) -> None:
        """Remove all documents and reset call counters."""
        self._collections.clear()
        self._pending_failure = None
        self.read_calls = 0
        self.scan_calls = 0
        self.write_calls = 0

    @staticmethod
    def _sort_key(document_id: str, data: Mapping[str, Any], order_by: str | None) -> tuple[Any, ...]:
        if order_by is None:
            return (document_id,)
        return (data[order_by], document_id)


__all__ = ["InMemoryDocumentStore"]
