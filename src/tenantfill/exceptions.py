"""Library exceptions for the tenantfill package."""

from typing import Any


class TenantfillError(Exception):
    """Base exception for tenantfill library."""

    pass


class StoreError(TenantfillError):
    """Raised when there's an error in the document store."""

    pass


class DocumentNotFoundError(StoreError):
    """Raised when a document cannot be found."""

    def __init__(self, collection: str, document_id: str) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"Document not found: {collection}/{document_id}")


class BatchWriteError(StoreError):
    """
    Raised when an atomic batch write cannot be applied.

    Batch writes are all-or-nothing: when this is raised none of the
    mutations in the batch were persisted.

    Attributes:
        collection: Collection the batch targeted
        document_ids: Ids of every document in the rejected batch
    """

    def __init__(self, collection: str, document_ids: list[str], message: str) -> None:
        self.collection = collection
        self.document_ids = document_ids
        super().__init__(
            f"Batch write to {collection} failed for {len(document_ids)} documents: {message}"
        )


class ToggleError(TenantfillError):
    """
    Raised when a setting toggle could not be confirmed by the store.

    The local value has already been rolled back when this is raised.

    Attributes:
        name: Setting name
        attempted: Value that was applied optimistically
        restored: Value the setting was rolled back to
    """

    def __init__(self, name: str, attempted: Any, restored: Any, message: str) -> None:
        self.name = name
        self.attempted = attempted
        self.restored = restored
        super().__init__(
            f"Setting '{name}' could not be set to {attempted!r} "
            f"(rolled back to {restored!r}): {message}"
        )


__all__ = [
    "TenantfillError",
    "StoreError",
    "DocumentNotFoundError",
    "BatchWriteError",
    "ToggleError",
]
