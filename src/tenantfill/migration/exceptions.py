"""
Migration-specific exceptions and issue classification.

Exception Hierarchy:
    MigrationError (base)
    +-- CommitError
    +-- EngineStateError
    +-- DuplicateMutationError
    +-- JobNotFoundError

Per-record problems (bad candidate types, missing owner fields, lookup
misses) are never raised. They are classified with ``IssueCategory``,
logged at the category's level and counted in the run statistics. Only
page-level failures surface as exceptions.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from tenantfill.exceptions import TenantfillError

if TYPE_CHECKING:
    from tenantfill.migration.models import EngineState


class ErrorSeverity(Enum):
    """
    Severity level of migration issues.

    Used to pick the log level of an issue and to decide whether the
    operator should be alerted.
    """

    CRITICAL = "critical"
    """Run cannot continue without intervention."""

    ERROR = "error"
    """A record or page could not be migrated."""

    WARNING = "warning"
    """Something was skipped that may be fine."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def should_alert(self) -> bool:
        """True for CRITICAL and ERROR levels."""
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """Corresponding Python logging level."""
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class IssueCategory(Enum):
    """
    Categories of problems met while migrating.

    Attributes:
        VALIDATION_ERROR: A field exists but has the wrong shape.
        DATA_INTEGRITY_ISSUE: A required property is structurally absent.
        LOOKUP_MISS: A candidate identifier has no reference record.
        NO_VALID_CANDIDATE: Every candidate was exhausted without a match.
        COMMIT_FAILURE: The atomic write for a page failed.
    """

    VALIDATION_ERROR = "validation_error"
    DATA_INTEGRITY_ISSUE = "data_integrity_issue"
    LOOKUP_MISS = "lookup_miss"
    NO_VALID_CANDIDATE = "no_valid_candidate"
    COMMIT_FAILURE = "commit_failure"

    @property
    def severity(self) -> ErrorSeverity:
        """Severity assigned to this category."""
        return _CATEGORY_SEVERITY[self]

    @property
    def log_level(self) -> int:
        """Python logging level for issues of this category."""
        return self.severity.log_level

    @property
    def aborts_page(self) -> bool:
        """Only commit failures stop progress for a page."""
        return self is IssueCategory.COMMIT_FAILURE


_CATEGORY_SEVERITY = {
    IssueCategory.VALIDATION_ERROR: ErrorSeverity.WARNING,
    IssueCategory.DATA_INTEGRITY_ISSUE: ErrorSeverity.ERROR,
    IssueCategory.LOOKUP_MISS: ErrorSeverity.WARNING,
    IssueCategory.NO_VALID_CANDIDATE: ErrorSeverity.ERROR,
    IssueCategory.COMMIT_FAILURE: ErrorSeverity.CRITICAL,
}


class MigrationError(TenantfillError):
    """
    Base exception for all migration engine errors.

    Attributes:
        message: Human-readable error description.
        job_id: The job this error relates to, if known.
        category: Issue category used for logging and alerting.
    """

    category: IssueCategory | None = None

    def __init__(self, message: str, job_id: str | None = None) -> None:
        self.message = message
        self.job_id = job_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[{self.job_id}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Dictionary form for logs and API responses."""
        return {
            "message": self.message,
            "job_id": self.job_id,
            "category": self.category.value if self.category else None,
        }


class CommitError(MigrationError):
    """
    Raised when the atomic write of a page fails.

    None of the page's mutations were applied. The staged mutations are
    attached so the caller can keep them for an operator-initiated retry.

    Attributes:
        batch_number: Page the commit belonged to.
        record_ids: Ids of the records whose updates were rejected.
        mutations: The rejected ``(record_id, fields)`` pairs.
        original_error: The underlying store error message.
    """

    category = IssueCategory.COMMIT_FAILURE

    def __init__(
        self,
        batch_number: int,
        mutations: Sequence[tuple[str, dict[str, Any]]],
        error: str,
        job_id: str | None = None,
    ) -> None:
        self.batch_number = batch_number
        self.mutations = list(mutations)
        self.record_ids = [record_id for record_id, _ in self.mutations]
        self.original_error = error
        super().__init__(
            message=(
                f"Commit of batch {batch_number} failed for "
                f"{len(self.record_ids)} records: {error}"
            ),
            job_id=job_id,
        )


class EngineStateError(MigrationError):
    """
    Raised when an engine operation is invalid for the current state.

    Attributes:
        current_state: State the engine was in.
        operation: The operation that was attempted.
    """

    def __init__(
        self,
        current_state: EngineState,
        operation: str,
        job_id: str | None = None,
    ) -> None:
        self.current_state = current_state
        self.operation = operation
        super().__init__(
            message=f"Cannot {operation} while engine is {current_state.value}",
            job_id=job_id,
        )


class DuplicateMutationError(MigrationError):
    """Raised when a record is staged twice for the same page."""

    def __init__(self, record_id: str, batch_number: int, job_id: str | None = None) -> None:
        self.record_id = record_id
        self.batch_number = batch_number
        super().__init__(
            message=f"Record {record_id} already staged in batch {batch_number}",
            job_id=job_id,
        )


class JobNotFoundError(MigrationError):
    """Raised when a job id is not part of the configured catalogue."""

    def __init__(self, job_id: str) -> None:
        super().__init__(message=f"Migration job not found: {job_id}", job_id=job_id)


__all__ = [
    "ErrorSeverity",
    "IssueCategory",
    "MigrationError",
    "CommitError",
    "EngineStateError",
    "DuplicateMutationError",
    "JobNotFoundError",
]
