"""
Owner-field and candidate validation rules.

Both checks are pure and total: they never raise. Any unexpected error
while inspecting a value is converted into an invalid result with issue
``INTERNAL_ERROR``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Final

from tenantfill.migration.models import ValidationIssue, ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_OWNER_FIELD: Final = "company_id"
DEFAULT_MIN_LENGTH: Final = 3


class _Undefined:
    """Marks a field that is present but holds no value at all."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Final = _Undefined()


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if value is UNDEFINED:
        return "undefined"
    return type(value).__name__


def validate_owner_field(
    record: Any,
    field: str = DEFAULT_OWNER_FIELD,
    *,
    min_length: int = DEFAULT_MIN_LENGTH,
) -> ValidationResult:
    """
    Check whether a record carries a usable owner identifier.

    Args:
        record: Document body (anything; non-mappings have no property)
        field: Owner field name
        min_length: Shortest accepted identifier after trimming

    Returns:
        ValidationResult. On success ``value`` is the trimmed identifier
        and ``reason`` is ``"valid: <value>"``.

    Example:
        >>> validate_owner_field({"company_id": "ab"}).reason
        "company_id too short (2 characters): 'ab'"
        >>> validate_owner_field({}).has_property
        False
    """
    try:
        has_property = isinstance(record, Mapping) and field in record
        if not has_property:
            return ValidationResult(
                is_valid=False,
                has_property=False,
                value=None,
                type="undefined",
                reason=f"property missing: '{field}' does not exist",
                issue=ValidationIssue.PROPERTY_MISSING,
            )

        return _check_identifier(record[field], field, min_length=min_length)
    except Exception as e:
        logger.debug("Owner field validation failed: %s", e, exc_info=True)
        return ValidationResult(
            is_valid=False,
            has_property=False,
            value=None,
            type="unknown",
            reason=f"validation error: {e}",
            issue=ValidationIssue.INTERNAL_ERROR,
        )


def classify_candidate(candidate: Any) -> ValidationResult:
    """
    Check whether a candidate identifier is worth looking up.

    Null, undefined and blank candidates are missing values; anything
    other than a string is a wrong type. No length rule applies.
    """
    try:
        return _check_identifier(candidate, "candidate", min_length=1)
    except Exception as e:
        logger.debug("Candidate validation failed: %s", e, exc_info=True)
        return ValidationResult(
            is_valid=False,
            has_property=True,
            value=None,
            type="unknown",
            reason=f"validation error: {e}",
            issue=ValidationIssue.INTERNAL_ERROR,
        )


def _check_identifier(value: Any, label: str, *, min_length: int) -> ValidationResult:
    type_name = _type_name(value)

    def invalid(reason: str, issue: ValidationIssue) -> ValidationResult:
        return ValidationResult(
            is_valid=False,
            has_property=True,
            value=value,
            type=type_name,
            reason=reason,
            issue=issue,
        )

    if value is None:
        return invalid(f"{label} is null", ValidationIssue.VALUE_NULL)
    if value is UNDEFINED:
        return invalid(f"{label} is undefined", ValidationIssue.VALUE_UNDEFINED)
    if not isinstance(value, str):
        return invalid(
            f"wrong type ({type_name}): {label} is not a string",
            ValidationIssue.WRONG_TYPE,
        )

    trimmed = value.strip()
    if not trimmed:
        return invalid(f"{label} is empty", ValidationIssue.EMPTY)
    if len(trimmed) < min_length:
        return invalid(
            f"{label} too short ({len(trimmed)} characters): {trimmed!r}",
            ValidationIssue.TOO_SHORT,
        )

    return ValidationResult(
        is_valid=True,
        has_property=True,
        value=trimmed,
        type=type_name,
        reason=f"valid: {trimmed}",
    )


__all__ = [
    "DEFAULT_MIN_LENGTH",
    "DEFAULT_OWNER_FIELD",
    "UNDEFINED",
    "ValidationIssue",
    "ValidationResult",
    "classify_candidate",
    "validate_owner_field",
]
