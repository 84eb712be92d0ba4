"""
Error types for the metric catalog store.

This module defines every exception raised by the versioned entity store:
- MetricStoreError: Base exception
- ValidationError: Malformed or unknown payload fields
- UnknownFieldError: Unknown field in payload (a ValidationError)
- ConflictError: Natural id already exists on create/import
- NotFoundError: Missing id on get/update/delete
- VersioningError: Unparseable version string or broken change history
- ConcurrencyTimeout: Guard wait exceeded its bound
- StorageError: Persisted state unreadable or corrupt

Invariants:
    - All errors inherit from MetricStoreError
    - Errors carry a stable code and a details dict for outer layers
    - Errors propagate unmodified; the store never retries internally
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class MetricStoreError(Exception):
    """Base exception for all catalog store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "METRIC_STORE_ERROR"
        self.details = details or {}


class ValidationError(MetricStoreError):
    """Payload validation failed.

    Raised when:
    - A field is not part of the entity type
    - A field value has the wrong structural shape
    - A required field is missing on create
    - An immutable field (natural id, version metadata) is changed
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class UnknownFieldError(ValidationError):
    """Unknown field in payload.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown field
        type_name: The entity type being written
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        type_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown field '{field_name}' in type '{type_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(msg, field_name=field_name, errors=[msg])
        self.details["type_name"] = type_name
        self.details["suggestions"] = suggestions
        self.type_name = type_name
        self.suggestions = suggestions


class ConflictError(MetricStoreError):
    """An entity with the same natural id already exists."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} '{entity_id}' already exists",
            code="CONFLICT",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class NotFoundError(MetricStoreError):
    """Entity not found.

    Raised by get, update and delete when the natural id is absent.
    """

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} with identifier '{entity_id}' not found",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class VersioningError(MetricStoreError):
    """Version string or change history is invalid.

    Raised when:
    - A stored version does not parse as MAJOR.MINOR.PATCH
    - A change history breaks ordering or consistency rules
    """

    def __init__(self, message: str, version: Optional[str] = None) -> None:
        super().__init__(message, code="VERSIONING_ERROR", details={"version": version})
        self.version = version


class ConcurrencyTimeout(MetricStoreError):
    """A mutating call could not acquire its guard within the allowed wait.

    Also raised inside the worker when the deadline elapses, or the caller
    is cancelled, between acquiring the guard and committing the write; in
    that case nothing is persisted.
    """

    def __init__(self, key: str, timeout_s: float) -> None:
        super().__init__(
            f"Could not complete write on '{key}' within {timeout_s:.3f}s",
            code="CONCURRENCY_TIMEOUT",
            details={"key": key, "timeout_s": timeout_s},
        )
        self.key = key
        self.timeout_s = timeout_s


class StorageError(MetricStoreError):
    """Persisted state could not be read or written."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(
            f"Storage error during {operation}: {detail}",
            code="STORAGE_ERROR",
            details={"operation": operation, "detail": detail},
        )
        self.operation = operation
        self.detail = detail
