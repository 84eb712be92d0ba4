"""
Payload validation for catalog entity types.

This module provides validation utilities:
- Full payload validation for create (required fields, defaults)
- Partial payload validation for update
- Helpful error messages with suggestions for unknown fields

Invariants:
    - Validation errors are deterministic (fields checked in schema order)
    - Unknown fields are always rejected, never defaulted
    - Validated payloads are deep copies; callers' dicts are never aliased
"""

from __future__ import annotations

import copy
from difflib import get_close_matches
from typing import Any, Dict, List, Mapping, Tuple

from ..errors import UnknownFieldError, ValidationError
from .types import RESERVED_METADATA_KEY, EntityTypeDef


def _check_unknown(entity_type: EntityTypeDef, payload: Mapping[str, Any]) -> None:
    known_fields = entity_type.get_field_names()
    for field_name in payload:
        if field_name == RESERVED_METADATA_KEY or field_name in known_fields:
            continue
        suggestions = get_close_matches(field_name, known_fields, n=3)
        raise UnknownFieldError(field_name, entity_type.name, suggestions)


def validate_payload(
    entity_type: EntityTypeDef,
    payload: Mapping[str, Any],
    *,
    partial: bool = False,
) -> Tuple[bool, List[str]]:
    """Validate field values against an entity type.

    Args:
        entity_type: Entity type to validate against
        payload: Field values (the reserved metadata key is ignored)
        partial: When True, absent required fields are not reported

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    for field_def in entity_type.fields:
        if field_def.name not in payload:
            if field_def.required and not partial:
                errors.append(f"Field '{field_def.name}' is required")
            continue
        ok, error = field_def.validate_value(payload[field_def.name])
        if not ok and error:
            errors.append(error)

    return len(errors) == 0, errors


def validate_create(
    entity_type: EntityTypeDef,
    payload: Mapping[str, Any],
) -> Dict[str, Any]:
    """Validate a create payload and apply declared defaults.

    Optional fields given as None are treated as absent.

    Returns:
        New dict of field values in schema order

    Raises:
        UnknownFieldError: If an unknown field is provided
        ValidationError: If the metadata block is supplied or validation fails
    """
    _check_unknown(entity_type, payload)
    if RESERVED_METADATA_KEY in payload:
        raise ValidationError(
            f"'{RESERVED_METADATA_KEY}' is managed by the store and cannot be supplied on create",
            field_name=RESERVED_METADATA_KEY,
        )

    cleaned = {k: v for k, v in payload.items() if v is not None}
    is_valid, errors = validate_payload(entity_type, cleaned)
    if not is_valid:
        raise ValidationError(
            f"Validation failed for {entity_type.name}: {'; '.join(errors)}",
            errors=errors,
        )

    fields: Dict[str, Any] = {}
    for field_def in entity_type.fields:
        if field_def.name in cleaned:
            fields[field_def.name] = copy.deepcopy(cleaned[field_def.name])
        elif field_def.default is not None:
            fields[field_def.name] = copy.deepcopy(field_def.default)
    return fields


def validate_partial(
    entity_type: EntityTypeDef,
    payload: Mapping[str, Any],
) -> None:
    """Validate a partial update payload.

    None clears an optional field and is rejected for required fields.

    Raises:
        UnknownFieldError: If an unknown field is provided
        ValidationError: If a value has the wrong shape
    """
    _check_unknown(entity_type, payload)
    is_valid, errors = validate_payload(entity_type, payload, partial=True)
    if not is_valid:
        raise ValidationError(
            f"Validation failed for {entity_type.name}: {'; '.join(errors)}",
            errors=errors,
        )

