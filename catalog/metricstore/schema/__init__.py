"""
Schema module for the catalog store.

This module provides the type system for versioned entities, including:
- Type definitions (EntityTypeDef, FieldDef, FieldKind, Severity)
- The built-in metric, domain and objective types
- Entity registry for type lookup and fingerprinting
- Payload validation for create and partial update

Invariants:
    - Every field change maps to exactly one severity
    - Unknown fields are rejected, never silently classified
    - All types must be registered before the registry is frozen
"""

from .catalog import BUILTIN_TYPES, DOMAIN, METRIC, OBJECTIVE
from .registry import (
    DuplicateRegistrationError,
    EntityRegistry,
    RegistryFrozenError,
    UnknownEntityTypeError,
    get_registry,
    reset_registry,
)
from .types import (
    CATEGORY_PRECEDENCE,
    RESERVED_METADATA_KEY,
    EntityTypeDef,
    FieldCategory,
    FieldDef,
    FieldKind,
    Severity,
    build_classification,
    field,
    resolve_category,
)
from .validate import validate_create, validate_partial, validate_payload

__all__ = [
    # Types
    "EntityTypeDef",
    "FieldDef",
    "FieldKind",
    "FieldCategory",
    "Severity",
    "CATEGORY_PRECEDENCE",
    "RESERVED_METADATA_KEY",
    "build_classification",
    "field",
    "resolve_category",
    # Built-in types
    "METRIC",
    "DOMAIN",
    "OBJECTIVE",
    "BUILTIN_TYPES",
    # Registry
    "EntityRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "UnknownEntityTypeError",
    "get_registry",
    "reset_registry",
    # Validation
    "validate_payload",
    "validate_create",
    "validate_partial",
]
