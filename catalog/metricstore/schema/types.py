"""
Core type definitions for the catalog entity schema.

This module defines the foundational types every store operation is
validated against:
- FieldKind: Structural shape of a field value
- Severity: Version bump class of a change (major/minor/patch)
- FieldCategory: Logical grouping of fields
- FieldDef: Individual field within an entity type
- EntityTypeDef: Definition of an entity type plus its classification table

Invariants:
    - Every entity type has exactly one natural-id field
    - The classification table only names declared fields, or dotted paths
      rooted at a declared field (e.g. "definition.formula")
    - Fields absent from the classification table classify as PATCH
    - A field listed under several severities takes the highest one
    - "metadata" is reserved for the version metadata block

How to change safely:
    - Adding a field is always safe (it classifies as PATCH until listed)
    - Moving a field to a higher severity changes future bumps only
    - Never rename the natural-id field of an existing type

Example:
    >>> from catalog.metricstore.schema.types import EntityTypeDef, Severity, field
    >>> Widget = EntityTypeDef(
    ...     name="widget",
    ...     id_field="widget_id",
    ...     id_prefix="WIDGET",
    ...     fields=(
    ...         field("widget_id", "str", required=True),
    ...         field("name", "str", required=True),
    ...     ),
    ...     classification=build_classification({Severity.MINOR: ["name"]}),
    ... )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)

RESERVED_METADATA_KEY = "metadata"


class FieldKind(Enum):
    """Supported field shapes.

    These map to validation rules; storage is always JSON.
    """

    STRING = "str"
    INTEGER = "int"
    FLOAT = "float"
    BOOLEAN = "bool"
    ENUM = "enum"  # Enumerated string values
    LIST_STRING = "list_str"  # List of strings
    LIST_OBJECT = "list_obj"  # List of JSON objects
    OBJECT = "object"  # JSON object with string keys
    JSON = "json"  # Any JSON value

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")


class Severity(Enum):
    """Semantic-version bump class of a change."""

    PATCH = "patch"
    MINOR = "minor"
    MAJOR = "major"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities: Iterable[Severity]) -> Severity | None:
        """Return the highest-ranked severity, or None for an empty input."""
        best: Severity | None = None
        for sev in severities:
            if best is None or sev.rank > best.rank:
                best = sev
        return best


_SEVERITY_RANK = {Severity.PATCH: 1, Severity.MINOR: 2, Severity.MAJOR: 3}


class FieldCategory(Enum):
    """Logical grouping of entity fields.

    Declaration order is the precedence order used by resolve_category().
    """

    DEFINITION = "definition"
    IDENTITY = "identity"
    GOVERNANCE = "governance"
    PRESENTATION = "presentation"
    RELATIONSHIPS = "relationships"


CATEGORY_PRECEDENCE: tuple[FieldCategory, ...] = tuple(FieldCategory)


def resolve_category(*candidates: FieldCategory) -> FieldCategory:
    """Pick one category for a field that plausibly belongs to several.

    The first candidate in CATEGORY_PRECEDENCE order wins
    (definition > identity > governance > presentation > relationships).
    """
    if not candidates:
        raise ValueError("resolve_category() needs at least one candidate")
    return min(candidates, key=CATEGORY_PRECEDENCE.index)


def build_classification(
    groups: Mapping[Severity, Iterable[str]],
) -> dict[str, Severity]:
    """Flatten severity groups into a field -> severity table.

    A field listed under more than one severity keeps the highest one.

    Args:
        groups: Mapping of severity to the field names it covers

    Returns:
        Dictionary mapping field name to its severity
    """
    table: dict[str, Severity] = {}
    for severity, names in groups.items():
        for name in names:
            current = table.get(name)
            if current is not None and current != severity:
                logger.debug(
                    f"Field '{name}' listed as {current.value} and {severity.value}; "
                    f"keeping the higher severity"
                )
            if current is None or severity.rank > current.rank:
                table[name] = severity
    return table


def is_json_value(value: Any) -> bool:
    """Whether value is composed only of JSON types."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, list):
        return all(is_json_value(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and is_json_value(v) for k, v in value.items())
    return False


def resolve_path(document: Any, path: str) -> Any:
    """Follow a dotted path through nested objects; None when absent."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field within an entity type.

    Attributes:
        name: Field name (top-level key in the entity document)
        kind: The structural shape of the field value
        category: Logical grouping of the field
        required: Whether the field is required on create
        default: Default value applied on create when absent
        enum_values: Valid values if kind is ENUM
        searchable: Whether substring search covers this field
        description: Human-readable description
    """

    name: str
    kind: FieldKind
    category: FieldCategory = FieldCategory.PRESENTATION
    required: bool = False
    default: Any = None
    enum_values: tuple[str, ...] | None = None
    searchable: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if self.name == RESERVED_METADATA_KEY:
            raise ValueError(f"Field name '{RESERVED_METADATA_KEY}' is reserved")
        if self.kind == FieldKind.ENUM and not self.enum_values:
            raise ValueError(f"enum_values required for ENUM field '{self.name}'")

    def validate_value(self, value: Any) -> tuple[bool, str | None]:
        """Validate a value against this field definition.

        Args:
            value: The value to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if self.required:
                return False, f"Field '{self.name}' is required"
            return True, None

        validators = {
            FieldKind.STRING: lambda v: isinstance(v, str),
            FieldKind.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
            FieldKind.FLOAT: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
            FieldKind.BOOLEAN: lambda v: isinstance(v, bool),
            FieldKind.LIST_STRING: lambda v: isinstance(v, list)
            and all(isinstance(i, str) for i in v),
            FieldKind.LIST_OBJECT: lambda v: isinstance(v, list)
            and all(isinstance(i, dict) and is_json_value(i) for i in v),
            FieldKind.OBJECT: lambda v: isinstance(v, dict) and is_json_value(v),
            FieldKind.JSON: is_json_value,
        }

        if self.kind == FieldKind.ENUM:
            if not isinstance(value, str):
                return False, f"Field '{self.name}' must be a string, got {type(value).__name__}"
            if self.enum_values and value not in self.enum_values:
                return (
                    False,
                    f"Field '{self.name}' must be one of {self.enum_values}, got '{value}'",
                )
            return True, None

        validator = validators.get(self.kind)
        if validator and not validator(value):
            return (
                False,
                f"Field '{self.name}' has invalid shape for kind {self.kind.value} "
                f"(got {type(value).__name__})",
            )

        return True, None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "category": self.category.value,
        }
        if self.required:
            result["required"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.searchable:
            result["searchable"] = True
        if self.description:
            result["description"] = self.description
        return result


def field(
    name: str,
    kind: str | FieldKind,
    *,
    category: FieldCategory = FieldCategory.PRESENTATION,
    required: bool = False,
    default: Any = None,
    enum_values: tuple[str, ...] | None = None,
    searchable: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> name = field("name", "str", required=True, searchable=True)
        >>> tier = field("tier", "enum", enum_values=("Tier-1", "Tier-2"))
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        category=category,
        required=required,
        default=default,
        enum_values=enum_values,
        searchable=searchable,
        description=description,
    )


@dataclass(frozen=True)
class EntityTypeDef:
    """Definition of a versioned entity type.

    Attributes:
        name: Type name (e.g. "metric"), also the persisted type discriminator
        id_field: Name of the natural-id field
        id_prefix: Prefix for generated ids (e.g. "METRIC")
        fields: Tuple of field definitions
        classification: Field name (or dotted path into an object field)
            -> severity table
        owner_paths: Dotted paths matched by the "owner" list filter
        description: Human-readable description

    Invariants:
        - id_field is declared in fields and is a STRING
        - classification names only declared fields
        - owner_paths start at a declared field
    """

    name: str
    id_field: str
    id_prefix: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    classification: Mapping[str, Severity] = dataclass_field(
        default_factory=dict, hash=False
    )
    owner_paths: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        if not self.name:
            raise ValueError("Entity type name cannot be empty")

        field_names = [f.name for f in self.fields]
        if len(field_names) != len(set(field_names)):
            raise ValueError(f"Duplicate field name in entity type '{self.name}'")

        id_def = self.get_field(self.id_field)
        if id_def is None:
            raise ValueError(f"id_field '{self.id_field}' is not a field of '{self.name}'")
        if id_def.kind != FieldKind.STRING:
            raise ValueError(f"id_field '{self.id_field}' of '{self.name}' must be a string")

        unknown = sorted(
            name for name in self.classification if name.split(".", 1)[0] not in field_names
        )
        if unknown:
            raise ValueError(
                f"Classification table of '{self.name}' names unknown fields: {unknown}"
            )

        for path in self.owner_paths:
            root = path.split(".", 1)[0]
            if root not in field_names:
                raise ValueError(f"owner path '{path}' of '{self.name}' has unknown root")

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get list of all field names."""
        return [f.name for f in self.fields]

    def get_required_fields(self) -> list[FieldDef]:
        """Get list of required fields."""
        return [f for f in self.fields if f.required]

    def get_searchable_fields(self) -> list[FieldDef]:
        """Get list of fields covered by substring search."""
        return [f for f in self.fields if f.searchable]

    def severity_of(self, field_name: str) -> Severity:
        """Severity of a change to field_name; unlisted fields are PATCH."""
        return self.classification.get(field_name, Severity.PATCH)

    def nested_classification(self, field_name: str) -> dict[str, Severity]:
        """Dotted-path entries of the table rooted at field_name."""
        prefix = f"{field_name}."
        return {
            path: severity
            for path, severity in self.classification.items()
            if path.startswith(prefix)
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        return {
            "name": self.name,
            "id_field": self.id_field,
            "id_prefix": self.id_prefix,
            "fields": [f.to_dict() for f in self.fields],
            "classification": {
                name: sev.value for name, sev in sorted(self.classification.items())
            },
            "owner_paths": list(self.owner_paths),
            "description": self.description,
        }
