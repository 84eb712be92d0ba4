"""
Change classification for versioned entities.

Compares the stored state of an entity with a proposed partial payload and
reports which top-level fields changed and how severe the change is:
- MAJOR: the meaning of the entity changed (formula, unit, category, ...)
- MINOR: descriptive identity changed (name, description, tier, ...)
- PATCH: everything else (tags, governance, status, ...)

Invariants:
    - Equality is deep and structural; list order matters
    - bool values never compare equal to numbers
    - Overall severity is the highest severity among changed fields
    - A changed object field takes the highest severity of its own entry
      and of any dotted-path entry (e.g. "definition.formula") whose nested
      value changed
    - No changed fields means severity None (a no-op update)
    - Creation is never classified; it is always MAJOR with fields ["*"]

Example:
    >>> classifier = ChangeClassifier(METRIC)
    >>> result = classifier.classify(entity, {"name": "New Name"})
    >>> result.severity
    <Severity.MINOR: 'minor'>
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional

from ..errors import ValidationError
from ..models import CREATION_FIELDS, Entity
from ..schema.types import RESERVED_METADATA_KEY, EntityTypeDef, Severity, resolve_path
from ..schema.validate import validate_partial

logger = logging.getLogger(__name__)


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality over JSON values."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        return a.keys() == b.keys() and all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    return type(a) is type(b) and a == b


@dataclass(frozen=True)
class Classification:
    """Result of classifying a proposed change.

    Attributes:
        changed_fields: Names of the fields whose values differ
        severity: Highest severity among them, None if nothing changed
    """

    changed_fields: FrozenSet[str]
    severity: Optional[Severity]

    @property
    def is_noop(self) -> bool:
        return self.severity is None

    def sorted_fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.changed_fields))


CREATION = Classification(
    changed_fields=frozenset(CREATION_FIELDS),
    severity=Severity.MAJOR,
)


class ChangeClassifier:
    """Classifies proposed changes against one entity type's table."""

    def __init__(self, entity_type: EntityTypeDef) -> None:
        self.entity_type = entity_type

    def classify(self, old: Optional[Entity], proposed: Mapping[str, Any]) -> Classification:
        """Diff a proposed partial payload against the stored entity.

        Args:
            old: Stored entity, or None on the creation path
            proposed: Partial payload of top-level field values

        Returns:
            Classification of the change

        Raises:
            UnknownFieldError: If proposed names a field the type lacks
            ValidationError: If a value has the wrong shape, or the natural
                id or metadata block would change
        """
        if old is None:
            return CREATION

        validate_partial(self.entity_type, proposed)
        self._check_immutable(old, proposed)

        severities: Dict[str, Severity] = {}
        for name, value in proposed.items():
            if name in (RESERVED_METADATA_KEY, self.entity_type.id_field):
                continue
            current = old.fields.get(name)
            if not deep_equal(current, value):
                severities[name] = self._severity_of_change(name, current, value)

        severity = Severity.highest(severities.values())
        if severity is not None:
            logger.debug(
                f"Classified {self.entity_type.name} '{old.entity_id}' change as "
                f"{severity.value}: {sorted(severities)}"
            )
        return Classification(changed_fields=frozenset(severities), severity=severity)

    def _severity_of_change(self, name: str, current: Any, proposed: Any) -> Severity:
        """Severity of a changed field, raised by any changed nested path."""
        severity = self.entity_type.severity_of(name)
        for path, path_severity in self.entity_type.nested_classification(name).items():
            if path_severity.rank <= severity.rank:
                continue
            subpath = path[len(name) + 1 :]
            if not deep_equal(resolve_path(current, subpath), resolve_path(proposed, subpath)):
                severity = path_severity
        return severity

    def _check_immutable(self, old: Entity, proposed: Mapping[str, Any]) -> None:
        id_field = self.entity_type.id_field
        if id_field in proposed and not deep_equal(proposed[id_field], old.entity_id):
            raise ValidationError(
                f"Field '{id_field}' is the natural id of {self.entity_type.name} "
                f"'{old.entity_id}' and cannot change",
                field_name=id_field,
            )
        if RESERVED_METADATA_KEY in proposed and not deep_equal(
            proposed[RESERVED_METADATA_KEY], old.metadata.to_document()
        ):
            raise ValidationError(
                f"'{RESERVED_METADATA_KEY}' is managed by the store and cannot be updated",
                field_name=RESERVED_METADATA_KEY,
            )
