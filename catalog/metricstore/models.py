"""
Data model for versioned catalog entities.

- ChangeEntry: one immutable audit record describing a single transition
- VersionMetadata: version, attribution timestamps and the change history
- Entity: field values of one entity plus its VersionMetadata
- UpdateResult: outcome of an update, distinguishing no-ops

ChangeEntry and VersionMetadata are frozen pydantic models so the same
shape is validated whenever it is read back from a JSON document, a SQLite
column or an export bundle.

Invariants:
    - change_history is a tuple and never mutated after construction
    - Entity documents inline the metadata block under "metadata"
    - Entity field dicts returned by stores are private copies
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import StorageError, VersioningError
from .schema.types import RESERVED_METADATA_KEY, EntityTypeDef, Severity

CREATION_FIELDS: Tuple[str, ...] = ("*",)


class ChangeEntry(BaseModel):
    """One immutable audit record.

    Attributes:
        sequence: Per-entity counter, 1 for the creation entry
        version: Version produced by this entry
        timestamp: ISO-8601 UTC time of the change
        changed_by: Actor identity supplied by the caller
        change_type: Severity of the change
        changes_summary: Human-readable summary
        fields_changed: Sorted changed field names, ("*",) on creation
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    sequence: int = Field(ge=1)
    version: str
    timestamp: str
    changed_by: str
    change_type: Severity
    changes_summary: str
    fields_changed: Tuple[str, ...]


class VersionMetadata(BaseModel):
    """Version metadata block inlined into every entity."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str
    created_at: str
    created_by: str
    last_updated: str
    last_updated_by: str
    change_history: Tuple[ChangeEntry, ...]

    @model_validator(mode="before")
    @classmethod
    def _number_legacy_history(cls, data: Any) -> Any:
        # Histories written before sequence numbers existed are numbered by position.
        if isinstance(data, dict):
            history = data.get("change_history")
            if isinstance(history, (list, tuple)) and any(
                isinstance(e, dict) and "sequence" not in e for e in history
            ):
                data = dict(data)
                data["change_history"] = [
                    {**e, "sequence": i} if isinstance(e, dict) and "sequence" not in e else e
                    for i, e in enumerate(history, start=1)
                ]
        return data

    @property
    def last_entry(self) -> Optional[ChangeEntry]:
        return self.change_history[-1] if self.change_history else None

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready representation of the block."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: Any) -> VersionMetadata:
        """Validate a persisted metadata block.

        Raises:
            VersioningError: If the block does not have the expected shape
        """
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise VersioningError(f"Invalid version metadata: {e}") from e


@dataclass(frozen=True)
class Entity:
    """A versioned entity.

    Attributes:
        entity_type: Entity type name (e.g. "metric")
        entity_id: Natural id
        fields: Field values, including the natural-id field
        metadata: Version metadata block
    """

    entity_type: str
    entity_id: str
    fields: Mapping[str, Any]
    metadata: VersionMetadata

    @property
    def version(self) -> str:
        return self.metadata.version

    @property
    def change_history(self) -> Tuple[ChangeEntry, ...]:
        return self.metadata.change_history

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_document(self) -> Dict[str, Any]:
        """Persisted document form: fields plus the inlined metadata block."""
        document = copy.deepcopy(dict(self.fields))
        document[RESERVED_METADATA_KEY] = self.metadata.to_document()
        return document

    @classmethod
    def from_document(cls, entity_type: EntityTypeDef, document: Mapping[str, Any]) -> Entity:
        """Rebuild an entity from its persisted document form.

        Raises:
            StorageError: If the document lacks the natural id or metadata
            VersioningError: If the metadata block is malformed
        """
        if not isinstance(document, Mapping):
            raise StorageError("decode", f"{entity_type.name} document is not an object")
        entity_id = document.get(entity_type.id_field)
        if not isinstance(entity_id, str) or not entity_id:
            raise StorageError(
                "decode", f"{entity_type.name} document has no '{entity_type.id_field}'"
            )
        if RESERVED_METADATA_KEY not in document:
            raise StorageError("decode", f"{entity_type.name} '{entity_id}' has no metadata")
        fields = {
            k: copy.deepcopy(v) for k, v in document.items() if k != RESERVED_METADATA_KEY
        }
        return cls(
            entity_type=entity_type.name,
            entity_id=entity_id,
            fields=fields,
            metadata=VersionMetadata.from_document(document[RESERVED_METADATA_KEY]),
        )


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of EntityStore.update().

    changed is False for a no-op update; entity is then the unchanged
    stored entity and nothing was written.
    """

    entity: Entity
    changed: bool
