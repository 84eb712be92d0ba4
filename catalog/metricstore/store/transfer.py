"""
Export and import of versioned entities between stores.

An export bundle is a JSON object:
    {
        "format": "metricstore-export",
        "format_version": 1,
        "entity_type": "metric",
        "schema_fingerprint": "<sha256 of the registry>",
        "exported_at": "<ISO-8601 UTC>",
        "entities": [<entity document>, ...]
    }

Entity documents have the persisted shape (fields plus inlined "metadata"),
so a bundle exported from one backend restores into the other with the
same version and change history.

Invariants:
    - Import never re-versions; metadata is written verbatim
    - Every imported metadata block passes verify_history() first
    - Import is all-or-nothing: one bad entry rejects the whole bundle
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..errors import StorageError, ValidationError
from ..models import Entity
from ..schema.registry import get_registry
from ..schema.types import RESERVED_METADATA_KEY
from ..schema.validate import validate_payload
from ..versioning.audit import format_timestamp, utc_now, verify_history
from .base import VersionedStore

logger = logging.getLogger(__name__)

BUNDLE_FORMAT = "metricstore-export"
BUNDLE_FORMAT_VERSION = 1


async def export_bundle(store: VersionedStore) -> Dict[str, Any]:
    """Export every entity of a store as a bundle dict."""
    listing = await store.list()
    entities = [entity.to_document() for entity in listing]
    bundle = {
        "format": BUNDLE_FORMAT,
        "format_version": BUNDLE_FORMAT_VERSION,
        "entity_type": store.entity_type.name,
        "schema_fingerprint": get_registry().fingerprint,
        "exported_at": format_timestamp(utc_now()),
        "entities": entities,
    }
    logger.info(
        f"Exported {len(entities)} {store.entity_type.name} entities",
        extra={"backend": store.backend_name},
    )
    return bundle


def parse_bundle(store: VersionedStore, bundle: Mapping[str, Any]) -> List[Entity]:
    """Validate a bundle against a store's entity type.

    Returns:
        Entities in bundle order

    Raises:
        ValidationError: If the envelope or an entity's fields are invalid
        VersioningError: If an entity's history is broken
    """
    if not isinstance(bundle, Mapping) or bundle.get("format") != BUNDLE_FORMAT:
        raise ValidationError(f"Not a {BUNDLE_FORMAT} bundle")
    if bundle.get("format_version") != BUNDLE_FORMAT_VERSION:
        raise ValidationError(
            f"Unsupported bundle format_version {bundle.get('format_version')!r}"
        )
    entity_type = store.entity_type
    if bundle.get("entity_type") != entity_type.name:
        raise ValidationError(
            f"Bundle holds {bundle.get('entity_type')!r} entities, "
            f"store holds {entity_type.name!r}"
        )
    fingerprint = bundle.get("schema_fingerprint")
    if fingerprint and fingerprint != get_registry().fingerprint:
        logger.warning(
            "Bundle was exported under a different schema",
            extra={"bundle_fingerprint": fingerprint},
        )

    documents = bundle.get("entities")
    if not isinstance(documents, list):
        raise ValidationError("Bundle 'entities' must be an array")

    entities: List[Entity] = []
    seen = set()
    for position, document in enumerate(documents):
        try:
            entity = Entity.from_document(entity_type, document)
        except StorageError as e:
            raise ValidationError(f"Bundle entry {position}: {e.message}") from e

        fields = {k: v for k, v in document.items() if k != RESERVED_METADATA_KEY}
        is_valid, errors = validate_payload(entity_type, fields)
        unknown = sorted(set(fields) - set(entity_type.get_field_names()))
        if unknown:
            errors.append(f"Unknown fields: {', '.join(unknown)}")
        if not is_valid or unknown:
            raise ValidationError(
                f"Bundle entry '{entity.entity_id}' is invalid: {'; '.join(errors)}",
                errors=errors,
            )
        if entity.entity_id in seen:
            raise ValidationError(f"Bundle contains '{entity.entity_id}' more than once")
        seen.add(entity.entity_id)

        verify_history(entity.metadata, entity.entity_id)
        entities.append(entity)
    return entities


async def import_bundle(
    store: VersionedStore,
    bundle: Mapping[str, Any],
    *,
    replace: bool = False,
    timeout: Optional[float] = None,
) -> int:
    """Restore a bundle into a store.

    Returns:
        Number of entities written

    Raises:
        ValidationError: If the bundle is malformed
        VersioningError: If an entity's history is broken
        ConflictError: If an id exists and replace is False
    """
    entities = parse_bundle(store, bundle)
    written = await store.restore(entities, replace=replace, timeout=timeout)
    logger.info(
        f"Imported {written} {store.entity_type.name} entities",
        extra={"backend": store.backend_name, "replace": replace},
    )
    return written


def write_bundle(bundle: Mapping[str, Any], path: str | Path) -> None:
    Path(path).write_text(json.dumps(bundle, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def read_bundle(path: str | Path) -> Dict[str, Any]:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise StorageError("read", f"Cannot read bundle {path}: {e}") from e


__all__ = [
    "BUNDLE_FORMAT",
    "BUNDLE_FORMAT_VERSION",
    "export_bundle",
    "import_bundle",
    "parse_bundle",
    "read_bundle",
    "write_bundle",
]
