"""
File-backed entity store.

One JSON document per collection: an array of entity documents, each with
its version metadata inlined under "metadata".

Every mutating call reads the whole document, applies the change and writes
the whole document back while holding a single collection-wide guard key.

Invariants:
    - Writes are atomic: temp file in the same directory, fsync, os.replace
    - A failed write leaves the previous document in place
    - A missing file is an empty collection
    - A corrupt document raises StorageError and is never treated as empty
    - Entity order in the document is creation order

How to change safely:
    - Keep the temp file in the target's directory (os.replace must not
      cross filesystems)
    - Call lease.check() as the last step before os.replace
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import ConflictError, NotFoundError, StorageError
from ..models import Entity
from ..schema.types import EntityTypeDef
from .base import ListFilter, UpdateTransform, VersionedStore
from .guard import Lease

logger = logging.getLogger(__name__)


def _atomic_write_text(path: Path, content: str, fsync: bool = True) -> None:
    """Write content to path atomically.

    The temp file is removed on any failure so the target keeps its
    previous content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            if fsync:
                os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class FileBackedStore(VersionedStore):
    """Entity store persisting one collection as a JSON file.

    Example:
        >>> store = FileBackedStore(METRIC, "/var/lib/catalog/metrics.json")
        >>> entity = await store.create({"name": "Revenue", ...}, actor="alice")
        >>> entity.version
        '1.0.0'

    Args:
        entity_type: Type of the entities in this collection
        path: JSON document path
        indent: JSON indentation for the written document
        fsync: fsync the temp file before replacing the document
        lock_timeout_s: Default guard timeout
        clock: Injectable UTC clock
    """

    backend_name = "file"

    def __init__(
        self,
        entity_type: EntityTypeDef,
        path: str | Path,
        *,
        indent: Optional[int] = 2,
        fsync: bool = True,
        lock_timeout_s: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(entity_type, lock_timeout_s=lock_timeout_s, clock=clock)
        self.path = Path(path)
        self.indent = indent
        self.fsync = fsync

    def _guard_key(self, entity_id: str) -> str:
        return self._collection_key()

    def _collection_key(self) -> str:
        return f"file:{self.path.resolve()}"

    # ------------------------------------------------------------------
    # Document I/O
    # ------------------------------------------------------------------

    def _read_documents(self) -> List[Dict[str, Any]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError("read", f"{self.path}: {e}") from e

        if not raw.strip():
            return []
        try:
            documents = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError("read", f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(documents, list) or not all(isinstance(d, dict) for d in documents):
            raise StorageError("read", f"{self.path} is not an array of entity documents")
        return documents

    def _write_documents(self, documents: List[Dict[str, Any]], lease: Lease) -> None:
        content = json.dumps(documents, indent=self.indent, ensure_ascii=False)
        lease.check()
        try:
            _atomic_write_text(self.path, content + "\n", fsync=self.fsync)
        except OSError as e:
            raise StorageError("write", f"{self.path}: {e}") from e
        logger.debug(
            f"Wrote {len(documents)} {self.entity_type.name} documents",
            extra={"path": str(self.path)},
        )

    def _index_of(self, documents: List[Dict[str, Any]], entity_id: str) -> Optional[int]:
        id_field = self.entity_type.id_field
        for position, document in enumerate(documents):
            if document.get(id_field) == entity_id:
                return position
        return None

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _load(self, entity_id: str) -> Optional[Entity]:
        documents = self._read_documents()
        position = self._index_of(documents, entity_id)
        if position is None:
            return None
        return Entity.from_document(self.entity_type, documents[position])

    def _snapshot(self, list_filter: Optional[ListFilter]) -> List[Dict[str, Any]]:
        return self._read_documents()

    def _apply_create(self, entity: Entity, lease: Lease) -> None:
        documents = self._read_documents()
        if self._index_of(documents, entity.entity_id) is not None:
            raise ConflictError(self.entity_type.name, entity.entity_id)
        documents.append(entity.to_document())
        self._write_documents(documents, lease)

    def _apply_update(
        self,
        entity_id: str,
        transform: UpdateTransform,
        lease: Lease,
    ) -> Tuple[Entity, bool]:
        documents = self._read_documents()
        position = self._index_of(documents, entity_id)
        if position is None:
            raise NotFoundError(self.entity_type.name, entity_id)

        current = Entity.from_document(self.entity_type, documents[position])
        updated = transform(current)
        if updated is None:
            return current, False

        documents[position] = updated.to_document()
        self._write_documents(documents, lease)
        return updated, True

    def _apply_delete(self, entity_id: str, lease: Lease) -> None:
        documents = self._read_documents()
        position = self._index_of(documents, entity_id)
        if position is None:
            raise NotFoundError(self.entity_type.name, entity_id)
        del documents[position]
        self._write_documents(documents, lease)

    def _apply_restore(self, entities: Sequence[Entity], replace: bool, lease: Lease) -> int:
        documents = self._read_documents()
        for entity in entities:
            position = self._index_of(documents, entity.entity_id)
            if position is None:
                documents.append(entity.to_document())
            elif replace:
                documents[position] = entity.to_document()
            else:
                raise ConflictError(self.entity_type.name, entity.entity_id)
        self._write_documents(documents, lease)
        return len(entities)
