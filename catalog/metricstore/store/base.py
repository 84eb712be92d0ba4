"""
Entity store contract and the versioning pipeline shared by all backends.

EntityStore is the whole programmatic surface outer layers (HTTP handlers,
CLI, UI) may use: create, get, update, delete, list.

VersionedStore implements that contract once. Every mutating call runs:
    guard.acquire(key) -> read current -> ChangeClassifier.classify()
    -> semver.bump() (via AuditTrail) -> AuditTrail.append()
    -> lease.check() -> persist -> guard released
Backends only provide storage primitives, so versioning and audit
semantics cannot diverge between them.

Invariants:
    - Reads (get, exists, count, list) never touch the guard
    - A no-op update performs no write and returns changed=False
    - Errors propagate unmodified; nothing is retried here
    - Blocking storage primitives run in the default executor
    - A cancelled caller keeps the guard until its worker thread finishes,
      and that worker refuses to commit once it reaches lease.check()

How to change safely:
    - New backends implement the _load/_snapshot/_apply_* primitives only
    - Never classify, bump or build metadata inside a backend
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
import re
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from ..errors import NotFoundError, StorageError, ValidationError
from ..models import Entity, UpdateResult
from ..schema.types import EntityTypeDef, resolve_path
from ..schema.validate import validate_create, validate_partial
from ..versioning.audit import AuditTrail, utc_now
from ..versioning.classifier import ChangeClassifier, Classification
from .guard import ConcurrencyGuard, Lease

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_ID_ALPHABET = string.ascii_lowercase + string.digits

# Transform applied to the current entity inside an update; returns the new
# entity, or None when the update is a no-op.
UpdateTransform = Callable[[Entity], Optional[Entity]]


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
        if value == 0:
            return "".join(reversed(digits))


def generate_id(prefix: str, name: Optional[str] = None) -> str:
    """Generate a natural id: PREFIX-<slug>-<base36 ms>-<6 random chars>."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")[:48] or "entity"
    timestamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}-{slug}-{timestamp}-{suffix}"


@dataclass(frozen=True)
class ListFilter:
    """Predicates for EntityStore.list().

    All given predicates must hold. Absent (None) predicates match anything.

    Attributes:
        category: Equality on the "category" field
        tier: Equality on the "tier" field
        status: Equality on the "status" field
        owner: Equality against any of the type's owner paths
        tags: Matches when the entity has at least one of these tags
        search: Case-insensitive substring over searchable fields
    """

    category: Optional[str] = None
    tier: Optional[str] = None
    status: Optional[str] = None
    owner: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    search: Optional[str] = None

    def equality_predicates(self) -> Dict[str, str]:
        """Field equality predicates a backend may push down."""
        return {
            name: value
            for name, value in (
                ("category", self.category),
                ("tier", self.tier),
                ("status", self.status),
            )
            if value is not None
        }

    def matches(self, entity_type: EntityTypeDef, fields: Mapping[str, Any]) -> bool:
        for name, value in self.equality_predicates().items():
            if fields.get(name) != value:
                return False

        if self.owner is not None:
            if not any(resolve_path(fields, p) == self.owner for p in entity_type.owner_paths):
                return False

        if self.tags:
            entity_tags = fields.get("tags") or []
            if not any(tag in entity_tags for tag in self.tags):
                return False

        if self.search:
            needle = self.search.lower()
            haystacks = (fields.get(f.name) for f in entity_type.get_searchable_fields())
            if not any(isinstance(h, str) and needle in h.lower() for h in haystacks):
                return False

        return True


class EntityListing:
    """Lazy, restartable view over the entities matching a filter.

    The backing documents are a snapshot taken when list() was called.
    Each iteration decodes and filters the snapshot afresh, in the order
    the backend stored them.
    """

    def __init__(
        self,
        entity_type: EntityTypeDef,
        documents: Sequence[Mapping[str, Any]],
        list_filter: Optional[ListFilter] = None,
    ) -> None:
        self._entity_type = entity_type
        self._documents = documents
        self._filter = list_filter

    def __iter__(self) -> Iterator[Entity]:
        for document in self._documents:
            entity = Entity.from_document(self._entity_type, document)
            if self._filter is None or self._filter.matches(self._entity_type, entity.fields):
                yield entity

    @property
    def documents(self) -> Sequence[Mapping[str, Any]]:
        """Raw snapshot documents, unfiltered and not yet decoded."""
        return self._documents

    def ids(self) -> List[str]:
        return [entity.entity_id for entity in self]


class EntityStore(ABC):
    """The five-operation contract every backend conforms to."""

    @abstractmethod
    async def create(self, payload: Mapping[str, Any], actor: str) -> Entity:
        """Create an entity at version 1.0.0.

        Raises:
            ConflictError: If the natural id already exists
            ValidationError: If the payload is invalid
        """
        ...

    @abstractmethod
    async def get(self, entity_id: str) -> Entity:
        """Fetch an entity.

        Raises:
            NotFoundError: If absent
        """
        ...

    @abstractmethod
    async def update(
        self,
        entity_id: str,
        payload: Mapping[str, Any],
        actor: str,
    ) -> UpdateResult:
        """Apply a partial update, bumping the version unless it is a no-op.

        Raises:
            NotFoundError: If absent
            ValidationError: If the payload is invalid
            VersioningError: If the stored version does not parse
            ConcurrencyTimeout: If the guard is not granted in time
        """
        ...

    @abstractmethod
    async def delete(self, entity_id: str, actor: str) -> None:
        """Remove an entity and its whole history.

        Raises:
            NotFoundError: If absent
        """
        ...

    @abstractmethod
    async def list(self, list_filter: Optional[ListFilter] = None) -> EntityListing:
        """Entities matching list_filter, as a lazy restartable iterable."""
        ...


class VersionedStore(EntityStore):
    """EntityStore implementation shared by every backend.

    Args:
        entity_type: Type of the entities held by this store
        lock_timeout_s: Default bound on guard waits for mutating calls
        clock: Returns the current time (UTC); injectable for tests
    """

    backend_name = "abstract"

    def __init__(
        self,
        entity_type: EntityTypeDef,
        *,
        lock_timeout_s: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.entity_type = entity_type
        self.classifier = ChangeClassifier(entity_type)
        self.audit = AuditTrail()
        self.guard = ConcurrencyGuard(default_timeout_s=lock_timeout_s)
        self._clock = clock or utc_now
        self._closed = False

    # ------------------------------------------------------------------
    # Storage primitives (blocking; run in the default executor)
    # ------------------------------------------------------------------

    @abstractmethod
    def _guard_key(self, entity_id: str) -> str:
        """Guard key serializing mutations of entity_id."""
        ...

    @abstractmethod
    def _load(self, entity_id: str) -> Optional[Entity]:
        """Read one entity, or None."""
        ...

    @abstractmethod
    def _snapshot(self, list_filter: Optional[ListFilter]) -> List[Dict[str, Any]]:
        """Documents of all entities (a backend may pre-narrow by filter)."""
        ...

    @abstractmethod
    def _apply_create(self, entity: Entity, lease: Lease) -> None:
        """Persist a new entity; ConflictError if its id exists."""
        ...

    @abstractmethod
    def _apply_update(
        self,
        entity_id: str,
        transform: UpdateTransform,
        lease: Lease,
    ) -> Tuple[Entity, bool]:
        """Read-transform-write one entity atomically.

        Returns (entity, changed); nothing is written when transform
        returns None. NotFoundError if entity_id is absent.
        """
        ...

    @abstractmethod
    def _apply_delete(self, entity_id: str, lease: Lease) -> None:
        """Remove one entity; NotFoundError if absent."""
        ...

    @abstractmethod
    def _apply_restore(self, entities: Sequence[Entity], replace: bool, lease: Lease) -> int:
        """Write already-versioned entities verbatim (import path)."""
        ...

    @abstractmethod
    def _collection_key(self) -> str:
        """Guard key covering the whole collection (bulk import)."""
        ...

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _run_guarded(self, lease: Lease, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a mutating primitive while the caller holds lease.

        If the caller is cancelled, the lease is cancelled so the primitive
        refuses to commit, and the guard stays held until the worker thread
        has finished.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(fn, *args))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            lease.cancel()
            while not future.done():
                try:
                    await asyncio.wait({future})
                except asyncio.CancelledError:
                    continue
            if not future.cancelled() and future.exception() is not None:
                logger.info(
                    f"Abandoned {self.entity_type.name} write after cancellation",
                    extra={"key": lease.key, "error": str(future.exception())},
                )
            raise

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("access", f"{self.backend_name} store is closed")

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def create(
        self,
        payload: Mapping[str, Any],
        actor: str,
        *,
        summary: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Entity:
        self._ensure_open()
        _check_actor(actor)
        payload = dict(payload)
        id_field = self.entity_type.id_field
        if not payload.get(id_field):
            name = payload.get("name")
            payload[id_field] = generate_id(
                self.entity_type.id_prefix, name if isinstance(name, str) else None
            )

        fields = validate_create(self.entity_type, payload)
        entity_id = fields[id_field]
        _check_id(id_field, entity_id)
        classification = self.classifier.classify(None, fields)

        async with self.guard.acquire(self._guard_key(entity_id), timeout) as lease:
            metadata = self.audit.initial(
                actor,
                self._clock(),
                summary or f"Initial {self.entity_type.name} creation",
            )
            entity = Entity(
                entity_type=self.entity_type.name,
                entity_id=entity_id,
                fields=fields,
                metadata=metadata,
            )
            await self._run_guarded(lease, self._apply_create, entity, lease)

        logger.info(
            f"Created {self.entity_type.name} {entity_id}",
            extra={
                "backend": self.backend_name,
                "entity_id": entity_id,
                "version": entity.version,
                "change_type": classification.severity.value,
                "actor": actor,
            },
        )
        return entity

    async def get(self, entity_id: str) -> Entity:
        self._ensure_open()
        entity = await self._run(self._load, entity_id)
        if entity is None:
            raise NotFoundError(self.entity_type.name, entity_id)
        return entity

    async def exists(self, entity_id: str) -> bool:
        self._ensure_open()
        return await self._run(self._load, entity_id) is not None

    async def update(
        self,
        entity_id: str,
        payload: Mapping[str, Any],
        actor: str,
        *,
        summary: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> UpdateResult:
        self._ensure_open()
        _check_actor(actor)
        payload = dict(payload)
        validate_partial(self.entity_type, payload)
        outcome: Dict[str, Classification] = {}

        def transform(current: Entity) -> Optional[Entity]:
            classification = self.classifier.classify(current, payload)
            outcome["classification"] = classification
            if classification.is_noop:
                return None
            metadata = self.audit.append(
                current.metadata,
                classification.severity,
                classification.changed_fields,
                summary,
                actor,
                self._clock(),
            )
            return Entity(
                entity_type=current.entity_type,
                entity_id=current.entity_id,
                fields=merge_fields(current.fields, payload, classification.changed_fields),
                metadata=metadata,
            )

        async with self.guard.acquire(self._guard_key(entity_id), timeout) as lease:
            entity, changed = await self._run_guarded(
                lease, self._apply_update, entity_id, transform, lease
            )

        if not changed:
            logger.debug(
                f"No-op update of {self.entity_type.name} {entity_id}",
                extra={"backend": self.backend_name, "entity_id": entity_id},
            )
        else:
            classification = outcome["classification"]
            logger.info(
                f"Updated {self.entity_type.name} {entity_id} to {entity.version}",
                extra={
                    "backend": self.backend_name,
                    "entity_id": entity_id,
                    "version": entity.version,
                    "change_type": classification.severity.value,
                    "fields_changed": classification.sorted_fields(),
                    "actor": actor,
                },
            )
        return UpdateResult(entity=entity, changed=changed)

    async def delete(
        self,
        entity_id: str,
        actor: str,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self._ensure_open()
        _check_actor(actor)
        async with self.guard.acquire(self._guard_key(entity_id), timeout) as lease:
            await self._run_guarded(lease, self._apply_delete, entity_id, lease)
        logger.info(
            f"Deleted {self.entity_type.name} {entity_id}",
            extra={"backend": self.backend_name, "entity_id": entity_id, "actor": actor},
        )

    async def list(self, list_filter: Optional[ListFilter] = None) -> EntityListing:
        self._ensure_open()
        documents = await self._run(self._snapshot, list_filter)
        return EntityListing(self.entity_type, documents, list_filter)

    async def count(self) -> int:
        self._ensure_open()
        return len(await self._run(self._snapshot, None))

    async def restore(
        self,
        entities: Sequence[Entity],
        *,
        replace: bool = False,
        timeout: Optional[float] = None,
    ) -> int:
        """Write already-versioned entities verbatim (used by import).

        Metadata is stored as given; nothing is classified or bumped.

        Returns:
            Number of entities written

        Raises:
            ConflictError: If an id exists and replace is False
        """
        self._ensure_open()
        for entity in entities:
            if entity.entity_type != self.entity_type.name:
                raise ValidationError(
                    f"Cannot restore {entity.entity_type} '{entity.entity_id}' "
                    f"into a {self.entity_type.name} store"
                )
        async with self.guard.acquire(self._collection_key(), timeout) as lease:
            written = await self._run_guarded(
                lease, self._apply_restore, list(entities), replace, lease
            )
        logger.info(
            f"Restored {written} {self.entity_type.name} entities",
            extra={"backend": self.backend_name, "replace": replace},
        )
        return written

    async def close(self) -> None:
        self._closed = True


def merge_fields(
    current: Mapping[str, Any],
    payload: Mapping[str, Any],
    changed_fields: FrozenSet[str],
) -> Dict[str, Any]:
    """New field dict with the changed fields of payload applied.

    A None value removes the field.
    """
    fields = copy.deepcopy(dict(current))
    for name in changed_fields:
        value = payload[name]
        if value is None:
            fields.pop(name, None)
        else:
            fields[name] = copy.deepcopy(value)
    return fields


def _check_actor(actor: str) -> None:
    if not isinstance(actor, str) or not actor.strip():
        raise ValidationError("actor must be a non-empty string", field_name="actor")


def _check_id(id_field: str, entity_id: Any) -> None:
    if not isinstance(entity_id, str) or not ID_PATTERN.match(entity_id):
        raise ValidationError(
            f"Field '{id_field}' must be 1-100 characters of letters, digits, '-' or '_'",
            field_name=id_field,
        )
