"""
Entity type registry for the catalog store.

The EntityRegistry is the central authority for entity type definitions.
It provides:
- Registration of entity types (metric, domain, objective, ...)
- Lookup by type name
- Schema fingerprinting, recorded in export bundles
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen before stores open
    - Once frozen, no new types can be registered
    - Type names are unique
    - Fingerprint changes whenever a field or classification changes

How to change safely:
    - Register all types before calling freeze()
    - Never modify registered types after freeze

Example:
    >>> registry = EntityRegistry()
    >>> registry.register(METRIC)
    >>> registry.freeze()
    'sha256:...'
    >>> registry.require("metric").id_field
    'metric_id'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, Optional

from .types import EntityTypeDef

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[EntityRegistry] = None
_registry_lock = threading.Lock()


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""

    pass


class DuplicateRegistrationError(Exception):
    """Raised when attempting to register a duplicate type name."""

    pass


class UnknownEntityTypeError(KeyError):
    """Raised when an entity type name is not registered."""

    pass


class EntityRegistry:
    """Central registry for entity type definitions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._types: Dict[str, EntityTypeDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def register(self, entity_type: EntityTypeDef) -> None:
        """Register an entity type definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the type name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity type '{entity_type.name}': registry is frozen"
                )
            if entity_type.name in self._types:
                raise DuplicateRegistrationError(
                    f"Entity type '{entity_type.name}' already registered"
                )
            self._types[entity_type.name] = entity_type
            logger.debug(
                f"Registered entity type: {entity_type.name} "
                f"({len(entity_type.fields)} fields, id_field={entity_type.id_field})"
            )

    def get(self, name: str) -> Optional[EntityTypeDef]:
        """Get an entity type by name, or None."""
        return self._types.get(name)

    def require(self, name: str) -> EntityTypeDef:
        """Get an entity type by name.

        Raises:
            UnknownEntityTypeError: If the type is not registered
        """
        entity_type = self._types.get(name)
        if entity_type is None:
            raise UnknownEntityTypeError(
                f"Unknown entity type '{name}'. Registered: {sorted(self._types)}"
            )
        return entity_type

    def entity_types(self) -> Iterator[EntityTypeDef]:
        """Iterate over all registered entity types."""
        yield from self._types.values()

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Entity registry frozen with {len(self._types)} types, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the canonical schema JSON."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by name."""
        return {"entity_types": [self._types[n].to_dict() for n in sorted(self._types)]}

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


def get_registry() -> EntityRegistry:
    """Get the global registry holding the built-in catalog types.

    The registry is created, populated and frozen on first use.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            from .catalog import BUILTIN_TYPES

            registry = EntityRegistry()
            for entity_type in BUILTIN_TYPES:
                registry.register(entity_type)
            registry.freeze()
            _global_registry = registry
        return _global_registry


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
