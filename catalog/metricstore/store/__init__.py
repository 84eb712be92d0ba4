"""
Store module for the catalog.

- EntityStore: the five-operation contract (create, get, update, delete, list)
- VersionedStore: the shared versioning pipeline behind every backend
- FileBackedStore: one JSON document per collection
- RelationalStore: one SQLite row per entity
- ConcurrencyGuard: per-key FIFO locks with bounded waits
- transfer: export/import bundles between backends
"""

from .base import EntityListing, EntityStore, ListFilter, VersionedStore, generate_id
from .file_store import FileBackedStore
from .guard import ConcurrencyGuard, Lease
from .sqlite_store import RelationalStore
from .transfer import export_bundle, import_bundle, parse_bundle, read_bundle, write_bundle

__all__ = [
    "EntityStore",
    "VersionedStore",
    "EntityListing",
    "ListFilter",
    "generate_id",
    "FileBackedStore",
    "RelationalStore",
    "ConcurrencyGuard",
    "Lease",
    "export_bundle",
    "import_bundle",
    "parse_bundle",
    "read_bundle",
    "write_bundle",
]
