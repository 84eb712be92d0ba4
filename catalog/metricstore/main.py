"""
Catalog store wiring: logging setup and store construction.

Outer layers (HTTP handlers, CLI, UI) obtain a store with open_store() and
talk to it only through the EntityStore operations.

Usage:
    config = CatalogConfig.from_env()
    setup_logging(config)
    store = await open_store(config, "metric")

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Every store built here shares the global (frozen) schema registry
    - The backend is chosen by configuration only; callers never branch on it
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import CatalogConfig, StoreBackend
from .schema import get_registry
from .store import FileBackedStore, RelationalStore, VersionedStore

logger = logging.getLogger(__name__)


def setup_logging(config: CatalogConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Catalog configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


async def open_store(config: CatalogConfig, entity_type: str) -> VersionedStore:
    """Create a store for one entity type on the configured backend.

    Args:
        config: Catalog configuration
        entity_type: Registered entity type name (metric, domain, objective)

    Returns:
        Ready-to-use store

    Raises:
        UnknownEntityTypeError: If entity_type is not registered
    """
    type_def = get_registry().require(entity_type)

    if config.backend == StoreBackend.FILE:
        path = config.file_store.collection_path(type_def.name)
        store: VersionedStore = FileBackedStore(
            type_def,
            path,
            indent=config.file_store.indent,
            fsync=config.file_store.fsync,
            lock_timeout_s=config.guard.lock_timeout_s,
        )
        logger.info(f"Opened file store for {type_def.name}", extra={"path": str(path)})
    elif config.backend == StoreBackend.SQLITE:
        sqlite_store = RelationalStore(
            type_def,
            config.sqlite.db_path,
            wal_mode=config.sqlite.wal_mode,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
            lock_timeout_s=config.guard.lock_timeout_s,
        )
        await sqlite_store.initialize()
        store = sqlite_store
        logger.info(
            f"Opened sqlite store for {type_def.name}",
            extra={"db_path": config.sqlite.db_path},
        )
    else:
        raise ValueError(f"Unsupported backend: {config.backend}")

    return store
