"""
Configuration management for the catalog store.

All configuration is done via environment variables.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable; they are part of deployments
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported storage backends."""

    FILE = "file"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class FileStoreConfig:
    """File-backed store configuration.

    Attributes:
        data_dir: Directory holding collection documents
        collection_pattern: File name pattern for one collection
        indent: JSON indentation of written documents
        fsync: fsync temp files before replacing a document
    """

    data_dir: str = "./data"
    collection_pattern: str = "{entity_type}s.json"
    indent: int = 2
    fsync: bool = True

    @classmethod
    def from_env(cls) -> FileStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "./data"),
            collection_pattern=os.getenv("COLLECTION_PATTERN", "{entity_type}s.json"),
            indent=int(os.getenv("FILE_STORE_INDENT", "2")),
            fsync=os.getenv("FILE_STORE_FSYNC", "true").lower() == "true",
        )

    def collection_path(self, entity_type: str) -> Path:
        return Path(self.data_dir) / self.collection_pattern.format(entity_type=entity_type)


@dataclass(frozen=True)
class SqliteStoreConfig:
    """SQLite store configuration.

    Attributes:
        db_path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    db_path: str = "./data/catalog.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SqliteStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("SQLITE_DB_PATH", "./data/catalog.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class GuardConfig:
    """Concurrency guard configuration.

    Attributes:
        lock_timeout_s: Default bound on waiting for and holding the guard
    """

    lock_timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> GuardConfig:
        """Load configuration from environment variables."""
        return cls(lock_timeout_s=float(os.getenv("LOCK_TIMEOUT_S", "5.0")))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class CatalogConfig:
    """Complete catalog store configuration.

    Attributes:
        backend: Which storage backend to use
        file_store: File backend configuration
        sqlite: SQLite backend configuration
        guard: Concurrency guard configuration
        observability: Logging configuration
    """

    backend: StoreBackend = StoreBackend.FILE
    file_store: FileStoreConfig = field(default_factory=FileStoreConfig)
    sqlite: SqliteStoreConfig = field(default_factory=SqliteStoreConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> CatalogConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "file").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: file, sqlite"
            ) from None

        config = cls(
            backend=backend,
            file_store=FileStoreConfig.from_env(),
            sqlite=SqliteStoreConfig.from_env(),
            guard=GuardConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.guard.lock_timeout_s <= 0:
            raise ValueError("LOCK_TIMEOUT_S must be positive")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if self.backend == StoreBackend.FILE:
            if "{entity_type}" not in self.file_store.collection_pattern:
                raise ValueError("COLLECTION_PATTERN must contain '{entity_type}'")
            if self.file_store.indent < 0:
                raise ValueError("FILE_STORE_INDENT must not be negative")
            data_dir = self.file_store.data_dir
        else:
            if not self.sqlite.db_path:
                raise ValueError("SQLITE_DB_PATH is required when STORE_BACKEND=sqlite")
            if self.sqlite.busy_timeout_ms < 0:
                raise ValueError("SQLITE_BUSY_TIMEOUT_MS must not be negative")
            data_dir = str(Path(self.sqlite.db_path).parent)

        if not os.path.exists(data_dir):
            logger.warning(
                f"Data directory does not exist: {data_dir}. It will be created on first write."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Catalog configuration loaded",
            extra={
                "backend": self.backend.value,
                "data_dir": self.file_store.data_dir
                if self.backend == StoreBackend.FILE
                else None,
                "db_path": self.sqlite.db_path if self.backend == StoreBackend.SQLITE else None,
                "lock_timeout_s": self.guard.lock_timeout_s,
                "log_level": self.observability.log_level,
            },
        )
