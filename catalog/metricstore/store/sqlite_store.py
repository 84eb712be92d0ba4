"""
SQLite-backed entity store.

One row per entity. The version metadata block is stored in metadata_json
with the same shape the file backend inlines under "metadata".

Invariants:
    - Updates read and write inside one BEGIN IMMEDIATE transaction
    - Mutations of one id serialize on a per-id guard key; different ids
      proceed independently
    - The primary key enforces ConflictError on create
    - Every failure mid-transaction rolls back

How to change safely:
    - Schema migrations must be backward compatible
    - Call lease.check() as the last step before COMMIT

Table schema:
    entities:
        - entity_type TEXT
        - entity_id TEXT
        - name TEXT
        - category TEXT
        - version TEXT
        - fields_json TEXT
        - metadata_json TEXT
        - created_at TEXT (ISO-8601 UTC)
        - updated_at TEXT (ISO-8601 UTC)
        - seq INTEGER (insertion order)
        - PRIMARY KEY (entity_type, entity_id)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import ConflictError, NotFoundError, StorageError
from ..models import Entity
from ..schema.types import RESERVED_METADATA_KEY, EntityTypeDef
from .base import ListFilter, UpdateTransform, VersionedStore
from .guard import Lease

logger = logging.getLogger(__name__)

_COLUMNS = "entity_id, fields_json, metadata_json"


class RelationalStore(VersionedStore):
    """Entity store persisting rows in a SQLite database.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = RelationalStore(METRIC, "/var/lib/catalog/catalog.db")
        >>> await store.initialize()
        >>> entity = await store.create({"name": "Revenue", ...}, actor="alice")

    Args:
        entity_type: Type of the entities held by this store
        db_path: SQLite database file
        wal_mode: Enable SQLite WAL mode
        busy_timeout_ms: SQLite busy timeout
        lock_timeout_s: Default guard timeout
        clock: Injectable UTC clock
    """

    SCHEMA_VERSION = 1
    backend_name = "sqlite"

    def __init__(
        self,
        entity_type: EntityTypeDef,
        db_path: str | Path,
        *,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        lock_timeout_s: float = 5.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(entity_type, lock_timeout_s=lock_timeout_s, clock=clock)
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False

    def _guard_key(self, entity_id: str) -> str:
        return f"sqlite:{self.entity_type.name}:{entity_id}"

    def _collection_key(self) -> str:
        return f"sqlite:{self.entity_type.name}:*"

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the schema on first use.

        Yields:
            SQLite connection in autocommit mode (explicit transactions)

        Raises:
            StorageError: If the database cannot be opened
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as e:
            raise StorageError("open", f"{self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            if not self._initialized:
                self._create_schema(conn)
                self._initialized = True
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entities (
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                name TEXT,
                category TEXT,
                version TEXT NOT NULL,
                fields_json TEXT NOT NULL DEFAULT '{}',
                metadata_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                seq INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (entity_type, entity_id)
            );

            CREATE INDEX IF NOT EXISTS idx_entities_category
                ON entities(entity_type, category);
            CREATE INDEX IF NOT EXISTS idx_entities_seq
                ON entities(entity_type, seq);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%Y-%m-%dT%H:%M:%fZ', 'now'));
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        def _init() -> None:
            with self._get_connection():
                pass

        await self._run(_init)
        logger.info(f"Initialized catalog database: {self.db_path}")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_document(self, row: sqlite3.Row) -> Dict[str, Any]:
        try:
            fields = json.loads(row["fields_json"])
            metadata = json.loads(row["metadata_json"])
        except json.JSONDecodeError as e:
            raise StorageError(
                "read", f"{self.entity_type.name} '{row['entity_id']}' has corrupt JSON: {e}"
            ) from e
        if not isinstance(fields, dict):
            raise StorageError(
                "read", f"{self.entity_type.name} '{row['entity_id']}' fields are not an object"
            )
        fields[RESERVED_METADATA_KEY] = metadata
        return fields

    def _row_values(self, entity: Entity) -> Tuple[Any, ...]:
        metadata = entity.metadata
        name = entity.fields.get("name")
        category = entity.fields.get("category")
        return (
            name if isinstance(name, str) else None,
            category if isinstance(category, str) else None,
            metadata.version,
            json.dumps(dict(entity.fields), ensure_ascii=False),
            json.dumps(metadata.to_document(), ensure_ascii=False),
            metadata.created_at,
            metadata.last_updated,
        )

    def _insert(self, conn: sqlite3.Connection, entity: Entity) -> None:
        conn.execute(
            """
            INSERT INTO entities (entity_type, entity_id, name, category, version,
                                  fields_json, metadata_json, created_at, updated_at, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?,
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM entities WHERE entity_type = ?))
            """,
            (self.entity_type.name, entity.entity_id)
            + self._row_values(entity)
            + (self.entity_type.name,),
        )

    def _replace(self, conn: sqlite3.Connection, entity: Entity) -> None:
        conn.execute(
            """
            UPDATE entities
            SET name = ?, category = ?, version = ?, fields_json = ?,
                metadata_json = ?, created_at = ?, updated_at = ?
            WHERE entity_type = ? AND entity_id = ?
            """,
            self._row_values(entity) + (self.entity_type.name, entity.entity_id),
        )

    def _select_one(self, conn: sqlite3.Connection, entity_id: str) -> Optional[Entity]:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM entities WHERE entity_type = ? AND entity_id = ?",
            (self.entity_type.name, entity_id),
        ).fetchone()
        if row is None:
            return None
        return Entity.from_document(self.entity_type, self._row_to_document(row))

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _load(self, entity_id: str) -> Optional[Entity]:
        with self._get_connection() as conn:
            return self._select_one(conn, entity_id)

    def _snapshot(self, list_filter: Optional[ListFilter]) -> List[Dict[str, Any]]:
        query = f"SELECT {_COLUMNS} FROM entities WHERE entity_type = ?"
        params: List[Any] = [self.entity_type.name]
        # Category has its own column; other predicates are applied by EntityListing.
        if list_filter is not None and list_filter.category is not None:
            query += " AND category = ?"
            params.append(list_filter.category)
        query += " ORDER BY seq"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def _apply_create(self, entity: Entity, lease: Lease) -> None:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._insert(conn, entity)
                lease.check()
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                raise ConflictError(self.entity_type.name, entity.entity_id) from None
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _apply_update(
        self,
        entity_id: str,
        transform: UpdateTransform,
        lease: Lease,
    ) -> Tuple[Entity, bool]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._select_one(conn, entity_id)
                if current is None:
                    raise NotFoundError(self.entity_type.name, entity_id)

                updated = transform(current)
                if updated is None:
                    conn.execute("ROLLBACK")
                    return current, False

                self._replace(conn, updated)
                lease.check()
                conn.execute("COMMIT")
                return updated, True
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _apply_delete(self, entity_id: str, lease: Lease) -> None:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    "DELETE FROM entities WHERE entity_type = ? AND entity_id = ?",
                    (self.entity_type.name, entity_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(self.entity_type.name, entity_id)
                lease.check()
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _apply_restore(self, entities: Sequence[Entity], replace: bool, lease: Lease) -> int:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for entity in entities:
                    existing = conn.execute(
                        "SELECT 1 FROM entities WHERE entity_type = ? AND entity_id = ?",
                        (self.entity_type.name, entity.entity_id),
                    ).fetchone()
                    if existing is None:
                        self._insert(conn, entity)
                    elif replace:
                        self._replace(conn, entity)
                    else:
                        raise ConflictError(self.entity_type.name, entity.entity_id)
                lease.check()
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(entities)
