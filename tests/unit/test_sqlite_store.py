"""
Unit tests for the SQLite-backed store.

Tests cover:
- Row layout (indexed columns, metadata_json)
- Schema creation and initialization
- Rollback on failure and expired leases
- Per-id guard keys
- Several entity types sharing one database
"""

import json
import sqlite3
import time
from dataclasses import replace
from pathlib import Path

import pytest

from catalog.metricstore.errors import ConcurrencyTimeout, StorageError
from catalog.metricstore.schema import DOMAIN, METRIC
from catalog.metricstore.store import RelationalStore
from catalog.metricstore.store.guard import Lease


class TestRelationalStore:
    """Tests for RelationalStore."""

    @pytest.fixture
    def db_path(self, data_dir):
        return Path(data_dir) / "catalog.db"

    @pytest.fixture
    def store(self, db_path, clock):
        return RelationalStore(METRIC, db_path, wal_mode=False, clock=clock)

    def _rows(self, db_path):
        conn = sqlite3.connect(str(db_path))
        conn.row_factory = sqlite3.Row
        try:
            return conn.execute("SELECT * FROM entities ORDER BY seq").fetchall()
        finally:
            conn.close()

    @pytest.mark.asyncio
    async def test_initialize_creates_schema(self, store, db_path):
        await store.initialize()
        assert db_path.exists()
        assert self._rows(db_path) == []

    @pytest.mark.asyncio
    async def test_row_layout(self, store, db_path, metric_payload):
        await store.create(metric_payload, actor="alice")
        await store.update("METRIC-revenue", {"category": "growth"}, actor="bob")

        (row,) = self._rows(db_path)
        assert row["entity_type"] == "metric"
        assert row["entity_id"] == "METRIC-revenue"
        assert row["name"] == "Revenue"
        assert row["category"] == "growth"
        assert row["version"] == "2.0.0"

        fields = json.loads(row["fields_json"])
        metadata = json.loads(row["metadata_json"])
        assert "metadata" not in fields
        assert fields["category"] == "growth"
        assert metadata["version"] == "2.0.0"
        assert row["created_at"] == metadata["created_at"]
        assert row["updated_at"] == metadata["last_updated"]

    @pytest.mark.asyncio
    async def test_expired_lease_rolls_back(self, store, metric_payload):
        await store.create(metric_payload, actor="alice")
        expired = Lease(key="k", timeout_s=0.1, deadline=time.monotonic() - 1)

        def rename(current):
            return replace(current, fields={**current.fields, "name": "Renamed"})

        with pytest.raises(ConcurrencyTimeout):
            store._apply_update("METRIC-revenue", rename, expired)
        assert (await store.get("METRIC-revenue")).get("name") == "Revenue"

    @pytest.mark.asyncio
    async def test_failed_transform_rolls_back(self, store, metric_payload):
        await store.create(metric_payload, actor="alice")
        lease = Lease(key="k", timeout_s=10.0, deadline=time.monotonic() + 10)

        def explode(current):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store._apply_update("METRIC-revenue", explode, lease)
        # The write lock was released by the rollback.
        result = await store.update("METRIC-revenue", {"notes": "ok"}, actor="bob")
        assert result.entity.version == "1.0.1"

    @pytest.mark.asyncio
    async def test_corrupt_row_raises(self, store, db_path, metric_payload):
        await store.create(metric_payload, actor="alice")
        conn = sqlite3.connect(str(db_path))
        conn.execute("UPDATE entities SET fields_json = '{broken'")
        conn.commit()
        conn.close()

        with pytest.raises(StorageError, match="corrupt JSON"):
            await store.get("METRIC-revenue")

    def test_guard_keys_are_per_id(self, store):
        assert store._guard_key("a") != store._guard_key("b")
        assert store._guard_key("a") == store._guard_key("a")

    @pytest.mark.asyncio
    async def test_entity_types_share_database(self, db_path, metric_payload):
        metrics = RelationalStore(METRIC, db_path, wal_mode=False)
        domains = RelationalStore(DOMAIN, db_path, wal_mode=False)

        await metrics.create(metric_payload, actor="alice")
        await domains.create({"domain_id": "METRIC-revenue", "name": "Finance"}, actor="alice")

        assert await metrics.count() == 1
        assert await domains.count() == 1
        assert (await domains.get("METRIC-revenue")).get("name") == "Finance"

    @pytest.mark.asyncio
    async def test_wal_mode(self, db_path, metric_payload):
        store = RelationalStore(METRIC, db_path, wal_mode=True)
        await store.create(metric_payload, actor="alice")
        conn = sqlite3.connect(str(db_path))
        try:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        finally:
            conn.close()
