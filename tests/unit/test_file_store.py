"""
Unit tests for the file-backed store.

Tests cover:
- Document layout (JSON array with inlined metadata)
- Missing, empty and corrupt documents
- Atomic writes and failure cleanup
- Lease deadlines abandoning writes
"""

import json
import os
import time
from dataclasses import replace
from pathlib import Path

import pytest

from catalog.metricstore.errors import ConcurrencyTimeout, StorageError
from catalog.metricstore.schema import METRIC
from catalog.metricstore.store import FileBackedStore
from catalog.metricstore.store.guard import Lease


class TestFileBackedStore:
    """Tests for FileBackedStore."""

    @pytest.fixture
    def path(self, data_dir):
        return Path(data_dir) / "metrics.json"

    @pytest.fixture
    def store(self, path, clock):
        return FileBackedStore(METRIC, path, fsync=False, clock=clock)

    @pytest.mark.asyncio
    async def test_document_layout(self, store, path, metric_payload):
        await store.create(metric_payload, actor="alice")
        await store.update("METRIC-revenue", {"name": "Net Revenue"}, actor="bob")

        documents = json.loads(path.read_text())
        assert isinstance(documents, list) and len(documents) == 1
        document = documents[0]
        assert document["metric_id"] == "METRIC-revenue"
        assert document["name"] == "Net Revenue"
        assert document["metadata"]["version"] == "1.1.0"
        assert [e["version"] for e in document["metadata"]["change_history"]] == [
            "1.0.0",
            "1.1.0",
        ]
        assert document["metadata"]["change_history"][1]["change_type"] == "minor"

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, store, path):
        assert not path.exists()
        assert (await store.list()).ids() == []
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_blank_file_is_empty(self, store, path):
        path.write_text("  \n")
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, store, path, metric_payload):
        path.write_text("[{not json")
        with pytest.raises(StorageError, match="not valid JSON"):
            await store.list()
        with pytest.raises(StorageError):
            await store.create(metric_payload, actor="alice")
        assert path.read_text() == "[{not json"

    @pytest.mark.asyncio
    async def test_wrong_shape_raises(self, store, path):
        path.write_text('{"metric_id": "x"}')
        with pytest.raises(StorageError, match="array"):
            await store.get("x")

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_document(
        self, store, path, metric_payload, monkeypatch
    ):
        await store.create(metric_payload, actor="alice")
        before = path.read_text()

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(StorageError, match="disk full"):
            await store.update("METRIC-revenue", {"unit": "EUR"}, actor="bob")
        monkeypatch.undo()

        assert path.read_text() == before
        assert sorted(os.listdir(path.parent)) == ["metrics.json"]
        assert (await store.get("METRIC-revenue")).version == "1.0.0"

    @pytest.mark.asyncio
    async def test_expired_lease_abandons_write(self, store, path, metric_payload):
        await store.create(metric_payload, actor="alice")
        before = path.read_text()
        entity = await store.get("METRIC-revenue")
        expired = Lease(key="k", timeout_s=0.1, deadline=time.monotonic() - 1)

        with pytest.raises(ConcurrencyTimeout):
            store._apply_update(
                "METRIC-revenue",
                _renamed,
                expired,
            )

        assert path.read_text() == before
        assert (await store.get("METRIC-revenue")).get("name") == entity.get("name")

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, data_dir, metric_payload):
        nested = Path(data_dir) / "a" / "b" / "metrics.json"
        store = FileBackedStore(METRIC, nested, fsync=False)
        await store.create(metric_payload, actor="alice")
        assert nested.exists()

    @pytest.mark.asyncio
    async def test_two_instances_share_the_file(self, path, metric_payload):
        writer = FileBackedStore(METRIC, path, fsync=False)
        reader = FileBackedStore(METRIC, path, fsync=False)
        await writer.create(metric_payload, actor="alice")
        assert (await reader.get("METRIC-revenue")).version == "1.0.0"


def _renamed(current):
    fields = dict(current.fields)
    fields["name"] = "Renamed"
    return replace(current, fields=fields)
