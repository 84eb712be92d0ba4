"""
Unit tests for the store maintenance CLI.

Tests cover:
- export to file and stdout
- import with and without --replace
- history output
- verify exit codes
- error exit codes
"""

import asyncio
import json
import logging
from pathlib import Path

import pytest

from catalog.metricstore.schema import METRIC
from catalog.metricstore.store import FileBackedStore, RelationalStore
from catalog.metricstore.tools.store_cli import main


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    for name in ("STORE_BACKEND", "DATA_DIR", "SQLITE_DB_PATH", "COLLECTION_PATTERN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_FORMAT", "text")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def _seed(data_dir, payload):
    async def seed():
        store = FileBackedStore(METRIC, Path(data_dir) / "metrics.json", fsync=False)
        await store.create(payload, actor="alice")
        await store.update(payload["metric_id"], {"name": "Net Revenue"}, actor="bob")

    asyncio.run(seed())


class TestStoreCLI:
    """Tests for the store_cli entry point."""

    def test_export_to_file(self, data_dir, metric_payload):
        _seed(data_dir, metric_payload)
        out = Path(data_dir) / "bundle.json"

        code = main(["export", "--data-dir", data_dir, "--type", "metric", "-o", str(out)])

        assert code == 0
        bundle = json.loads(out.read_text())
        assert bundle["format"] == "metricstore-export"
        assert [e["metric_id"] for e in bundle["entities"]] == ["METRIC-revenue"]
        assert bundle["entities"][0]["metadata"]["version"] == "1.1.0"

    def test_export_to_stdout(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        assert main(["export", "--data-dir", data_dir]) == 0
        bundle = json.loads(capsys.readouterr().out)
        assert bundle["entity_type"] == "metric"

    def test_import_into_sqlite(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        out = Path(data_dir) / "bundle.json"
        db_path = str(Path(data_dir) / "catalog.db")
        main(["export", "--data-dir", data_dir, "-o", str(out)])

        code = main(["import", "--backend", "sqlite", "--db-path", db_path, str(out)])
        assert code == 0
        assert "Imported 1 entities" in capsys.readouterr().out

        entity = asyncio.run(RelationalStore(METRIC, db_path).get("METRIC-revenue"))
        assert entity.version == "1.1.0"
        assert len(entity.change_history) == 2

        # A second import conflicts unless --replace is given.
        assert main(["import", "--backend", "sqlite", "--db-path", db_path, str(out)]) == 1
        assert "CONFLICT" in capsys.readouterr().err
        assert main(
            ["import", "--backend", "sqlite", "--db-path", db_path, str(out), "--replace"]
        ) == 0

    def test_history(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        assert main(["history", "--data-dir", data_dir, "METRIC-revenue"]) == 0
        out = capsys.readouterr().out
        assert "current version 1.1.0" in out
        assert "#1 1.0.0" in out
        assert "#2 1.1.0" in out
        assert "Updated name" in out

    def test_history_json(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        assert main(["history", "--data-dir", data_dir, "METRIC-revenue", "--format", "json"]) == 0
        metadata = json.loads(capsys.readouterr().out)
        assert [e["sequence"] for e in metadata["change_history"]] == [1, 2]

    def test_history_missing_entity(self, data_dir, capsys):
        assert main(["history", "--data-dir", data_dir, "METRIC-missing"]) == 1
        assert "NOT_FOUND" in capsys.readouterr().err

    def test_verify_valid(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        assert main(["verify", "--data-dir", data_dir]) == 0
        assert "All change histories are valid" in capsys.readouterr().out

    def test_verify_detects_tampering(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        path = Path(data_dir) / "metrics.json"
        documents = json.loads(path.read_text())
        documents[0]["metadata"]["version"] = "7.0.0"
        path.write_text(json.dumps(documents))

        assert main(["verify", "--data-dir", data_dir]) == 1
        out = capsys.readouterr().out
        assert "FAILED" in out
        assert "METRIC-revenue" in out

    def test_verify_reports_each_bad_entity(self, data_dir, metric_payload, capsys):
        _seed(data_dir, metric_payload)
        path = Path(data_dir) / "metrics.json"
        documents = json.loads(path.read_text())
        broken = dict(documents[0], metric_id="METRIC-broken", metadata={"version": "1.0.0"})
        tampered = json.loads(json.dumps(documents[0]))
        tampered["metric_id"] = "METRIC-tampered"
        tampered["metadata"]["version"] = "9.0.0"
        path.write_text(json.dumps([broken] + documents + [tampered]))

        assert main(["verify", "--data-dir", data_dir]) == 1
        out = capsys.readouterr().out
        assert "FAILED for 2 entity(ies)" in out
        assert "METRIC-broken: Invalid version metadata" in out
        assert "METRIC-tampered" in out
        assert "METRIC-revenue:" not in out

    def test_unknown_type(self, data_dir, capsys):
        assert main(["verify", "--data-dir", data_dir, "--type", "widget"]) == 1
        assert "Unknown entity type" in capsys.readouterr().err

    def test_configuration_logged_at_startup(self, data_dir, monkeypatch, capsys):
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        assert main(["verify", "--data-dir", data_dir]) == 0
        assert "Catalog configuration loaded" in capsys.readouterr().err

    def test_invalid_configuration(self, data_dir, monkeypatch, capsys):
        monkeypatch.setenv("LOCK_TIMEOUT_S", "-1")
        assert main(["verify", "--data-dir", data_dir]) == 2
        assert "Invalid configuration" in capsys.readouterr().err
