"""
Shared fixtures for the catalog store tests.

- clock: deterministic UTC clock advancing one second per reading
- data_dir: temporary directory removed after each test
- store: a metric store, parametrized over both backends
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from catalog.metricstore.schema import METRIC
from catalog.metricstore.store import FileBackedStore, RelationalStore

BACKENDS = ("file", "sqlite")


class FakeClock:
    """Callable clock returning strictly increasing UTC datetimes."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


def build_store(backend, entity_type, data_dir, clock=None, lock_timeout_s=5.0):
    """Create a store of entity_type on the named backend under data_dir."""
    if backend == "file":
        return FileBackedStore(
            entity_type,
            Path(data_dir) / f"{entity_type.name}s.json",
            fsync=False,
            lock_timeout_s=lock_timeout_s,
            clock=clock,
        )
    return RelationalStore(
        entity_type,
        Path(data_dir) / "catalog.db",
        wal_mode=False,
        lock_timeout_s=lock_timeout_s,
        clock=clock,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def metric_payload():
    """Minimal valid metric create payload."""
    return {
        "metric_id": "METRIC-revenue",
        "name": "Revenue",
        "description": "Total recognized revenue",
        "category": "financial",
        "formula": "sum(invoice.amount)",
        "unit": "USD",
        "tags": ["finance"],
    }


@pytest.fixture(params=BACKENDS)
def backend(request):
    return request.param


@pytest.fixture
def store(backend, data_dir, clock):
    """Metric store on each backend."""
    return build_store(backend, METRIC, data_dir, clock)
