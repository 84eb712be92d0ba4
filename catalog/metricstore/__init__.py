"""
Metric catalog store - versioned entity storage with an audit trail.

Every mutation of a catalog entity (metric, domain, objective) is
classified by impact, bumps a semantic version and appends an immutable
change entry:

    ┌─────────────┐     ┌──────────────────┐     ┌──────────────┐
    │ Outer layer │────▶│   EntityStore    │────▶│ Concurrency  │
    │ (HTTP, CLI) │     │ (create, update, │     │    Guard     │
    └─────────────┘     │  delete, ...)    │     └──────┬───────┘
                        └──────────────────┘            │
                                                        ▼
                 ┌──────────────┐   ┌──────────┐   ┌──────────┐
                 │    Change    │──▶│  semver  │──▶│  Audit   │
                 │  Classifier  │   │  bump()  │   │  Trail   │
                 └──────────────┘   └──────────┘   └────┬─────┘
                                                        │
                                  ┌─────────────────────┴──┐
                                  ▼                        ▼
                            ┌───────────┐           ┌────────────┐
                            │ JSON file │           │   SQLite   │
                            └───────────┘           └────────────┘

Invariants:
    - Both backends share one versioning pipeline
    - change_history is append-only; version equals its last entry
    - The natural id of an entity never changes

How to change safely:
    - New entity types are declared in schema/catalog.py
    - Classification tables are data; changing one changes future versions only
"""

from ._version import __version__

__all__ = ["__version__"]
