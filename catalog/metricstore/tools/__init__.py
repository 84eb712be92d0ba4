"""
CLI tools for catalog store administration.

This module provides command-line tools for:
- export/import: Move entities between backends without re-versioning
- history/verify: Inspect and check change histories

Invariants:
    - Tools work offline against the configured backend
    - All operations are logged for audit
"""

from .store_cli import StoreCLI

__all__ = ["StoreCLI"]
