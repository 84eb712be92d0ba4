"""
Catalog store test suite.

This package contains:
- unit/: Unit tests for schema, versioning, guard, backends and tooling
- integration/: Cross-backend equivalence, export/import and concurrency
"""
