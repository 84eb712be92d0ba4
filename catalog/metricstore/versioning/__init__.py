"""
Versioning module for the catalog store.

The three pieces every mutating store call goes through, identically for
every backend:
- ChangeClassifier: which fields changed and how severe the change is
- semver: next version from current version and severity
- AuditTrail: new immutable metadata block with one more ChangeEntry
"""

from .audit import AuditTrail, default_summary, format_timestamp, utc_now, verify_history
from .classifier import CREATION, ChangeClassifier, Classification, deep_equal
from .semver import INITIAL_VERSION, bump, fold_versions, parse_version, version_key

__all__ = [
    "AuditTrail",
    "verify_history",
    "default_summary",
    "format_timestamp",
    "utc_now",
    "ChangeClassifier",
    "Classification",
    "CREATION",
    "deep_equal",
    "INITIAL_VERSION",
    "bump",
    "fold_versions",
    "parse_version",
    "version_key",
]
