"""
Semantic version arithmetic for versioned entities.

Pure functions only: no I/O, no shared state.

Rules:
    - MAJOR: increment major, reset minor and patch to 0
    - MINOR: increment minor, reset patch to 0
    - PATCH: increment patch only

Invariants:
    - A malformed version string is fatal, never coerced to a default
    - bump() never receives a None severity (no-ops short-circuit earlier)
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from ..errors import VersioningError
from ..schema.types import Severity

INITIAL_VERSION = "1.0.0"


def parse_version(version: str) -> Tuple[int, int, int]:
    """Parse a "MAJOR.MINOR.PATCH" string into an integer triple.

    Raises:
        VersioningError: If the string is not three non-negative integers
            separated by dots

    Example:
        >>> parse_version("2.10.3")
        (2, 10, 3)
    """
    if not isinstance(version, str):
        raise VersioningError(
            f"Version must be a string, got {type(version).__name__}", version=None
        )
    parts = version.split(".")
    if len(parts) != 3 or not all(p.isascii() and p.isdigit() for p in parts):
        raise VersioningError(
            f"Invalid version '{version}': expected MAJOR.MINOR.PATCH "
            "with non-negative integers",
            version=version,
        )
    major, minor, patch = (int(p) for p in parts)
    return major, minor, patch


def format_version(major: int, minor: int, patch: int) -> str:
    return f"{major}.{minor}.{patch}"


def bump(current: str, severity: Optional[Severity]) -> str:
    """Compute the next version for a change of the given severity.

    Raises:
        VersioningError: If current is malformed or severity is None

    Example:
        >>> bump("1.2.3", Severity.MINOR)
        '1.3.0'
    """
    if severity is None:
        raise VersioningError(
            "No severity given; zero-change updates must not reach bump()",
            version=current,
        )
    major, minor, patch = parse_version(current)
    if severity is Severity.MAJOR:
        return format_version(major + 1, 0, 0)
    if severity is Severity.MINOR:
        return format_version(major, minor + 1, 0)
    return format_version(major, minor, patch + 1)


def version_key(version: str) -> Tuple[int, int, int]:
    """Sort key for version strings (raises on malformed input)."""
    return parse_version(version)


def fold_versions(severities: Iterable[Severity], start: str = INITIAL_VERSION) -> str:
    """Apply bump() over a sequence of severities starting at start."""
    version = start
    for severity in severities:
        version = bump(version, severity)
    return version
