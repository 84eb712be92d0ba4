"""
Audit trail for versioned entities.

AuditTrail turns a classified change into a new VersionMetadata block:
- computes the next version with semver.bump()
- appends one ChangeEntry to a new history tuple
- moves last_updated/last_updated_by to the new entry

verify_history() checks a stored block against the same rules and is used
when entities are imported from another backend.

Invariants:
    - Metadata blocks are immutable; append() always returns a new block
    - created_at/created_by never change after creation
    - version equals the version of the last history entry
    - sequences run 1..n without gaps; versions strictly increase
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from ..errors import VersioningError
from ..models import CREATION_FIELDS, ChangeEntry, VersionMetadata
from ..schema.types import Severity
from .semver import INITIAL_VERSION, bump, parse_version


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(now: datetime) -> str:
    """ISO-8601 timestamp in UTC with millisecond precision."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def default_summary(changed_fields: Iterable[str]) -> str:
    return "Updated " + ", ".join(sorted(changed_fields))


class AuditTrail:
    """Builds version metadata blocks for creations and updates."""

    def initial(
        self,
        actor: str,
        now: datetime,
        summary: str = "Initial creation",
    ) -> VersionMetadata:
        """Metadata block for a newly created entity (version 1.0.0)."""
        timestamp = format_timestamp(now)
        entry = ChangeEntry(
            sequence=1,
            version=INITIAL_VERSION,
            timestamp=timestamp,
            changed_by=actor,
            change_type=Severity.MAJOR,
            changes_summary=summary,
            fields_changed=CREATION_FIELDS,
        )
        return VersionMetadata(
            version=INITIAL_VERSION,
            created_at=timestamp,
            created_by=actor,
            last_updated=timestamp,
            last_updated_by=actor,
            change_history=(entry,),
        )

    def append(
        self,
        metadata: VersionMetadata,
        severity: Severity,
        changed_fields: Iterable[str],
        summary: Optional[str],
        actor: str,
        now: datetime,
    ) -> VersionMetadata:
        """Record one change and return the new metadata block.

        Args:
            metadata: Current metadata block (left untouched)
            severity: Worst-case severity of the change
            changed_fields: Names of changed fields
            summary: Human-readable summary; synthesized when empty
            actor: Identity the change is attributed to
            now: Time of the change

        Returns:
            New VersionMetadata

        Raises:
            VersioningError: If the current version does not parse
        """
        fields = tuple(sorted(changed_fields))
        next_version = bump(metadata.version, severity)
        last = metadata.last_entry
        timestamp = format_timestamp(now)
        entry = ChangeEntry(
            sequence=(last.sequence if last else 0) + 1,
            version=next_version,
            timestamp=timestamp,
            changed_by=actor,
            change_type=severity,
            changes_summary=summary or default_summary(fields),
            fields_changed=fields,
        )
        return metadata.model_copy(
            update={
                "version": next_version,
                "last_updated": timestamp,
                "last_updated_by": actor,
                "change_history": metadata.change_history + (entry,),
            }
        )


def verify_history(metadata: VersionMetadata, entity_id: str = "") -> None:
    """Check a metadata block against the audit invariants.

    Raises:
        VersioningError: On the first violated invariant
    """
    label = f" of '{entity_id}'" if entity_id else ""
    history = metadata.change_history
    if not history:
        raise VersioningError(f"Change history{label} is empty", version=metadata.version)

    first = history[0]
    if first.fields_changed != CREATION_FIELDS or first.change_type is not Severity.MAJOR:
        raise VersioningError(
            f"First history entry{label} is not a creation entry", version=first.version
        )

    previous = None
    for position, entry in enumerate(history, start=1):
        if entry.sequence != position:
            raise VersioningError(
                f"History{label} entry {position} has sequence {entry.sequence}",
                version=entry.version,
            )
        current = parse_version(entry.version)
        if previous is not None and current <= previous:
            raise VersioningError(
                f"History{label} versions are not strictly increasing at sequence "
                f"{entry.sequence} ({entry.version})",
                version=entry.version,
            )
        previous = current

    last = history[-1]
    if metadata.version != last.version:
        raise VersioningError(
            f"Version{label} {metadata.version} does not match last history entry "
            f"{last.version}",
            version=metadata.version,
        )
    if metadata.last_updated != last.timestamp or metadata.last_updated_by != last.changed_by:
        raise VersioningError(
            f"last_updated{label} does not match the last history entry",
            version=metadata.version,
        )
