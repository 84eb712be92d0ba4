"""
Store maintenance CLI for the catalog.

Commands:
- export: Write every entity of one type to a bundle file
- import: Restore a bundle into the configured backend
- history: Print the change history of one entity
- verify: Check every stored change history against the audit rules

Usage:
    python -m catalog.metricstore.tools.store_cli export --type metric -o metrics.json
    python -m catalog.metricstore.tools.store_cli import --backend sqlite --type metric metrics.json
    python -m catalog.metricstore.tools.store_cli history --type metric METRIC-revenue-...
    python -m catalog.metricstore.tools.store_cli verify --type metric

Backend settings come from the environment (see config.py); --backend,
--data-dir and --db-path override them.

Invariants:
    - Any failure exits non-zero
    - Bundle output is the same format for both backends

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import List, Optional, Tuple

from ..config import CatalogConfig, StoreBackend
from ..errors import MetricStoreError
from ..main import open_store, setup_logging
from ..models import Entity
from ..store import VersionedStore, export_bundle, import_bundle, read_bundle, write_bundle
from ..versioning import verify_history

logger = logging.getLogger(__name__)


class StoreCLI:
    """CLI operations over one configured store.

    Example:
        >>> cli = StoreCLI(store)
        >>> count = await cli.export("metrics.json")
        >>> problems = await cli.verify()
    """

    def __init__(self, store: VersionedStore) -> None:
        self.store = store

    async def export(self, output: Optional[str]) -> int:
        """Export all entities; prints the bundle when output is None."""
        bundle = await export_bundle(self.store)
        if output:
            write_bundle(bundle, output)
            print(f"Exported {len(bundle['entities'])} entities to {output}", file=sys.stderr)
        else:
            print(json.dumps(bundle, indent=2, ensure_ascii=False))
        return len(bundle["entities"])

    async def import_(self, path: str, replace: bool = False) -> int:
        bundle = read_bundle(path)
        written = await import_bundle(self.store, bundle, replace=replace)
        print(f"Imported {written} entities from {path}")
        return written

    async def history(self, entity_id: str, output_format: str = "text") -> None:
        entity = await self.store.get(entity_id)
        if output_format == "json":
            print(json.dumps(entity.metadata.to_document(), indent=2))
            return

        print(f"{entity.entity_id} (current version {entity.version})")
        for entry in entity.change_history:
            print(
                f"  #{entry.sequence} {entry.version:<10} {entry.change_type.value:<6} "
                f"{entry.timestamp} {entry.changed_by}: {entry.changes_summary} "
                f"[{', '.join(entry.fields_changed)}]"
            )

    async def verify(self) -> List[Tuple[str, str]]:
        """Check every stored history.

        A document that does not decode is reported as a problem of its own.

        Returns:
            List of (entity_id, problem) pairs; empty when all are valid
        """
        entity_type = self.store.entity_type
        listing = await self.store.list()
        problems: List[Tuple[str, str]] = []
        for position, document in enumerate(listing.documents):
            entity_id = str(document.get(entity_type.id_field) or f"#{position}")
            try:
                entity = Entity.from_document(entity_type, document)
                verify_history(entity.metadata, entity.entity_id)
            except MetricStoreError as e:
                problems.append((entity_id, e.message))
        logger.info(
            f"Verified {len(listing.documents)} {entity_type.name} histories",
            extra={"problems": len(problems)},
        )
        return problems


def _build_config(args: argparse.Namespace) -> CatalogConfig:
    config = CatalogConfig.from_env()
    if args.backend:
        config = dataclasses.replace(config, backend=StoreBackend(args.backend))
    if args.data_dir:
        config = dataclasses.replace(
            config, file_store=dataclasses.replace(config.file_store, data_dir=args.data_dir)
        )
    if args.db_path:
        config = dataclasses.replace(
            config, sqlite=dataclasses.replace(config.sqlite, db_path=args.db_path)
        )
    config.validate()
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Catalog store maintenance tool")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--backend", choices=[b.value for b in StoreBackend], help="Storage backend")
    common.add_argument("--type", dest="entity_type", default="metric", help="Entity type")
    common.add_argument("--data-dir", help="File backend data directory")
    common.add_argument("--db-path", help="SQLite database file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", parents=[common], help="Export to a bundle")
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    import_parser = subparsers.add_parser("import", parents=[common], help="Import a bundle")
    import_parser.add_argument("bundle", help="Bundle file to import")
    import_parser.add_argument(
        "--replace", action="store_true", help="Overwrite entities that already exist"
    )

    history_parser = subparsers.add_parser(
        "history", parents=[common], help="Show an entity's change history"
    )
    history_parser.add_argument("entity_id", help="Natural id of the entity")
    history_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    subparsers.add_parser("verify", parents=[common], help="Verify stored change histories")
    return parser


async def _run(args: argparse.Namespace, config: CatalogConfig) -> int:
    store = await open_store(config, args.entity_type)
    cli = StoreCLI(store)
    try:
        if args.command == "export":
            await cli.export(args.output)
        elif args.command == "import":
            await cli.import_(args.bundle, replace=args.replace)
        elif args.command == "history":
            await cli.history(args.entity_id, args.format)
        elif args.command == "verify":
            problems = await cli.verify()
            if problems:
                print(f"History verification FAILED for {len(problems)} entity(ies):")
                for entity_id, problem in problems:
                    print(f"  - {entity_id}: {problem}")
                return 1
            print("All change histories are valid")
        return 0
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the store tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    setup_logging(config)
    config.log_config()

    try:
        return asyncio.run(_run(args, config))
    except KeyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except MetricStoreError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
