"""Command-line interface for the CRM migration engine."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import EngineConfig
from .exceptions import MigrationEngineError
from .orchestrator import MigrationController

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="CRM Migration Engine - Migrate CRM exports into the canonical schema"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Analyze file
    analyze_parser = subparsers.add_parser("analyze", help="Analyze a CRM export")
    analyze_parser.add_argument("file", help="Path to the CSV or JSON export")
    analyze_parser.add_argument("--type", dest="file_type", help="csv or json (defaults to the file extension)")
    analyze_parser.add_argument("--crm", help="Source CRM key (detected if omitted)")

    # List connectors
    subparsers.add_parser("connectors", help="List supported source CRMs")

    # Run a migration locally
    migrate_parser = subparsers.add_parser("migrate", help="Migrate an export into the destination")
    migrate_parser.add_argument("file", help="Path to the CSV or JSON export")
    migrate_parser.add_argument("--type", dest="file_type", help="csv or json (defaults to the file extension)")
    migrate_parser.add_argument("--crm", help="Source CRM key (detected if omitted)")
    migrate_parser.add_argument("--mapping", help="JSON file with a list of field mappings (suggested if omitted)")
    migrate_parser.add_argument("--name", help="Migration name")
    migrate_parser.add_argument("--database-url", help="Destination database URL (in-memory if omitted)")

    # Preview transformation
    preview_parser = subparsers.add_parser("preview", help="Preview advanced transformations on a record")
    preview_parser.add_argument("--input", required=True, help="Path to a JSON record")
    preview_parser.add_argument("--transform", required=True, help="Path to a JSON list of transformations")

    # Serve API
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port")

    args = parser.parse_args(argv)
    config = EngineConfig.from_env()

    # Set up logging
    log_level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        if args.command == "analyze":
            run_analyze(args, config)
        elif args.command == "connectors":
            run_connectors(config)
        elif args.command == "migrate":
            asyncio.run(run_migrate(args, config))
        elif args.command == "preview":
            run_preview(args, config)
        elif args.command == "serve":
            run_serve(args)
        else:
            parser.print_help()
    except MigrationEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _read_export(path: str, file_type: Optional[str]) -> Dict[str, str]:
    file_path = Path(path)
    return {
        "content": file_path.read_text(encoding="utf-8"),
        "file_type": (file_type or file_path.suffix.lstrip(".") or "csv").lower(),
    }


def run_analyze(args, config: EngineConfig):
    """Analyze an export and print the result."""
    export = _read_export(args.file, args.file_type)
    controller = MigrationController.from_config(config)
    analysis = controller.analyze_file(export["content"], export["file_type"], args.crm)
    print(json.dumps(analysis.to_dict(), indent=2, default=str))


def run_connectors(config: EngineConfig):
    """List supported source CRMs."""
    controller = MigrationController.from_config(config)
    print("\n=== Supported CRMs ===")
    for connector in controller.list_connectors():
        print(f"  {connector.key:<12} {connector.name} ({connector.vendor})")


async def run_migrate(args, config: EngineConfig):
    """Create and run a migration, waiting for it to finish."""
    if args.database_url:
        config.database_url = args.database_url

    export = _read_export(args.file, args.file_type)
    controller = MigrationController.from_config(config)

    analysis = controller.analyze_file(export["content"], export["file_type"], args.crm)
    mappings: List[Any]
    if args.mapping:
        with open(args.mapping) as f:
            mappings = json.load(f)
    else:
        mappings = analysis.suggested_mappings
        print(f"Using {len(mappings)} suggested mappings")

    migration, warnings = controller.create_migration(
        name=args.name or Path(args.file).stem,
        source_crm=analysis.detected_crm,
        file_content=export["content"],
        file_type=export["file_type"],
        mappings=mappings,
    )
    for warning in warnings:
        print(f"Warning: {warning}")

    await controller.run_migration(migration.id)
    await controller.join()
    await controller.shutdown()

    result = controller.get_status(migration.id)
    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    print(f"Records: {result.total_records}")
    print(f"Migrated: {result.migrated_records}")
    print(f"Failed: {result.failed_records}")
    if result.duration_ms is not None:
        print(f"Duration: {result.duration_ms / 1000:.2f} seconds")

    for entry in result.error_log[:10]:
        print(f"  - record {entry.get('record_index')}: {entry.get('error')}")


def run_preview(args, config: EngineConfig):
    """Preview transformations on one record."""
    with open(args.input) as f:
        source_data = json.load(f)
    with open(args.transform) as f:
        transformations = json.load(f)

    controller = MigrationController(config=config)
    preview = controller.preview_transformation(source_data, transformations)
    print(json.dumps(preview, indent=2, default=str))


def run_serve(args):
    """Run the HTTP API with uvicorn."""
    import uvicorn
    from .api.main import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
