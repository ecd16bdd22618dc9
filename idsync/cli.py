"""Command line interface for running imports outside the API."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import Settings, configure_logging, get_settings
from .exceptions import SyncError
from .models.connection import ConnectionConfig
from .models.task import ImportStats, TaskStatus
from .orchestrator import ImportExecutor
from .services.import_service import format_validation_issues
from .services.preview import PreviewService
from .services.validator import validate_attribute_mappings
from .storage import (
    SqlConnectionRepository,
    SqlGroupRepository,
    SqlIdentityRepository,
    create_database_engine,
    create_session_factory,
    init_database,
)

logger = logging.getLogger(__name__)

EXIT_CODES = {
    TaskStatus.COMPLETED: 0,
    TaskStatus.FAILED: 1,
    TaskStatus.COMPLETED_WITH_ERRORS: 2,
}


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Identity Sync - Import identities from external identity sources"
    )
    parser.add_argument("--database-url", help="Override the configured database URL")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run import
    import_parser = subparsers.add_parser("import", help="Import users and groups from a connection")
    import_parser.add_argument("--connection", required=True, help="Connection ID")
    import_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")
    import_parser.add_argument("--mapping", help="Path to a JSON {source: destination} field mapping")
    import_parser.add_argument("--groups", action="store_true", help="Also import groups")
    import_parser.add_argument("--no-users", action="store_true", help="Skip the users pass")
    import_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Preview source
    preview_parser = subparsers.add_parser("preview", help="Preview a connection's records")
    preview_parser.add_argument("--connection", required=True, help="Connection ID")
    preview_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Add connection
    add_parser = subparsers.add_parser("add-connection", help="Create a connection from a JSON file")
    add_parser.add_argument("--file", required=True, help="Path to connection JSON file")

    args = parser.parse_args(argv)

    settings = settings or get_settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    # Set up logging
    configure_logging("DEBUG" if getattr(args, "verbose", False) else settings.log_level)

    try:
        if args.command == "import":
            return run_import(args, settings)
        elif args.command == "preview":
            return run_preview(args, settings)
        elif args.command == "add-connection":
            return add_connection(args, settings)
    except SyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


def _connection_repo(settings: Settings) -> SqlConnectionRepository:
    engine = create_database_engine(settings.database_url, echo=settings.database_echo)
    init_database(engine)
    return SqlConnectionRepository(create_session_factory(engine))


def _load_connection(repo: SqlConnectionRepository, connection_id: str) -> Optional[ConnectionConfig]:
    connection = repo.get(connection_id)
    if connection is None:
        print(f"Connection not found: {connection_id}", file=sys.stderr)
    return connection


def run_import(args, settings: Settings) -> int:
    """Run an import synchronously and print a summary."""
    engine = create_database_engine(settings.database_url, echo=settings.database_echo)
    init_database(engine)
    factory = create_session_factory(engine)
    connection_repo = SqlConnectionRepository(factory)

    connection = _load_connection(connection_repo, args.connection)
    if connection is None:
        return 1

    field_mapping = {}
    if args.mapping:
        with open(args.mapping) as f:
            field_mapping = json.load(f)

    executor = ImportExecutor(
        connection_repo,
        SqlIdentityRepository(factory),
        SqlGroupRepository(factory),
        settings,
    )
    stats = executor.run(
        connection,
        field_mapping=field_mapping,
        dry_run=args.dry_run,
        import_users=not args.no_users,
        import_groups=args.groups,
    )

    print_summary(stats)
    return EXIT_CODES[stats.status]


def print_summary(stats: ImportStats) -> None:
    print("\n" + "=" * 60)
    print("DRY RUN COMPLETE" if stats.dry_run else "IMPORT COMPLETE")
    print("=" * 60)
    print(f"Status: {stats.status.value}")
    print(f"Records: {stats.total_records}")
    print(
        f"Users: {stats.users_created} created, {stats.users_updated} updated, "
        f"{stats.users_skipped} skipped"
    )
    if stats.groups_processed:
        print(
            f"Groups: {stats.groups_created} created, {stats.groups_updated} updated, "
            f"{stats.groups_skipped} skipped"
        )
    if stats.duration_ms is not None:
        print(f"Duration: {stats.duration_ms / 1000:.2f} seconds")

    for issue in format_validation_issues(stats.validation_issues):
        print(f"  ! {issue}")
    if stats.errors:
        print(f"\nErrors ({len(stats.errors)}):")
        for error in stats.errors[:20]:
            print(f"  - {error}")

    for sample in stats.samples:
        print(f"\n[{sample.action.value}] {json.dumps(sample.mapped, default=str)}")


def run_preview(args, settings: Settings) -> int:
    """Print a sample of a connection's records and suggested mappings."""
    connection = _load_connection(_connection_repo(settings), args.connection)
    if connection is None:
        return 1

    analysis = PreviewService(settings).preview(connection)

    print(f"\nSource: {analysis.source}")
    print(f"Total records: {analysis.total_records}")
    print(f"Previewed: {analysis.preview_records}")
    print("\nSuggested mapping:")
    for source, destination in analysis.suggested_mapping.items():
        print(f"  {source:<24} -> {destination or '(skip)'}")
    if analysis.sample_record:
        print("\nSample record:")
        print(json.dumps(analysis.sample_record, indent=2, default=str))
    return 0


def add_connection(args, settings: Settings) -> int:
    """Create a connection from a JSON file in the console's format."""
    with open(args.file) as f:
        data = json.load(f)

    config = ConnectionConfig.from_dict(data)
    errors = validate_attribute_mappings(config.attribute_mappings)
    if errors:
        for error in errors:
            print(error, file=sys.stderr)
        return 1

    config = _connection_repo(settings).create(config)
    print(f"Created connection {config.id} ({config.type.value})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
