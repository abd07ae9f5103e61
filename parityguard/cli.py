"""CLI interface for parityguard."""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

import click

from parityguard.app import build_services
from parityguard.cache import Cache
from parityguard.config import Config
from parityguard.database import Database, OperationStatus, OperationType
from parityguard.errors import ParityGuardError
from parityguard.logging_setup import setup_logging
from parityguard.protection import ProtectionRepository, format_protected_item
from parityguard.queue import EventLog, OperationQueue, kill_operation
from parityguard.verification import VerificationRepository


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a TOML configuration file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    ctx.ensure_object(dict)
    try:
        config = Config.load(config_path)
    except ParityGuardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    setup_logging("DEBUG" if verbose else config.logging.level, config.logging.file)
    ctx.obj["config"] = config


def _open_database(ctx: click.Context, database: Path | None) -> Database:
    config: Config = ctx.obj["config"]
    return Database(database or config.database_path, config.database)


def _enqueue(
    ctx: click.Context,
    database: Path | None,
    operation_type: OperationType,
    parameters: dict[str, Any],
) -> None:
    try:
        with _open_database(ctx, database) as db:
            operation_id = OperationQueue(db).add(operation_type, parameters)
    except ParityGuardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Queued {operation_type.value} operation {operation_id}")


def _target(path: str | None, item_id: int | None) -> dict[str, Any]:
    if path is None and item_id is None:
        click.echo("Error: PATH or --id is required.", err=True)
        sys.exit(1)
    params: dict[str, Any] = {}
    if path is not None:
        params["path"] = str(Path(path).resolve())
    if item_id is not None:
        params["id"] = item_id
    return params


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("-r", "--redundancy", type=click.IntRange(1, 100), help="Redundancy percentage")
@click.option("-t", "--file-type", "file_types", multiple=True, help="Extension to protect individually")
@click.option("-c", "--category", "categories", multiple=True, help="File category to protect individually")
@click.option("--block-count", type=int, help="par2 block count")
@click.option("--block-size", type=int, help="par2 block size in bytes")
@click.option("--recovery-files", type=int, help="Number of recovery files")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def protect(
    ctx: click.Context,
    path: Path,
    redundancy: int | None,
    file_types: tuple[str, ...],
    categories: tuple[str, ...],
    block_count: int | None,
    block_size: int | None,
    recovery_files: int | None,
    database: Path | None,
) -> None:
    """Queue creation of parity data for a file or directory."""
    params: dict[str, Any] = {"path": str(path.resolve())}
    if redundancy is not None:
        params["redundancy"] = redundancy
    if file_types:
        params["file_types"] = list(file_types)
    if categories:
        params["file_categories"] = list(categories)
    advanced = {
        "block_count": block_count,
        "block_size": block_size,
        "recovery_files": recovery_files,
    }
    advanced = {key: value for key, value in advanced.items() if value is not None}
    if advanced:
        params["advanced_settings"] = advanced
    _enqueue(ctx, database, OperationType.PROTECT, params)


@cli.command()
@click.argument("path", required=False)
@click.option("--id", "item_id", type=int, help="Protected item id")
@click.option("--force", is_flag=True, help="Prefer the whole-directory record for PATH")
@click.option("--metadata", "verify_metadata", is_flag=True, help="Also verify file metadata")
@click.option("--auto-restore", is_flag=True, help="Restore mismatching metadata")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def verify(
    ctx: click.Context,
    path: str | None,
    item_id: int | None,
    force: bool,
    verify_metadata: bool,
    auto_restore: bool,
    database: Path | None,
) -> None:
    """Queue verification of a protected item."""
    params = _target(path, item_id)
    params.update(
        force=force,
        verify_metadata=verify_metadata,
        auto_restore_metadata=auto_restore,
    )
    _enqueue(ctx, database, OperationType.VERIFY, params)


@cli.command()
@click.argument("path", required=False)
@click.option("--id", "item_id", type=int, help="Protected item id")
@click.option(
    "--restore-metadata/--no-restore-metadata",
    default=True,
    help="Restore captured metadata after a successful repair",
)
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def repair(
    ctx: click.Context,
    path: str | None,
    item_id: int | None,
    restore_metadata: bool,
    database: Path | None,
) -> None:
    """Queue repair of a protected item."""
    params = _target(path, item_id)
    params["restore_metadata"] = restore_metadata
    _enqueue(ctx, database, OperationType.REPAIR, params)


@cli.command()
@click.argument("path", required=False)
@click.option("--id", "item_id", type=int, help="Protected item id")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def remove(ctx: click.Context, path: str | None, item_id: int | None, database: Path | None) -> None:
    """Queue removal of protection and its parity data."""
    _enqueue(ctx, database, OperationType.REMOVE, _target(path, item_id))


@cli.command()
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def process(ctx: click.Context, database: Path | None) -> None:
    """Drain the operation queue. Exits quietly if another processor is running."""
    config: Config = ctx.obj["config"]
    try:
        with _open_database(ctx, database) as db:
            stats = build_services(config, db).processor().run()
    except ParityGuardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    if not stats.lock_acquired:
        click.echo("Another queue processor is already running.")
        return
    click.echo(
        f"Processed {stats.processed} operations: {stats.completed} completed, "
        f"{stats.failed} failed, {stats.skipped} skipped"
    )


@cli.command("queue")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in OperationStatus]),
    help="Only show operations with this status",
)
@click.option("--limit", type=int, default=50, help="Maximum operations to show")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def queue_cmd(
    ctx: click.Context,
    status_filter: str | None,
    limit: int,
    database: Path | None,
) -> None:
    """List queued and recent operations."""
    with _open_database(ctx, database) as db:
        status = OperationStatus(status_filter) if status_filter else None
        operations = OperationQueue(db).list_operations(status, limit)

    if not operations:
        click.echo("No operations found.")
        return

    click.echo("\nOperations:")
    click.echo("-" * 80)
    header = "ID".rjust(6) + "  " + "Type".ljust(9) + "Status".ljust(12)
    header += "Created".ljust(15) + "Target"
    click.echo(header)
    click.echo("-" * 80)
    for op in operations:
        target = op.path or f"item {op.item_id}"
        click.echo(
            f"{op.id:>6}  "
            f"{op.operation_type.value:<9}"
            f"{op.status.value:<12}"
            f"{_format_relative_time(op.created_at):<15}"
            f"{_truncate(target, 38)}"
        )


@cli.command()
@click.argument("operation_id", type=int)
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def operation(ctx: click.Context, operation_id: int, database: Path | None) -> None:
    """Show one operation and its result."""
    with _open_database(ctx, database) as db:
        op = OperationQueue(db).get(operation_id)

    if op is None:
        click.echo(f"Error: Operation {operation_id} not found.", err=True)
        sys.exit(1)

    click.echo(f"Operation {op.id}: {op.operation_type.value} ({op.status.value})")
    click.echo(f"  Parameters: {json.dumps(op.parameters)}")
    click.echo(f"  Created: {_format_timestamp(op.created_at)}")
    click.echo(f"  Started: {_format_timestamp(op.started_at)}")
    click.echo(f"  Completed: {_format_timestamp(op.completed_at)}")
    if op.pid:
        click.echo(f"  Worker pid: {op.pid}")
    if op.result is not None:
        click.echo("  Result:")
        for line in json.dumps(op.result, indent=2).splitlines():
            click.echo(f"    {line}")


@cli.command("list")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def list_items(ctx: click.Context, database: Path | None) -> None:
    """List protected items."""
    with _open_database(ctx, database) as db:
        items = [format_protected_item(item) for item in ProtectionRepository(db, Cache()).find_all()]

    if not items:
        click.echo("No protected items.")
        return

    click.echo("\nProtected Items:")
    click.echo("-" * 100)
    header = "ID".rjust(5) + "  " + "Path".ljust(38) + "Mode".ljust(24)
    header += "Status".ljust(16) + "Size (par2 / data)"
    click.echo(header)
    click.echo("-" * 100)
    for item in items:
        click.echo(
            f"{item['id']:>5}  "
            f"{_truncate(item['path'], 37):<38}"
            f"{_truncate(item['mode_label'], 23):<24}"
            f"{item['last_status'] or '-':<16}"
            f"{item['size_formatted']}"
        )


@cli.command()
@click.argument("path", required=False)
@click.option("--id", "item_id", type=int, help="Protected item id")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def status(ctx: click.Context, path: str | None, item_id: int | None, database: Path | None) -> None:
    """Show protection status and recent verification history."""
    target = _target(path, item_id)
    with _open_database(ctx, database) as db:
        cache = Cache()
        items_repo = ProtectionRepository(db, cache)
        history_repo = VerificationRepository(db, cache)
        if "id" in target:
            found = items_repo.find_by_id(target["id"])
            items = [found] if found else []
        else:
            items = items_repo.find_all_by_path(target["path"])

        if not items:
            click.echo("Error: No protection found.", err=True)
            sys.exit(1)

        for item in items:
            info = format_protected_item(item)
            click.echo(f"\n{info['path']} (id {info['id']})")
            click.echo(f"  Mode: {info['mode_label']}")
            click.echo(f"  Redundancy: {info['redundancy']}%")
            click.echo(f"  Parity: {info['par2_path']}")
            click.echo(f"  Size: {info['size_formatted']}")
            click.echo(f"  Protected: {info['protected_date']}")
            click.echo(f"  Last status: {info['last_status']} ({info['last_verified'] or 'never verified'})")
            assert item.id is not None
            history = history_repo.get_history(item.id)
            if history:
                click.echo("  History:")
                for entry in history:
                    click.echo(f"    {entry.verification_date}  {entry.status.value}")


@cli.command()
@click.argument("operation_id", type=int)
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def kill(ctx: click.Context, operation_id: int, database: Path | None) -> None:
    """Cancel a pending operation or terminate a running one."""
    try:
        with _open_database(ctx, database) as db:
            op = kill_operation(OperationQueue(db), operation_id)
    except ParityGuardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Operation {op.id} is now {op.status.value}")


@cli.command()
@click.argument("operation_id", type=int)
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def cancel(ctx: click.Context, operation_id: int, database: Path | None) -> None:
    """Cancel a pending operation."""
    try:
        with _open_database(ctx, database) as db:
            OperationQueue(db).cancel(operation_id)
    except ParityGuardError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Operation {operation_id} cancelled")


@cli.command()
@click.option("--days", type=int, help="Delete finished operations older than this many days")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def cleanup(ctx: click.Context, days: int | None, database: Path | None) -> None:
    """Delete old finished operations and expired events."""
    config: Config = ctx.obj["config"]
    with _open_database(ctx, database) as db:
        operations = OperationQueue(db).cleanup_old(days or config.queue.cleanup_days)
        events = EventLog(db).cleanup_old_events(config.queue.event_retention_days)
    click.echo(f"Removed {operations} operations and {events} events")


@cli.command()
@click.option("--since", "last_id", type=int, default=0, help="Only events after this id")
@click.option("--database", type=click.Path(path_type=Path), help="Path to database file")
@click.pass_context
def events(ctx: click.Context, last_id: int, database: Path | None) -> None:
    """Print events as JSON lines."""
    with _open_database(ctx, database) as db:
        for event in EventLog(db).get_events(last_id):
            click.echo(json.dumps(event))


def _format_timestamp(unix_timestamp: float | None) -> str:
    if not unix_timestamp:
        return "-"
    return datetime.fromtimestamp(unix_timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _format_relative_time(unix_timestamp: float | None) -> str:
    if not unix_timestamp:
        return "unknown"

    delta = datetime.now() - datetime.fromtimestamp(unix_timestamp)

    if delta.days > 1:
        return f"{delta.days} days ago"
    if delta.days == 1:
        return "yesterday"
    if delta.seconds > 3600:
        return f"{delta.seconds // 3600}h ago"
    if delta.seconds > 60:
        return f"{delta.seconds // 60}m ago"
    return "just now"


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return "..." + text[-(max_len - 3) :]


def main() -> None:
    """Entry point for the CLI."""
    cli(standalone_mode=True)  # pylint: disable=no-value-for-parameter


if __name__ == "__main__":
    main()
