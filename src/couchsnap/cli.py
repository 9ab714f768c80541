"""Typer CLI for couchsnap."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog
import typer
from rich.console import Console
from rich.table import Table

from couchsnap.checkpoint.store import (
    BEGINNING,
    CheckpointStore,
    truncate_for_display,
)
from couchsnap.config.loader import load_platform_config
from couchsnap.config.models import PlatformConfig
from couchsnap.errors import ConfigError, SnapshotError
from couchsnap.observability.health import Status, check_health
from couchsnap.observability.logging_setup import configure_logging
from couchsnap.snapshot.naming import checkpoint_filename
from couchsnap.snapshot.runner import SnapshotResult, Snapshotter
from couchsnap.sources.couchdb.client import CouchClient
from couchsnap.sources.couchdb.source import CouchChangesSource

logger = structlog.get_logger()
console = Console()
err_console = Console(stderr=True)
app = typer.Typer(name="couchsnap", help="Incremental CouchDB changes snapshots")

_DB_OPTION = typer.Option(None, "--db", "--dbname", help="Database to snapshot")
_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Config YAML")
_OUTPUT_DIR_OPTION = typer.Option(
    None, "--output-dir", "-o", help="Directory for snapshot and meta files"
)


def _load(
    config_path: str | None,
    db: str | None = None,
    output_dir: Path | None = None,
    deletions: bool | None = None,
) -> PlatformConfig:
    snapshot: dict[str, Any] = {}
    if db is not None:
        snapshot["database"] = db
    if output_dir is not None:
        snapshot["output_dir"] = str(output_dir)
    if deletions is not None:
        snapshot["include_deletions"] = deletions
    try:
        platform = load_platform_config(
            config_path, {"snapshot": snapshot} if snapshot else None
        )
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        raise typer.Exit(1) from exc
    configure_logging(platform.log_level, platform.log_format)
    return platform


def _require_database(platform: PlatformConfig) -> str:
    if not platform.snapshot.database:
        err_console.print("[red]Config error:[/red] missing --db/--dbname")
        raise typer.Exit(1)
    return platform.snapshot.database


def _echo(line: str) -> None:
    console.print(line, markup=False, highlight=False, soft_wrap=True)


def _print_config(platform: PlatformConfig) -> None:
    table = Table(title="App Config")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("database", str(platform.snapshot.database))
    table.add_row("deletions", str(platform.snapshot.include_deletions))
    table.add_row("output_dir", str(platform.snapshot.output_dir))
    table.add_row("server", platform.server.url)
    table.add_row("batch_size", str(platform.feed.batch_size))
    table.add_row("retry.max_attempts", str(platform.retry.max_attempts))
    err_console.print(table)


async def run_snapshot(platform: PlatformConfig) -> SnapshotResult:
    """Take one snapshot using the CouchDB changes feed described by *platform*."""
    async with CouchClient(platform.server, platform.retry) as client:
        source = CouchChangesSource(client, platform.feed)
        snapshotter = Snapshotter(platform.snapshot, source, echo=_echo)
        return await snapshotter.run()


@app.command()
def snap(
    db: str | None = _DB_OPTION,
    deletions: bool | None = typer.Option(
        None,
        "--deletions/--no-deletions",
        help="Include deleted documents in the output",
    ),
    output_dir: Path | None = _OUTPUT_DIR_OPTION,
    config_path: str | None = _CONFIG_OPTION,
    print_config: bool = typer.Option(
        False, "--print-config", help="Print the resolved config first"
    ),
) -> None:
    """Write the changes since the last run to a new JSONL snapshot."""
    platform = _load(config_path, db, output_dir, deletions)
    _require_database(platform)
    if print_config:
        _print_config(platform)
    try:
        result = asyncio.run(run_snapshot(platform))
    except SnapshotError as exc:
        logger.error("snapshot.failed", error=str(exc))
        err_console.print(f"[red]Snapshot failed:[/red] {exc}")
        raise typer.Exit(1) from exc
    if result.failed:
        err_console.print(
            f"[yellow]{result.failed} change(s) could not be read or written[/yellow]"
        )


@app.command()
def status(
    db: str | None = _DB_OPTION,
    output_dir: Path | None = _OUTPUT_DIR_OPTION,
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Show the checkpoint recorded by the last completed snapshot."""
    platform = _load(config_path, db, output_dir)
    database = _require_database(platform)
    store = CheckpointStore(
        Path(platform.snapshot.output_dir) / checkpoint_filename(database)
    )
    record = store.load_record()
    if record is None:
        console.print(
            f"[yellow]No checkpoint for {database}[/yellow]; next run starts "
            f"from the beginning"
        )
        return

    table = Table(title=f"Checkpoint: {database}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("file", str(store.path))
    table.add_row("since", truncate_for_display(record.cursor or BEGINNING))
    table.add_row("startTime", str(record.started_at or ""))
    table.add_row("endTime", str(record.completed_at or ""))
    console.print(table)


@app.command()
def health(
    db: str | None = _DB_OPTION,
    config_path: str | None = _CONFIG_OPTION,
) -> None:
    """Check that the server (and optionally the database) is reachable."""
    platform = _load(config_path, db)

    async def _check() -> Any:
        async with CouchClient(platform.server, platform.retry) as client:
            return await check_health(client, platform.snapshot.database)

    result = asyncio.run(_check())

    table = Table(title="Server Health")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    table.add_column("Detail")
    for c in result.components:
        style = "green" if c.status == Status.HEALTHY else "red"
        table.add_row(c.name, f"[{style}]{c.status}[/{style}]", c.detail)
    console.print(table)
    if not result.healthy:
        raise typer.Exit(1)


@app.command()
def validate(
    config_path: str = typer.Argument(..., help="Path to config YAML"),
) -> None:
    """Validate a configuration file."""
    if not Path(config_path).exists():
        err_console.print(f"[red]Config file not found: {config_path}[/red]")
        raise typer.Exit(1)
    platform = _load(config_path)
    console.print(f"[green]Valid[/green] server={platform.server.url}")
    console.print(f"  database:  {platform.snapshot.database or '(set with --db)'}")
    console.print(f"  deletions: {platform.snapshot.include_deletions}")
    console.print(f"  output:    {platform.snapshot.output_dir}")
