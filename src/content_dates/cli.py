"""Command line interface for Content Dates."""

import logging
import subprocess
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigManager
from .services.cache_store import CacheStore, CacheStoreError
from .services.history_source import HistoryKind
from .services.timestamp_index import EPOCH, ContentDates

console = Console()

KIND_CHOICES = {
    "mod": (HistoryKind.MODIFICATION,),
    "pub": (HistoryKind.PUBLICATION,),
    "all": tuple(HistoryKind),
}

SECONDS_PER_DAY = 24 * 60 * 60

# Failures that end a command with a message instead of a traceback
FATAL_ERRORS = (
    subprocess.CalledProcessError,
    subprocess.TimeoutExpired,
    FileNotFoundError,
    CacheStoreError,
    ValueError,
)


def format_timestamp(timestamp: float) -> str:
    """Render an epoch timestamp as an ISO-8601 UTC string."""
    if timestamp == EPOCH:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec="seconds")


def _describe_error(error: Exception) -> str:
    if isinstance(error, subprocess.CalledProcessError):
        stderr = (error.stderr or "").strip()
        return f"git failed ({error.returncode}): {stderr or error.cmd}"
    return str(error)


def _load_dates(ctx: click.Context) -> ContentDates:
    config = ctx.obj["config_manager"].load()
    return ContentDates(config)


@click.group()
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    help="Start directory for config discovery (walks up to find .content-dates/)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="content-dates")
@click.pass_context
def cli(ctx, config: Optional[str], path: Optional[str], verbose: bool):
    """Git-derived modification and publication dates for content files.

    \b
    Dates are computed from git history once, cached under the metadata
    directory and updated incrementally on later runs.

    \b
    EXAMPLES:
      content-dates refresh              # Update both history snapshots
      content-dates show posts/hello.md  # Dates for one file
      content-dates recent --days 30     # Recently published files
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    elif path:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack(
            Path(path).resolve()
        )
    else:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack()


@cli.command()
@click.option(
    "--kind",
    type=click.Choice(list(KIND_CHOICES)),
    default="all",
    help="Which history snapshot to update (default: all)",
)
@click.pass_context
def refresh(ctx, kind: str):
    """Update the cached history snapshots."""
    try:
        dates = _load_dates(ctx)
        snapshots = dates.refresh(KIND_CHOICES[kind])
    except FATAL_ERRORS as e:
        console.print(f"❌ Failed to refresh history: {_describe_error(e)}", style="red")
        sys.exit(1)

    for history_kind, snapshot in snapshots.items():
        if snapshot is None:
            console.print(
                f"⚠️ Caching disabled, {history_kind.label} history not stored",
                style="yellow",
            )
        else:
            console.print(
                f"✅ {history_kind.label.capitalize()} history through "
                f"{snapshot.revision} ({snapshot.path.name})",
                style="green",
            )


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@click.pass_context
def show(ctx, paths: Tuple[str, ...]):
    """Show modification and publication dates for PATHS."""
    try:
        dates = _load_dates(ctx)
        rows = [
            (
                path,
                format_timestamp(dates.modification_time(path)),
                format_timestamp(dates.publication_time(path)),
                str(dates.modification_count(path)),
            )
            for path in paths
        ]
    except FATAL_ERRORS as e:
        console.print(f"❌ Failed to read history: {_describe_error(e)}", style="red")
        sys.exit(1)

    table = Table(title="Content Dates")
    table.add_column("Path", style="cyan")
    table.add_column("Modified", style="green")
    table.add_column("Published", style="magenta")
    table.add_column("Commits", justify="right")
    for row in rows:
        table.add_row(*row)
    console.print(table)


@cli.command()
@click.option(
    "--kind",
    type=click.Choice(["mod", "pub"]),
    default="pub",
    help="List recently modified or recently published files (default: pub)",
)
@click.option("--days", type=int, default=180, help="How far back to look (default: 180)")
@click.option("--limit", type=int, default=None, help="Maximum number of files to list")
@click.pass_context
def recent(ctx, kind: str, days: int, limit: Optional[int]):
    """List files changed or published in the last DAYS days."""
    history_kind = KIND_CHOICES[kind][0]
    since = time.time() - days * SECONDS_PER_DAY

    try:
        matches: List[Tuple[str, float]] = _load_dates(ctx).recent(history_kind, since)
    except FATAL_ERRORS as e:
        console.print(f"❌ Failed to read history: {_describe_error(e)}", style="red")
        sys.exit(1)

    if limit is not None:
        matches = matches[:limit]

    if not matches:
        console.print(f"No files with a {history_kind.label} time in the last {days} days")
        return

    verb = "Published" if history_kind is HistoryKind.PUBLICATION else "Modified"
    table = Table(title=f"{verb} in the last {days} days")
    table.add_column(verb, style="green")
    table.add_column("Path", style="cyan")
    for path, timestamp in matches:
        table.add_row(format_timestamp(timestamp), path)
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the cached history snapshots."""
    try:
        config = ctx.obj["config_manager"].load()
    except ValueError as e:
        console.print(f"❌ {e}", style="red")
        sys.exit(1)

    store = CacheStore(config.resolved_metadata_dir())

    table = Table(title="Content Dates Status")
    table.add_column("History", style="cyan")
    table.add_column("Revision", style="magenta")
    table.add_column("Snapshot", style="green")
    table.add_column("Size", justify="right")

    for kind in HistoryKind:
        snapshots = store.list_snapshots(kind)
        if not snapshots:
            table.add_row(kind.label, "-", "not cached", "-")
            continue
        current = snapshots[0]
        name = current.path.name
        if len(snapshots) > 1:
            name += f" (+{len(snapshots) - 1} stale)"
        table.add_row(
            kind.label, current.revision, name, f"{current.path.stat().st_size:,}"
        )

    console.print(table)
    console.print(f"Repository: {config.repo_dir}  Ref: {config.ref}", style="dim")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
