#!/usr/bin/env python3
"""
Main CLI for Cockpit - passive work-context capture.

Usage:
    cockpit watch               - Run the watch daemon in the foreground
    cockpit snapshot [PATH]     - Capture a snapshot of a path's context
    cockpit list                - List recent snapshots
    cockpit search QUERY        - Search indexed file contents
    cockpit index [PATH]        - Index text files for search
    cockpit nudge               - Show current nudges
    cockpit summary             - Show today's activity summary
    cockpit status              - Show configuration and store status
    cockpit cleanup             - Apply snapshot and event retention
    cockpit init                - Write a default configuration file
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..daemon.capture import SnapshotService, context_from_path, summarize_recent_activity
from ..daemon.config import Config, WatcherConfig
from ..daemon.errors import ConfigError, SearchError, StoreError
from ..daemon.filters import IgnoreFilter
from ..daemon.gatekeeper import ANALYSIS_WINDOW, Gatekeeper, start_of_utc_day
from ..daemon.models import NudgePriority, utcnow
from ..daemon.search import SearchIndex, collect_documents
from ..daemon.store import ActivityStore
from ..daemon.utils import format_local_time, format_relative_time, truncate_string

console = Console()

PRIORITY_STYLES = {
    NudgePriority.HIGH: ("HIGH", "red"),
    NudgePriority.MEDIUM: ("MEDIUM", "yellow"),
    NudgePriority.LOW: ("LOW", "cyan"),
}


def _load_config(ctx: click.Context) -> Config:
    try:
        return Config.load_or_default(ctx.obj["config_path"])
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        ctx.exit(1)


def _open_store(ctx: click.Context, config: Config) -> ActivityStore:
    try:
        store = ActivityStore(config.database.path)
    except StoreError as e:
        console.print(f"[red]Error:[/red] {e}")
        ctx.exit(1)
    ctx.call_on_close(store.close)
    return store


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[Path], verbose: bool):
    """Cockpit - passive work-context capture and nudges."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@cli.command()
@click.pass_context
def watch(ctx):
    """Run the watch daemon until interrupted."""
    from ..daemon.main import main as daemon_main

    config_path = ctx.obj["config_path"]
    console.print("[cyan]Starting file watcher... Press Ctrl+C to stop.[/cyan]")
    code = asyncio.run(daemon_main(
        str(config_path) if config_path else None,
        verbose=ctx.obj["verbose"],
    ))
    ctx.exit(code)


@cli.command()
@click.argument("path", type=click.Path(path_type=Path), default=".")
@click.option("--note", "-n", help="Note to attach to the snapshot")
@click.pass_context
def snapshot(ctx, path: Path, note: Optional[str]):
    """Capture a snapshot of the context around PATH."""
    config = _load_config(ctx)
    service = SnapshotService(_open_store(ctx, config))

    try:
        snap = service.capture(context_from_path(path.resolve()), note)
    except StoreError as e:
        console.print(f"[red]Failed to capture:[/red] {e}")
        ctx.exit(1)

    console.print(f"[green]✓[/green] Snapshot captured: {snap.id}")
    console.print(f"  Time: {format_local_time(snap.timestamp)}")
    if snap.active_file:
        console.print(f"  File: {snap.active_file}")
    if snap.active_directory:
        console.print(f"  Directory: {snap.active_directory}")
    if snap.git_branch:
        console.print(f"  Git branch: {snap.git_branch}")
    if snap.notes:
        console.print(f"  Note: {snap.notes}")


@cli.command(name="list")
@click.option("--limit", "-l", default=10, help="Number of snapshots to show")
@click.pass_context
def list_snapshots(ctx, limit: int):
    """List recent snapshots."""
    config = _load_config(ctx)
    service = SnapshotService(_open_store(ctx, config))
    snapshots = service.get_recent(limit)

    if not snapshots:
        console.print("[yellow]No snapshots found[/yellow]")
        return

    table = Table(title="Recent Snapshots")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("When")
    table.add_column("Directory", no_wrap=False)
    table.add_column("Branch", style="magenta")
    table.add_column("Note", no_wrap=False)

    for s in snapshots:
        table.add_row(
            s.id[:8],
            format_relative_time(s.timestamp),
            s.active_directory or "-",
            s.git_branch or "",
            truncate_string(s.notes or "", 40),
        )

    console.print(table)


@cli.command()
@click.argument("query")
@click.option("--limit", "-l", default=10, help="Maximum results to show")
@click.pass_context
def search(ctx, query: str, limit: int):
    """Search indexed file contents."""
    config = _load_config(ctx)

    try:
        results = SearchIndex.beside(config.database.path).search(query, limit)
    except SearchError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        ctx.exit(1)

    if not results:
        console.print(f"[yellow]No results found for:[/yellow] {escape(query)}")
        return

    console.print(f"[bold]Search results for '{escape(query)}':[/bold]\n")
    for r in results:
        console.print(f"  [cyan]{r.title}[/cyan] (score: {r.score:.2f})")
        console.print(f"    {r.path}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path), default=".")
@click.option("--dry-run", "-d", is_flag=True, help="Only show what would be indexed")
@click.pass_context
def index(ctx, path: Path, dry_run: bool):
    """Index text files under PATH for search."""
    config = _load_config(ctx)
    root = path.resolve()
    console.print(f"Indexing files in: {root}\n")

    docs, skipped = collect_documents(root, IgnoreFilter(config.watcher.ignore_patterns))
    for doc in docs:
        verb = "Would index" if dry_run else "Indexing"
        console.print(f"  {verb}: {doc.path}")

    if docs and not dry_run:
        try:
            SearchIndex.beside(config.database.path).add_documents(docs)
        except SearchError as e:
            console.print(f"[red]Indexing failed:[/red] {e}")
            ctx.exit(1)

    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Files indexed: {len(docs)}")
    console.print(f"  Files skipped: {skipped}")
    if dry_run:
        console.print("\nRun without [cyan]--dry-run[/cyan] to actually index files.")


@cli.command()
@click.pass_context
def nudge(ctx):
    """Show nudges based on recent activity."""
    config = _load_config(ctx)
    gatekeeper = Gatekeeper(_open_store(ctx, config), config.gatekeeper)
    nudges = gatekeeper.analyze()

    if not nudges:
        console.print("[green]No nudges right now. Keep up the good work![/green]")
        return

    console.print("[bold]Nudges & Suggestions:[/bold]\n")
    for n in nudges:
        label, color = PRIORITY_STYLES[n.priority]
        console.print(f"  [{color}]\\[{label}][/{color}] {n.message}")


@cli.command()
@click.pass_context
def summary(ctx):
    """Show today's activity summary."""
    config = _load_config(ctx)
    store = _open_store(ctx, config)
    gatekeeper = Gatekeeper(store, config.gatekeeper)
    now = utcnow()
    daily = gatekeeper.daily_summary(now)

    console.print("[bold]Daily Summary[/bold]\n")
    console.print(daily.to_message())

    if daily.total_events > 0:
        console.print(f"\n{daily.activity_level.description}")
        console.print("\n[bold]Details:[/bold]")
        console.print(f"  Total events: {daily.total_events}")
        console.print(f"  Files modified: {daily.files_modified}")
        console.print(f"  Files created: {daily.files_created}")
        if daily.most_active_directory:
            console.print(f"  Most active directory: {daily.most_active_directory}")

        start = start_of_utc_day(now)
        try:
            latest = store.get_file_events(start, start + timedelta(days=1), limit=5)
        except StoreError as e:
            logger.warning(f"Could not list recent changes: {e}")
            latest = []
        if latest:
            console.print("\n[bold]Latest changes:[/bold]")
            for event in latest:
                console.print(
                    f"  {format_relative_time(event.timestamp)}  "
                    f"{event.event_type.value:<8} {event.path}"
                )


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration and store status."""
    config = _load_config(ctx)
    store = _open_store(ctx, config)

    console.print("[bold]Cockpit Status[/bold]\n")
    console.print("[bold]Configuration:[/bold]")
    console.print(f"  Watched directories: {len(config.watcher.directories)}")
    for d in config.watcher.directories:
        state = "[green]OK[/green]" if d.exists() else "[red]MISSING[/red]"
        console.print(f"    - {d} ({state})")
    console.print(f"  Ignore patterns: {', '.join(config.watcher.ignore_patterns) or '-'}")

    console.print("\n[bold]Database:[/bold]")
    console.print(f"  Path: {config.database.path}")
    console.print(f"  Snapshots: {store.count_snapshots()} (max {config.database.max_snapshots})")

    recent = summarize_recent_activity(store.get_recent_snapshots(ANALYSIS_WINDOW))
    console.print(f"\n[bold]Recent activity[/bold] (last {recent.total_snapshots} snapshots):")
    console.print(f"  Directories: {recent.unique_directories}")
    console.print(f"  Branches: {recent.unique_branches}")
    console.print(f"  Files touched: {recent.files_touched}")

    n = config.notifications
    console.print("\n[bold]Notifications:[/bold]")
    console.print(f"  Daily digest hour: {n.daily_digest_hour}:00")
    console.print(f"  Max nudges per day: {n.max_nudges_per_day}")
    console.print(
        f"  Context switch nudges: "
        f"{'enabled' if n.enable_context_switch_nudges else 'disabled'}"
    )


@cli.command()
@click.option("--max", "max_snapshots", type=int, help="Override the snapshot cap")
@click.pass_context
def cleanup(ctx, max_snapshots: Optional[int]):
    """Apply snapshot and file-event retention."""
    config = _load_config(ctx)
    store = _open_store(ctx, config)
    cap = config.database.max_snapshots if max_snapshots is None else max_snapshots

    try:
        deleted = SnapshotService(store).cleanup(cap)
        cutoff = utcnow() - timedelta(days=config.database.event_retention_days)
        events_deleted = store.cleanup_old_events(cutoff)
    except StoreError as e:
        console.print(f"[red]Cleanup failed:[/red] {e}")
        ctx.exit(1)

    console.print(f"[green]✓[/green] Removed {deleted} snapshots and {events_deleted} file events")


@cli.command()
@click.option("--path", "-p", "target", type=click.Path(path_type=Path), help="Where to write the config")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(target: Optional[Path], force: bool):
    """Write a default configuration file."""
    target = target or Config.default_config_paths()[1]
    if target.exists() and not force:
        console.print(f"[yellow]Config already exists:[/yellow] {target}")
        console.print("Use [cyan]--force[/cyan] to overwrite")
        return

    config = Config(watcher=WatcherConfig(directories=[Path.cwd()]))
    config.save(target)
    console.print(f"[green]✓[/green] Wrote config to {target}")


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
