"""Sync commands for ADO Mirror."""

import asyncio
from datetime import datetime
from typing import Any

import typer

from ado_mirror.azure_devops import AzureDevOpsClient
from ado_mirror.azure_devops.sync import OutputFormat, SyncEngine, SyncStrategy
from ado_mirror.cli.common import OutputFormatOption, console, print_json, run_async_command
from ado_mirror.config import get_settings
from ado_mirror.db import (
    CommentRepository,
    SyncCursorRepository,
    WorkItemRepository,
    create_tables,
    dispose_engine,
    get_session,
    get_session_factory,
)

app = typer.Typer(help="Sync work items from Azure DevOps")


def _build_engine(client: AzureDevOpsClient) -> SyncEngine:
    return SyncEngine(client, get_session_factory(), get_settings().sync)


@app.command("run")
def sync_run(
    incremental: bool = typer.Option(
        False,
        "--incremental",
        "-i",
        help="Only discover work items changed since the last sync (no deletion sweep)",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        max=50,
        help="Work items whose comments are fetched concurrently",
    ),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Run one sync pass now.

    Examples:
        adomirror sync run
        adomirror sync run --incremental
        adomirror sync run --concurrency 10 --format json
    """
    strategy = SyncStrategy.INCREMENTAL if incremental else SyncStrategy.FULL

    async def _sync() -> dict[str, Any]:
        await create_tables()
        try:
            async with AzureDevOpsClient(probe_on_start=False) as client:
                engine = _build_engine(client)
                result = await engine.run_pass(strategy=strategy, concurrency=concurrency)
                return result.to_dict()
        finally:
            await dispose_engine()

    if output_format == OutputFormat.TEXT:
        console.print(f"[dim]Running {strategy.value} sync pass...[/dim]")

    result = run_async_command(_sync(), error_prefix="Sync failed")

    if output_format == OutputFormat.JSON:
        print_json(result)
    else:
        _print_pass(result)

    if result["phase"] == "failed":
        raise typer.Exit(1)


def _print_pass(result: dict[str, Any]) -> None:
    phase = result["phase"]
    style = {"done": "green", "partial_failure": "yellow"}.get(phase, "red")
    console.print(f"[bold]Sync {phase.replace('_', ' ')}[/bold] [{style}]●[/{style}]")
    console.print()
    console.print(f"  Discovered:          {result['discovered']}")
    console.print(f"  Fetched:             {result['fetched']}")
    console.print(f"  [green]Created:[/green]             {result['created']}")
    console.print(f"  [blue]Updated:[/blue]             {result['updated']}")
    if result["restored"]:
        console.print(f"  [blue]Restored:[/blue]            {result['restored']}")
    console.print(f"  [dim]Skipped (unchanged):[/dim] {result['skipped_unchanged']}")
    if result["skipped_stale"]:
        console.print(f"  [dim]Skipped (stale):[/dim]     {result['skipped_stale']}")
    console.print(f"  Soft-deleted:        {len(result['deleted'])}")
    if result["purged"]:
        console.print(f"  Purged:              {len(result['purged'])}")
    console.print(f"  Comments written:    {result['comments_written']}")
    console.print(f"  Duration: {result['duration_seconds']:.1f}s")

    if result["error"]:
        console.print()
        console.print(f"[red]Error:[/red] {result['error']}")

    if result["failed"]:
        console.print()
        console.print(f"[bold]Failed work items ({result['failed']}):[/bold]")
        for failure in result["failures"]:
            marker = " [dim](transient)[/dim]" if failure["retryable"] else ""
            console.print(f"  #{failure['work_item_id']}: {failure['error']}{marker}")


@app.command("status")
def sync_status(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Show what the local store holds and when it was last synced.

    Examples:
        adomirror sync status
        adomirror sync status --format json
    """

    async def _status() -> dict[str, Any]:
        await create_tables()
        try:
            async with get_session() as session:
                work_items = WorkItemRepository(session)
                last_sync = await SyncCursorRepository(session).latest_sync_time()
                total = await work_items.count()
                tracked = len(await work_items.list_tracked_ids())
                comments = await CommentRepository(session).count()
        finally:
            await dispose_engine()

        staleness = get_settings().sync.staleness_threshold
        stale = last_sync is None or datetime.now(last_sync.tzinfo) - last_sync >= staleness
        return {
            "last_sync_at": last_sync.isoformat() if last_sync else None,
            "stale": stale,
            "tracked": tracked,
            "tombstoned": total - tracked,
            "comments": comments,
        }

    status = run_async_command(_status(), error_prefix="Status failed")

    if output_format == OutputFormat.JSON:
        print_json(status)
        return

    console.print("[bold]Sync Status[/bold]")
    console.print()
    console.print(f"  Last sync:   {status['last_sync_at'] or '[dim]never[/dim]'}")
    freshness = "[yellow]stale[/yellow]" if status["stale"] else "[green]fresh[/green]"
    console.print(f"  Freshness:   {freshness}")
    console.print(f"  Work items:  {status['tracked']}")
    console.print(f"  Tombstoned:  {status['tombstoned']}")
    console.print(f"  Comments:    {status['comments']}")


@app.command("serve")
def sync_serve() -> None:
    """Run the background sync loop until interrupted.

    Skips the initial pass when the local store is fresh, then syncs every
    SYNC__INTERVAL_MINUTES.

    Examples:
        adomirror sync serve
    """

    async def _serve() -> None:
        await create_tables()
        try:
            async with AzureDevOpsClient() as client:
                engine = _build_engine(client)
                await engine.startup()
                engine.start()
                console.print(
                    f"[green]Background sync running[/green] "
                    f"(every {engine.config.interval_minutes:g} minutes, Ctrl+C to stop)"
                )
                try:
                    await asyncio.Event().wait()
                finally:
                    await engine.stop()
        finally:
            await dispose_engine()

    try:
        run_async_command(_serve(), error_prefix="Sync service failed")
    except KeyboardInterrupt:
        console.print("\n[dim]Background sync stopped[/dim]")
