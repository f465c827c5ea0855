"""Read commands over the cached work items."""

import typer
from rich.table import Table

from ado_mirror.azure_devops.sync import OutputFormat
from ado_mirror.cli.common import (
    OutputFormatOption,
    WorkItemIdArgument,
    console,
    print_json,
    run_async_command,
)
from ado_mirror.db import CommentRepository, WorkItemRepository, dispose_engine, get_session
from ado_mirror.schemas import CommentRecord, WorkItemRead

app = typer.Typer(help="Read cached work items")


@app.command("list")
def list_items(
    state: str | None = typer.Option(None, "--state", "-s", help="Filter by System.State"),
    work_item_type: str | None = typer.Option(
        None, "--type", "-t", help="Filter by System.WorkItemType"
    ),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum rows"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """List cached work items, most recently changed first.

    Examples:
        adomirror items list --state Active
        adomirror items list --type Bug --limit 10 --format json
    """

    async def _list() -> list[WorkItemRead]:
        try:
            async with get_session() as session:
                rows = await WorkItemRepository(session).list_active(
                    state=state, work_item_type=work_item_type, limit=limit
                )
                return WorkItemRead.from_orm_list(rows)
        finally:
            await dispose_engine()

    items = run_async_command(_list())

    if output_format == OutputFormat.JSON:
        print_json([item.model_dump(mode="json", exclude={"fields"}) for item in items])
        return

    if not items:
        console.print("[dim]No cached work items match.[/dim]")
        return

    table = Table(title="Cached work items")
    table.add_column("Id", style="cyan")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Title", max_width=50)
    table.add_column("Assigned")
    table.add_column("Changed")
    for item in items:
        table.add_row(
            str(item.id),
            item.work_item_type or "-",
            item.state or "-",
            item.title,
            item.assigned_to or "-",
            f"{item.changed_date:%Y-%m-%d}" if item.changed_date else "-",
        )
    console.print(table)


@app.command("show")
def show_item(
    work_item_id: WorkItemIdArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Show one cached work item with its comments.

    Tombstoned work items are still shown, flagged as deleted.

    Examples:
        adomirror items show 42
    """

    async def _show() -> tuple[WorkItemRead | None, list[CommentRecord]]:
        try:
            async with get_session() as session:
                row = await WorkItemRepository(session).find_by_id(work_item_id)
                if row is None:
                    return None, []
                comments = await CommentRepository(session).list_for_work_item(work_item_id)
                return WorkItemRead.from_orm(row), CommentRecord.from_orm_list(comments)
        finally:
            await dispose_engine()

    item, comments = run_async_command(_show())
    if item is None:
        console.print(f"[red]Error:[/red] Work item #{work_item_id} is not cached")
        raise typer.Exit(1)

    if output_format == OutputFormat.JSON:
        data = item.model_dump(mode="json")
        data["comments"] = [c.model_dump(mode="json") for c in comments]
        print_json(data)
        return

    deleted = " [red](deleted)[/red]" if item.is_deleted else ""
    console.print(f"[bold]#{item.id}[/bold] {item.title}{deleted}")
    console.print(f"  Type:     {item.work_item_type or '-'}")
    console.print(f"  State:    {item.state or '-'}")
    console.print(f"  Assigned: {item.assigned_to or '-'}")
    console.print(f"  Area:     {item.area_path or '-'}")
    console.print(f"  Revision: {item.rev}")
    if item.last_synced_at:
        console.print(f"  Synced:   {item.last_synced_at:%Y-%m-%d %H:%M:%S} UTC")
    console.print(f"  Fields:   {len(item.fields)}")

    if comments:
        console.print()
        console.print(f"[bold]Comments ({len(comments)}):[/bold]")
        for comment in comments:
            author = comment.created_by or "unknown"
            text = comment.text.strip()
            if len(text) > 120:
                text = text[:117] + "..."
            console.print(f"  [cyan]{author}[/cyan]: {text}")
