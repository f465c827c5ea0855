"""Azure DevOps API verification and write commands."""

from typing import Any

import typer
from rich.table import Table

from ado_mirror.azure_devops import AzureDevOpsClient
from ado_mirror.azure_devops.sync import OutputFormat
from ado_mirror.cli.common import (
    OutputFormatOption,
    WorkItemIdArgument,
    console,
    print_json,
    run_async_command,
)
from ado_mirror.schemas import AzureDevOpsComment, AzureDevOpsWorkItem

app = typer.Typer(help="Azure DevOps API commands")


def _truncate(text: str, width: int = 60) -> str:
    return text[: width - 3] + "..." if len(text) > width else text


def _print_work_item(item: AzureDevOpsWorkItem) -> None:
    console.print(f"[bold]#{item.id}[/bold] {item.title}")
    console.print(f"  Type:     {item.work_item_type or '-'}")
    console.print(f"  State:    {item.state or '-'}")
    console.print(f"  Assigned: {item.assigned_to or '-'}")
    console.print(f"  Revision: {item.rev}")
    if item.changed_date:
        console.print(f"  Changed:  {item.changed_date:%Y-%m-%d %H:%M:%S} UTC")
    console.print(f"  Comments: {item.comment_count}")
    if item.relations:
        console.print(f"  Relations: {len(item.relations)}")


def _comment_row(comment: AzureDevOpsComment) -> tuple[str, str, str, str]:
    author = comment.created_by.label if comment.created_by else None
    created = f"{comment.created_date:%Y-%m-%d}" if comment.created_date else "-"
    return (str(comment.id), author or "-", created, _truncate(comment.text.strip()))


@app.command("test")
def test_connection() -> None:
    """Test Azure DevOps connectivity and PAT validity.

    Examples:
        adomirror devops test
    """

    async def _test() -> tuple[bool, dict[str, str], dict[str, Any]]:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            ok = await client.validate_connection()
            return ok, client.connection_info(), client.get_rate_limit_status()

    ok, info, rate = run_async_command(_test())

    console.print(f"[bold]Organization:[/bold] {info['organization']}")
    console.print(f"[bold]Project:[/bold]      {info['project']}")
    console.print(f"[bold]Base URL:[/bold]     {info['base_url']}")
    console.print(f"[bold]API version:[/bold]  {info['api_version']}")

    for state in rate["resources"].values():
        console.print(
            f"[bold]Quota:[/bold]        {state['remaining']}/{state['limit']} remaining "
            f"({state['resource']})"
        )

    if not ok:
        console.print("\n[red]Azure DevOps connection failed.[/red] See the log for guidance.")
        raise typer.Exit(1)
    console.print("\n[green]Azure DevOps connection verified![/green]")


@app.command("item")
def show_item(
    work_item_id: WorkItemIdArgument,
    expand: str | None = typer.Option(
        None,
        "--expand",
        "-e",
        help="Expansion: None, Relations, Fields, Links or All",
    ),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Fetch one work item live from Azure DevOps.

    Examples:
        adomirror devops item 42
        adomirror devops item 42 --expand Relations --format json
    """

    async def _fetch() -> AzureDevOpsWorkItem:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            return await client.get_work_item(work_item_id, expand=expand)

    item = run_async_command(_fetch())
    if output_format == OutputFormat.JSON:
        print_json(item.raw or item.model_dump(mode="json"))
        return
    _print_work_item(item)


@app.command("query")
def run_query(
    wiql: str = typer.Argument(..., help="WIQL query text"),
    top: int | None = typer.Option(None, "--top", "-t", min=1, help="Maximum results"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Run a WIQL query and list the matching work item ids.

    Examples:
        adomirror devops query "SELECT [System.Id] FROM WorkItems WHERE [System.State] = 'Active'"
    """

    async def _query() -> list[int]:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            refs = await client.query_work_items(wiql, top=top)
            return [ref.id for ref in refs]

    ids = run_async_command(_query(), error_prefix="Query failed")
    if output_format == OutputFormat.JSON:
        print_json(ids)
        return

    console.print(f"Found {len(ids)} work item(s)")
    if ids:
        preview = ", ".join(str(i) for i in ids[:20])
        more = f" ... and {len(ids) - 20} more" if len(ids) > 20 else ""
        console.print(f"  {preview}{more}")


@app.command("comments")
def list_comments(
    work_item_id: WorkItemIdArgument,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """List the comments on a work item.

    Examples:
        adomirror devops comments 42
    """

    async def _comments() -> list[AzureDevOpsComment]:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            return await client.get_comments(work_item_id)

    comments = run_async_command(_comments())
    if output_format == OutputFormat.JSON:
        print_json([c.model_dump(mode="json", by_alias=True) for c in comments])
        return

    if not comments:
        console.print(f"Work item #{work_item_id} has no comments")
        return

    table = Table(title=f"Comments on #{work_item_id}")
    table.add_column("Id", style="cyan")
    table.add_column("Author")
    table.add_column("Created")
    table.add_column("Text", max_width=60)
    for comment in comments:
        table.add_row(*_comment_row(comment))
    console.print(table)


@app.command("comment")
def add_comment(
    work_item_id: WorkItemIdArgument,
    text: str = typer.Argument(..., help="Comment text (HTML allowed)"),
) -> None:
    """Add a comment to a work item.

    Comment creation is not retried blindly; check the work item before
    re-running this command after a failure.

    Examples:
        adomirror devops comment 42 "Deployed to staging"
    """

    async def _add() -> AzureDevOpsComment:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            return await client.add_comment(work_item_id, text)

    comment = run_async_command(_add(), error_prefix="Comment failed")
    console.print(f"[green]Added comment {comment.id}[/green] to work item #{work_item_id}")


@app.command("link")
def link_resource(
    work_item_id: WorkItemIdArgument,
    url: str = typer.Argument(..., help="Absolute URL to link (e.g. a pull request)"),
    comment: str = typer.Option(
        "Pull Request",
        "--comment",
        "-m",
        help="Comment stored on the relation",
    ),
) -> None:
    """Append a hyperlink relation to a work item.

    Examples:
        adomirror devops link 42 https://github.com/org/repo/pull/7
    """

    async def _link() -> AzureDevOpsWorkItem:
        async with AzureDevOpsClient(probe_on_start=False) as client:
            return await client.link_to_external_resource(work_item_id, url, comment=comment)

    item = run_async_command(_link(), error_prefix="Link failed")
    relations = len(item.relations or [])
    console.print(
        f"[green]Linked[/green] {url} to work item #{item.id} (revision {item.rev}, "
        f"{relations} relation(s))"
    )
