"""Main CLI application for ADO Mirror."""

from typing import Annotated

import typer
from rich.console import Console

from ado_mirror import __version__
from ado_mirror.cli import db as db_cmd
from ado_mirror.cli import devops as devops_cmd
from ado_mirror.cli import items as items_cmd
from ado_mirror.cli import sync as sync_cmd
from ado_mirror.config import get_settings
from ado_mirror.logging import setup_logging

app = typer.Typer(
    name="adomirror",
    help="Local mirror of Azure DevOps work items with resilient background sync.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"adomirror version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """ADO Mirror - Mirror Azure DevOps work items into a local store."""
    settings = get_settings()
    setup_logging(settings.log_level, verbose=verbose, quiet=quiet, config=settings.logging)


# Register subcommands
app.add_typer(db_cmd.app, name="db")
app.add_typer(sync_cmd.app, name="sync")
app.add_typer(devops_cmd.app, name="devops")
app.add_typer(items_cmd.app, name="items")


if __name__ == "__main__":
    app()
