"""Local store commands."""

import typer

from ado_mirror.cli.common import console, run_async_command
from ado_mirror.config import get_settings
from ado_mirror.db import create_tables, dispose_engine

app = typer.Typer(help="Local store commands")


@app.command("init")
def init_db() -> None:
    """Create the local store tables (safe to run repeatedly).

    Examples:
        adomirror db init
    """

    async def _init() -> None:
        try:
            await create_tables()
        finally:
            await dispose_engine()

    run_async_command(_init(), error_prefix="Database init failed")
    console.print(f"[green]Database ready:[/green] {get_settings().database_url}")
