"""Database management CLI commands."""

import asyncio

import typer
from rich.console import Console

from gtovantage.config import settings
from gtovantage.database import close_db, init_db

console = Console()
app = typer.Typer(help="Database management commands")


@app.command("init")
def init():
    """Create the verification token table (database backend)."""
    if settings.token_store_backend != "database":
        console.print(
            "[yellow]Token store backend is 'file'; no tables are needed.[/yellow] "
            "Set TOKEN_STORE_BACKEND=database to use the database."
        )
        raise typer.Exit(0)

    async def _init():
        try:
            await init_db()
        finally:
            await close_db()

    console.print("[dim]Creating tables...[/dim]")
    asyncio.run(_init())
    console.print("[green]Tables created![/green]")
