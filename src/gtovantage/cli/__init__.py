"""CLI commands using Typer."""

import typer

from gtovantage.cli.db import app as db_app
from gtovantage.cli.tokens import app as tokens_app

app = typer.Typer(name="gtovantage", help="GTO Vantage CLI")

# Register sub-apps
app.add_typer(tokens_app, name="tokens")
app.add_typer(db_app, name="db")


@app.command()
def version():
    """Show version information."""
    from gtovantage import __version__

    typer.echo(f"GTO Vantage v{__version__}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
):
    """Run the API server."""
    import uvicorn

    from gtovantage.logging import get_uvicorn_log_config

    uvicorn.run(
        "gtovantage.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=get_uvicorn_log_config(),
    )


@app.command()
def worker(
    concurrency: int = typer.Option(1, help="Number of concurrent tasks"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Run the background worker (hourly token sweep)."""
    import asyncio

    from saq import Worker

    from gtovantage.logging import setup_logging
    from gtovantage.tasks import get_queue_settings

    setup_logging("DEBUG" if verbose else None)

    settings = get_queue_settings()

    typer.echo(f"Starting worker with concurrency={concurrency}")

    async def run_worker():
        w = Worker(
            queue=settings["queue"],
            functions=settings["functions"],
            cron_jobs=settings["cron_jobs"],
            concurrency=concurrency,
            startup=settings.get("startup"),
            shutdown=settings.get("shutdown"),
        )
        await w.start()

    asyncio.run(run_worker())


if __name__ == "__main__":
    app()
