"""Verification token CLI commands."""

import asyncio
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from gtovantage.config import settings
from gtovantage.services.email import email_service
from gtovantage.services.token_store import VerificationError
from gtovantage.services.verification import verification_service
from gtovantage.tasks import queue
from gtovantage.tasks.maintenance import MAINTENANCE_TIMEOUT_SECONDS
from gtovantage.utils.clock import from_epoch_ms

console = Console()
app = typer.Typer(help="Verification token commands")


def _fail(error: VerificationError) -> NoReturn:
    console.print(f"[red]Error:[/red] {error} [dim]({error.code})[/dim]")
    raise typer.Exit(1)


@app.command("issue")
def issue(
    email: str = typer.Argument(..., help="Email address to verify"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    send_email: bool = typer.Option(False, "--send-email", help="Also send the verification email"),
):
    """Issue a verification token and print its link."""

    async def _issue():
        try:
            issued = await verification_service.issue(email, name)
        except VerificationError as e:
            _fail(e)

        console.print(f"[green]Issued token for[/green] {issued.email}")
        console.print(f"Token:   {issued.token}")
        console.print(f"URL:     {issued.verification_url}")
        console.print(f"Expires: {issued.expires_at.isoformat()}")

        if send_email:
            sent = await email_service.send_verification_email(
                to=issued.email, verification_url=issued.verification_url, name=name
            )
            if sent:
                console.print("[green]Verification email sent[/green]")
            else:
                console.print("[red]Failed to send verification email[/red]")
                raise typer.Exit(1)

    asyncio.run(_issue())


@app.command("redeem")
def redeem(token: str = typer.Argument(..., help="Token to redeem")):
    """Redeem a verification token."""

    async def _redeem():
        try:
            email = await verification_service.redeem(token)
        except VerificationError as e:
            _fail(e)
        console.print(f"[green]Verified:[/green] {email}")

    asyncio.run(_redeem())


@app.command("show")
def show(token: str = typer.Argument(..., help="Token to inspect")):
    """Show the stored state of a token without changing it."""

    async def _show():
        try:
            record = await verification_service.inspect(token)
        except VerificationError as e:
            _fail(e)

        if record is None:
            console.print("[red]Error:[/red] Token not found")
            raise typer.Exit(1)

        now = verification_service.clock()
        if record.used:
            state = "[magenta]used[/magenta]"
        elif record.is_expired(now):
            state = "[yellow]expired[/yellow]"
        else:
            state = "[green]active[/green]"

        table = Table(title="Verification Token")
        table.add_column("Field", style="cyan")
        table.add_column("Value")

        table.add_row("Email", record.email)
        table.add_row("Name", record.name or "-")
        table.add_row("State", state)
        table.add_row("Created", from_epoch_ms(record.created_at).isoformat())
        table.add_row("Expires", from_epoch_ms(record.expiration_time).isoformat())
        table.add_row(
            "Used At", from_epoch_ms(record.used_at).isoformat() if record.used_at else "-"
        )

        console.print(table)

    asyncio.run(_show())


@app.command("stats")
def stats():
    """Show token counts by state."""

    async def _stats():
        try:
            result = await verification_service.stats()
        except VerificationError as e:
            _fail(e)

        table = Table(title=f"Verification Tokens ({settings.token_store_backend})")
        table.add_column("State", style="cyan")
        table.add_column("Count", justify="right")

        table.add_row("Active", str(result.active))
        table.add_row("Used", str(result.used))
        table.add_row("Expired", str(result.expired))
        table.add_row("Total", str(result.total), style="bold")

        console.print(table)

    asyncio.run(_stats())


@app.command("sweep")
def sweep(
    retention_days: int = typer.Option(
        settings.verification_token_retention_days,
        "--days",
        "-d",
        help="Keep used/expired tokens newer than this",
    ),
    dry_run: bool = typer.Option(True, "--dry-run/--execute", help="Only report, don't delete"),
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Delete tokens that were used or expired more than N days ago.

    By default runs in dry-run mode to show what would be deleted.
    Use --execute to actually delete them.
    """

    async def _sweep():
        if background:
            job = await queue.enqueue(
                "sweep_verification_tokens",
                retention_days=retention_days,
                dry_run=dry_run,
                timeout=MAINTENANCE_TIMEOUT_SECONDS,
            )
            console.print(f"[green]Queued token sweep job:[/green] {job.id if job else 'unknown'}")
            return

        from gtovantage.tasks.maintenance import sweep_verification_tokens

        console.print(f"[cyan]Scanning for tokens used or expired over {retention_days} days ago...[/cyan]")

        result = await sweep_verification_tokens(
            ctx={}, retention_days=retention_days, dry_run=dry_run
        )

        if not result.get("success"):
            console.print(f"[red]Error:[/red] {result.get('error')}")
            raise typer.Exit(1)

        if dry_run:
            console.print(f"\n[yellow]Found {result['tokens_would_delete']} tokens to delete.[/yellow]")
            console.print("Run with --execute to delete them.")
        else:
            console.print(f"\n[green]Deleted {result['tokens_deleted']} tokens.[/green]")

    asyncio.run(_sweep())
