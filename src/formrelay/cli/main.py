"""
Rich CLI interface for formrelay.

Runs the relay server and submits files to a running relay.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from formrelay import __version__
from formrelay.client.selection import FileSelection, SelectionError
from formrelay.client.uploader import RelayClient
from formrelay.core.config import get_settings
from formrelay.core.errors import MarketoError
from formrelay.marketo.client import MarketoClient
from formrelay.relay.validation import UploadLimits

app = typer.Typer(
    name="formrelay",
    help="Marketing form upload relay for Marketo",
    no_args_is_help=True,
)
console = Console()


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]formrelay[/bold cyan] v{__version__}")


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="formrelay Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Environment", settings.environment)
    table.add_row("Log Level", settings.relay.log_level)
    table.add_row("Concurrency", str(settings.relay.concurrency))
    table.add_row("Max Pending", str(settings.relay.max_pending))
    table.add_row("Task Timeout", f"{settings.relay.task_timeout}s")
    table.add_row("Max Files", str(settings.relay.max_files))
    table.add_row("Max File Size", f"{settings.relay.max_file_size // (1024 * 1024)}MB")
    table.add_row("Allowed Types", ", ".join(settings.relay.allowed_extensions))
    table.add_row("Marketo Host", settings.marketo.host or "-")
    table.add_row("Marketo Folder", str(settings.marketo.upload_folder))
    table.add_row("Lead Field", settings.marketo.lead_field)
    table.add_row("Server", f"{settings.server.host}:{settings.server.port}")

    console.print(table)

    if settings.marketo.is_configured:
        console.print("\n[green]✓[/green] Marketo credentials configured")
    else:
        console.print("\n[red]✗[/red] Marketo credentials missing")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
):
    """Start the relay server."""
    from formrelay.api.server import run_server

    settings = get_settings()
    host = host or settings.server.host
    port = port or settings.server.port

    console.print(Panel(
        f"Starting formrelay server\n"
        f"Host: [cyan]{host}[/cyan]\n"
        f"Port: [cyan]{port}[/cyan]\n"
        f"Concurrency: [cyan]{settings.relay.concurrency}[/cyan]",
        title="formrelay Server",
    ))

    run_server(host=host, port=port, reload=reload)


@app.command()
def token(
    url: Optional[str] = typer.Option(
        None, "--url", "-u", help="Ask a running relay instead of calling Marketo directly"
    ),
):
    """Fetch a Marketo access token, directly or through a running relay."""
    settings = get_settings()

    if url:
        async def probe() -> dict[str, Any]:
            async with RelayClient(url) as client:
                return await client.test_token()

        result = asyncio.run(probe())
        if not result.get("success"):
            console.print(f"[red]Relay could not obtain a token:[/red] {result.get('error', 'Unknown error')}")
            raise typer.Exit(1)
        data = result.get("data") or {}
        console.print("[green]✓[/green] Relay obtained a token")
        console.print(f"[dim]Scope: {data.get('scope') or '-'}, expires in {data.get('expires_in', '?')}s[/dim]")
        return

    async def run() -> None:
        async with MarketoClient(settings.marketo) as client:
            try:
                result = await client.get_token(force=True)
            except MarketoError as e:
                console.print(f"[red]Failed to obtain token:[/red] {e.message}")
                raise typer.Exit(1)
        console.print("[green]✓[/green] Token obtained")
        console.print(f"[dim]Scope: {result.scope or '-'}[/dim]")

    asyncio.run(run())


@app.command()
def upload(
    files: list[Path] = typer.Argument(..., help="Files to upload", exists=True, dir_okay=False),
    email: str = typer.Option(..., "--email", "-e", help="Lead email address"),
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Relay base URL"),
):
    """Submit files to a running relay, as the form would."""
    settings = get_settings()
    selection = FileSelection(UploadLimits.from_settings(settings.relay))
    selection.subscribe(
        lambda entries: console.print(f"[dim]{len(entries)} file(s) selected[/dim]")
    )

    try:
        selection.add(*files)
    except SelectionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    for entry in selection:
        console.print(f"  {entry.original_name} → [cyan]{entry.formatted_name}[/cyan]")

    async def run() -> dict[str, Any]:
        async with RelayClient(url or settings.server.public_url) as client:
            return await client.upload(selection, email)

    with console.status("Uploading..."):
        result = asyncio.run(run())

    _print_result(result)
    if not result.get("success"):
        raise typer.Exit(1)


def _print_result(result: dict[str, Any]) -> None:
    if "files" not in result:
        details = result.get("errorDetails") or {}
        message = details.get("message") or result.get("error") or "Unknown error"
        console.print(f"[red]Upload failed:[/red] {message}")
        return

    table = Table(title=result.get("message", "Upload result"), show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Stored As", style="green")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for item in result["files"]:
        status = "[green]uploaded[/green]" if item.get("success") else "[red]failed[/red]"
        table.add_row(item.get("originalName", ""), item.get("name", ""), status, item.get("error") or "")

    console.print(table)
    lead = "[green]yes[/green]" if result.get("leadUpdated") else "[yellow]no[/yellow]"
    console.print(f"Lead updated: {lead}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
