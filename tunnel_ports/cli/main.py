import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
import json as json_lib
from typing import Any

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
import typer

from tunnel_ports.allocator import PortAllocator
from tunnel_ports.config import PortAllocatorSettings
from tunnel_ports.errors import InvalidInputError, StoreUnavailableError
from tunnel_ports.logging import bind_port_range, setup_logging
from tunnel_ports.reconcile import sweep_orphans
from tunnel_ports.redis import RedisConnection

app = typer.Typer(
    name="tunnel-ports",
    help="Inspect and manage tunnel port allocations",
    add_completion=False,
)
console = Console()

EXIT_INVALID_INPUT = 1
EXIT_EXHAUSTED = 3
EXIT_STORE_UNAVAILABLE = 4


def load_settings() -> PortAllocatorSettings:
    try:
        return PortAllocatorSettings()
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red] {escape(str(e))}")
        raise typer.Exit(EXIT_INVALID_INPUT) from e


@asynccontextmanager
async def open_allocator(settings: PortAllocatorSettings) -> AsyncIterator[PortAllocator]:
    async with RedisConnection(settings.redis_url) as connection:
        yield PortAllocator.from_settings(connection.redis, settings)


def run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a command coroutine and map allocator errors to exit codes."""
    try:
        return asyncio.run(coro)
    except InvalidInputError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(EXIT_INVALID_INPUT) from e
    except StoreUnavailableError as e:
        console.print(f"[bold red]Store unavailable, try again:[/bold red] {escape(str(e))}")
        raise typer.Exit(EXIT_STORE_UNAVAILABLE) from e


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show allocator logs"),
):
    """Port allocator diagnostics."""
    settings = load_settings()
    setup_logging(settings, log_level=None if verbose else "WARNING")
    bind_port_range(settings.port_range_start, settings.port_range_end)
    ctx.obj = settings


@app.command()
def allocate(ctx: typer.Context, session_id: str):
    """Allocate the lowest free port for a session."""

    async def _allocate() -> None:
        async with open_allocator(ctx.obj) as allocator:
            port = await allocator.allocate(session_id)
            if port is None:
                console.print(
                    f"[bold red]No free ports[/bold red] in {allocator.start}-{allocator.end}"
                )
                raise typer.Exit(EXIT_EXHAUSTED)
            typer.echo(port)

    run(_allocate())


@app.command()
def release(ctx: typer.Context, port: int):
    """Release a port, whoever owns it."""

    async def _release() -> None:
        async with open_allocator(ctx.obj) as allocator:
            await allocator.release(port)
        console.print(f"[green]Released[/green] {port}")

    run(_release())


@app.command()
def owner(ctx: typer.Context, port: int):
    """Show the session holding a port."""

    async def _owner() -> None:
        async with open_allocator(ctx.obj) as allocator:
            session_id = await allocator.get_owner(port)
        typer.echo(session_id if session_id is not None else "free")

    run(_owner())


@app.command("list")
def list_allocations(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List live allocations."""

    async def _list() -> None:
        async with open_allocator(ctx.obj) as allocator:
            allocations = await allocator.list_allocated()

        if json_output:
            typer.echo(json_lib.dumps({str(p): s for p, s in allocations.items()}, indent=2))
            return

        table = Table(title="Allocated ports")
        table.add_column("Port", justify="right", style="cyan", no_wrap=True)
        table.add_column("Session", style="magenta")
        for port, session_id in allocations.items():
            table.add_row(str(port), escape(session_id))
        console.print(table)

    run(_list())


@app.command()
def usage(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show how much of the port range is in use."""

    async def _usage() -> None:
        async with open_allocator(ctx.obj) as allocator:
            stats = await allocator.usage()
            start, end = allocator.start, allocator.end

        if json_output:
            data = {
                "range_start": start,
                "range_end": end,
                "capacity": stats.capacity,
                "allocated": stats.allocated,
                "free": stats.free,
            }
            typer.echo(json_lib.dumps(data, indent=2))
            return

        color = "red" if stats.free == 0 else "green"
        console.print(f"Range: {start}-{end}")
        console.print(f"Allocated: {stats.allocated}/{stats.capacity}")
        console.print(f"Free: [{color}]{stats.free}[/{color}]")

    run(_usage())


@app.command()
def sweep(
    ctx: typer.Context,
    live: list[str] = typer.Option([], "--live", "-l", help="Session id that is still live"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report orphans without releasing"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Release ports held by sessions not listed as live."""

    async def _sweep() -> None:
        async with open_allocator(ctx.obj) as allocator:
            report = await sweep_orphans(allocator, live, dry_run=dry_run)

        if json_output:
            data = {
                "checked": report.checked,
                "orphans": {str(p): s for p, s in report.orphans.items()},
                "released": report.released,
                "dry_run": report.dry_run,
            }
            typer.echo(json_lib.dumps(data, indent=2))
            return

        console.print(f"Checked {report.checked} allocations")
        for port, session_id in report.orphans.items():
            state = "released" if port in report.released else "kept"
            console.print(f"  {port} [magenta]{escape(session_id)}[/magenta] {state}")

    run(_sweep())


if __name__ == "__main__":
    app()
