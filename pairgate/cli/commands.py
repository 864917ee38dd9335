"""CLI commands for pairgate."""

import asyncio
import json
import platform
import signal

import typer
from rich.console import Console
from rich.table import Table

from pairgate import __version__, __logo__

# Windows needs SelectorEventLoop for aiohttp compatibility
if platform.system() == "Windows":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

app = typer.Typer(
    name="pairgate",
    help=f"{__logo__} pairgate - Channel pairing gateway",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} pairgate v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """pairgate - Channel pairing gateway."""
    pass


def _build_store():
    from pairgate.config.loader import load_config
    from pairgate.pairing.store import FilePairingStore

    config = load_config()
    return FilePairingStore(
        credentials_dir=config.credentials_path,
        ttl=config.pairing_ttl,
        max_pending=config.pairing.max_pending,
    )


def _resolve_or_exit(channel: str):
    from pairgate.pairing.channel import resolve_channel

    resolved = resolve_channel(channel)
    if resolved is None:
        console.print(f"[red]Invalid channel: {channel}[/red]")
        raise typer.Exit(1)
    return resolved


# ============================================================================
# Gateway
# ============================================================================


@app.command()
def gateway(
    host: str = typer.Option(None, "--host", help="Host to bind (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="Port to listen on (default from config)"),
):
    """Run the gateway (WebSocket RPC + pairing HTTP API)."""
    from pairgate.config.loader import load_config
    from pairgate.gateway.server import GatewayServer

    config = load_config()
    if config.gateway.auth.mode == "token" and not config.gateway.auth.token:
        console.print("[yellow]Warning: gateway.auth.token is empty; only local requests will be accepted.[/yellow]")

    server = GatewayServer(config=config, host=host, port=port)

    async def run():
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass

        await server.start()
        console.print(f"{__logo__} Gateway listening on http://{server.host}:{server.port}")
        try:
            await stop.wait()
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# Pairing Commands
# ============================================================================

pairing_app = typer.Typer(help="Secure channel pairing")
app.add_typer(pairing_app, name="pairing")


@pairing_app.command("list")
def pairing_list(
    channel: str = typer.Argument(..., help="Channel (telegram, whatsapp, or an extension channel)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List pending pairing requests."""
    from pairgate.pairing.workflow import ApprovalWorkflow, PairingUnavailableError

    resolved = _resolve_or_exit(channel)
    workflow = ApprovalWorkflow(_build_store())

    try:
        requests = asyncio.run(workflow.list_requests(resolved))
    except PairingUnavailableError as e:
        console.print(f"[red]Pairing store unavailable: {e}[/red]")
        raise typer.Exit(1)

    if json_output:
        data = [r.to_dict() for r in requests]
        console.print(json.dumps({"channel": resolved.value, "requests": data}, indent=2))
        return

    if not requests:
        console.print(f"[dim]No pending {resolved.value} pairing requests.[/dim]")
        return

    table = Table(title=f"Pending {resolved.value.title()} Pairing Requests")
    table.add_column("Code", style="cyan")
    table.add_column("User ID")
    table.add_column("Meta")
    table.add_column("Requested")

    for r in requests:
        meta_str = ", ".join(f"{k}={v}" for k, v in r.meta.items()) if r.meta else ""
        table.add_row(r.code, r.id, meta_str, r.created_at[:19])

    console.print(table)


@pairing_app.command("approve")
def pairing_approve(
    channel: str = typer.Argument(..., help="Channel (telegram, whatsapp, or an extension channel)"),
    code: str = typer.Argument(..., help="Pairing code"),
    notify: bool = typer.Option(False, "--notify", "-n", help="Notify user on approval"),
):
    """Approve a pairing code."""
    from pairgate.pairing.workflow import (
        ApprovalWorkflow,
        PairingNotFoundError,
        PairingUnavailableError,
    )

    resolved = _resolve_or_exit(channel)
    workflow = ApprovalWorkflow(_build_store())

    async def approve():
        result = await workflow.approve(resolved, code, notify=notify)
        if result.notification is not None:
            return result, await result.notification
        return result, None

    try:
        result, notified = asyncio.run(approve())
    except PairingNotFoundError:
        console.print(f"[red]No pending pairing request found for code: {code}[/red]")
        raise typer.Exit(1)
    except PairingUnavailableError as e:
        console.print(f"[red]Pairing store unavailable: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Approved {result.channel} sender [cyan]{result.id}[/cyan]")

    if notified is True:
        console.print("[green]✓[/green] Notification sent")
    elif notified is False:
        console.print("[yellow]Warning: Could not notify user (see log)[/yellow]")


@pairing_app.command("revoke")
def pairing_revoke(
    channel: str = typer.Argument(..., help="Channel (telegram, whatsapp, or an extension channel)"),
    user_id: str = typer.Argument(..., help="User ID to revoke"),
):
    """Revoke access for a user."""
    from pairgate.channels.pairing import normalize_allow_entry

    resolved = _resolve_or_exit(channel)
    user_id = normalize_allow_entry(resolved.value, user_id)

    if _build_store().remove_allow_from(resolved.value, user_id):
        console.print(f"[green]✓[/green] Revoked access for {user_id}")
    else:
        console.print(f"[yellow]User {user_id} was not in the allow list[/yellow]")


@pairing_app.command("allowed")
def pairing_allowed(
    channel: str = typer.Argument(..., help="Channel (telegram, whatsapp, or an extension channel)"),
):
    """List allowed users from pairing store."""
    resolved = _resolve_or_exit(channel)
    allowed = _build_store().read_allow_from(resolved.value)

    if not allowed:
        console.print(f"[dim]No users in {resolved.value} pairing store.[/dim]")
        console.print("[dim]Users can also be allowed via config.json allow_from list.[/dim]")
        return

    console.print(f"[bold]{resolved.value.title()} Allowed Users (from pairing):[/bold]")
    for user_id in allowed:
        console.print(f"  • {user_id}")


if __name__ == "__main__":
    app()
