"""CLI commands: ovpnmgr list / cleanup."""

from __future__ import annotations

import sys

import click
from rich.markup import escape
from rich.table import Table

from ovpnmgr.cli._runtime import connected_manager, console, reported_errors
from ovpnmgr.monitoring.format import format_bytes, format_rate
from ovpnmgr.session.manager import ConnectionManager
from ovpnmgr.session.models import ConnectionState

STATE_STYLES = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "cyan",
    ConnectionState.RECONNECTING: "cyan",
    ConnectionState.PAUSED: "yellow",
    ConnectionState.AUTH_REQUIRED: "magenta",
    ConnectionState.ERROR: "red",
    ConnectionState.DISCONNECTED: "dim",
}


def connections_table(manager: ConnectionManager, uptimes: dict[str, str] | None = None) -> Table:
    uptimes = manager.refresh_display() if uptimes is None else uptimes
    table = Table(title="Connections", show_lines=False)
    table.add_column("Name", style="bold")
    table.add_column("State")
    table.add_column("Uptime", justify="right")
    table.add_column("Device")
    table.add_column("Traffic", justify="right")

    for record in manager.list_connections():
        style = STATE_STYLES[record.state]
        traffic = ""
        counters = manager.counters(record.config_path)
        if counters is not None:
            traffic = f"↓ {format_bytes(counters.bytes_in)} ↑ {format_bytes(counters.bytes_out)}"
            snapshot = manager.bandwidth(record.config_path)
            if snapshot is not None and snapshot.rate is not None:
                traffic += f" ({format_rate(snapshot.rate.bytes_in)})"
        table.add_row(
            escape(record.name),
            f"[{style}]{record.state.value}[/{style}]",
            uptimes.get(record.config_path, ""),
            record.device_name,
            traffic,
        )
    return table


@click.command("list")
@click.pass_context
def list_connections(ctx: click.Context) -> None:
    """List configuration profiles and their connection state."""
    with reported_errors():
        manager = connected_manager(ctx)

    if not manager.list_connections():
        console.print("[dim]No configuration profiles imported.[/dim]")
        return
    console.print(connections_table(manager))


@click.command()
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Disconnect every running session."""
    with reported_errors():
        manager = connected_manager(ctx)
        result = manager.cleanup_all()

    if result.total == 0:
        console.print("[dim]No sessions running.[/dim]")
        return
    console.print(f"Disconnected {result.disconnected} of {result.total} session(s).")
    if result.failed:
        console.print(f"[red]{result.failed} session(s) could not be disconnected[/red]")
        sys.exit(1)
