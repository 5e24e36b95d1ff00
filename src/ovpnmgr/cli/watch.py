"""CLI command: ovpnmgr watch (follow connection state until interrupted)."""

from __future__ import annotations

import signal

import click
from rich.markup import escape

from ovpnmgr.cli._runtime import build_manager, console, load_config, reported_errors
from ovpnmgr.cli.status import STATE_STYLES
from ovpnmgr.session.models import ConnectionChange
from ovpnmgr.session.scheduler import PollScheduler


@click.command()
@click.option("--interval", type=float, default=None, help="Seconds between reconciliations.")
@click.pass_context
def watch(ctx: click.Context, interval: float | None) -> None:
    """Follow connection state changes and auth requests."""
    with reported_errors():
        config = load_config(ctx)
        manager = build_manager(config)

    def on_change(change: ConnectionChange) -> None:
        if change.current is None:
            console.print(f"  [dim]{escape(change.name)}[/dim] removed")
            return
        style = STATE_STYLES[change.current]
        before = change.previous.value if change.previous else "new"
        console.print(
            f"  [bold]{escape(change.name)}[/bold] {before} → "
            f"[{style}]{change.current.value}[/{style}]"
        )

    def on_auth(name: str, url: str) -> None:
        console.print(f"  [magenta]Authentication required[/magenta] for [bold]{escape(name)}[/bold]:")
        click.echo(url)

    manager.on_change(on_change)
    manager.on_auth_required(on_auth)

    scheduler = PollScheduler(
        manager,
        reconcile_interval=interval or config.poll_interval,
        display_interval=config.display_interval,
        bandwidth_interval=config.bandwidth_interval,
    )

    console.print("[bold]ovpnmgr[/bold] watching OpenVPN3 sessions")
    console.print("  Press Ctrl+C to stop.\n")

    def _signal_handler(signum: int, frame: object) -> None:
        console.print("\n[dim]Stopping...[/dim]")
        scheduler.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        scheduler.run()
    except KeyboardInterrupt:
        scheduler.stop()

    if manager.last_error is not None:
        console.print(f"[yellow]Last refresh failed:[/yellow] {escape(str(manager.last_error))}")
