"""CLI commands that act on one connection: connect, disconnect, pause, resume, auth."""

from __future__ import annotations

import click

from ovpnmgr.cli._runtime import connected_manager, console, reported_errors
from ovpnmgr.session.commands import DEFAULT_PAUSE_REASON


@click.command()
@click.argument("name")
@click.pass_context
def connect(ctx: click.Context, name: str) -> None:
    """Start a session for profile NAME (replacing any running one)."""
    with reported_errors():
        manager = connected_manager(ctx)
        session_path = manager.connect(name)
    console.print(f"Connecting [cyan]{name}[/cyan] ({session_path})")
    console.print("  Run [bold]ovpnmgr auth[/bold] if the server asks for web login.")


@click.command()
@click.argument("name")
@click.pass_context
def disconnect(ctx: click.Context, name: str) -> None:
    """Disconnect the session of profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        manager.disconnect(name)
    console.print(f"Disconnected [cyan]{name}[/cyan]")


@click.command()
@click.argument("name")
@click.option("--reason", default=DEFAULT_PAUSE_REASON, show_default=True, help="Reason passed to the service.")
@click.pass_context
def pause(ctx: click.Context, name: str, reason: str) -> None:
    """Pause the session of profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        manager.pause(name, reason)
    console.print(f"Paused [cyan]{name}[/cyan]")


@click.command()
@click.argument("name")
@click.pass_context
def resume(ctx: click.Context, name: str) -> None:
    """Resume the paused session of profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        manager.resume(name)
    console.print(f"Resumed [cyan]{name}[/cyan]")


@click.command()
@click.argument("name")
@click.pass_context
def auth(ctx: click.Context, name: str) -> None:
    """Print the web-authentication URL for profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        url = manager.authenticate(name)
    if not url:
        console.print(f"[dim]No authentication pending for {name}.[/dim]")
        return
    console.print(f"Open this URL to authenticate [cyan]{name}[/cyan]:")
    click.echo(url)
