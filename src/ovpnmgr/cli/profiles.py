"""CLI commands for configuration profiles: import, remove, show."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from ovpnmgr.cli._runtime import (
    build_manager,
    connected_manager,
    console,
    load_config,
    reported_errors,
)
from ovpnmgr.monitoring.latency import PingResult


@click.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", help="Profile name (defaults to the file name without extension).")
@click.option("--persistent", is_flag=True, help="Keep the profile across service restarts.")
@click.option("--single-use", is_flag=True, help="Remove the profile after one connection.")
@click.pass_context
def import_profile(
    ctx: click.Context,
    file: Path,
    name: str | None,
    persistent: bool,
    single_use: bool,
) -> None:
    """Import an OpenVPN profile FILE."""
    content = file.read_text(encoding="utf-8")
    profile_name = name or file.stem
    with reported_errors():
        manager = build_manager(load_config(ctx))
        config_path = manager.import_profile(
            profile_name, content, single_use=single_use, persistent=persistent
        )
    console.print(f"Imported [cyan]{profile_name}[/cyan] ({config_path})")


@click.command()
@click.argument("name")
@click.pass_context
def remove(ctx: click.Context, name: str) -> None:
    """Remove configuration profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        manager.remove_profile(name)
    console.print(f"Removed [cyan]{name}[/cyan]")


@click.command()
@click.argument("name")
@click.option("--ping", "do_ping", is_flag=True, help="Measure latency to the server.")
@click.pass_context
def show(ctx: click.Context, name: str, do_ping: bool) -> None:
    """Show details of profile NAME."""
    with reported_errors():
        manager = connected_manager(ctx)
        profile = manager.describe(name)
        record = manager.find(profile.config_path)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Name", profile.name)
    table.add_row("Path", profile.config_path)
    table.add_row("Persistent", "yes" if profile.persistent else "no")
    table.add_row("Locked down", "yes" if profile.locked_down else "no")
    if profile.server is not None:
        table.add_row("Server", f"{profile.server.address} ({profile.server.protocol})")
    if record is not None:
        table.add_row("State", record.state.value)
        if record.session_path:
            table.add_row("Session", record.session_path)
        if record.device_name:
            table.add_row("Device", record.device_name)
        if record.status is not None and record.status.message:
            table.add_row("Status", record.status.message)
    console.print(table)

    if do_ping:
        results: list[PingResult] = []
        with reported_errors():
            thread = manager.probe_latency(profile.config_path, results.append)
        thread.join()
        if not results:
            console.print("[red]Ping did not complete[/red]")
            return
        _print_ping(results[0])


def _print_ping(result: PingResult) -> None:
    if result.ok:
        console.print(f"Latency to {result.host}: [green]{result.latency_ms} ms[/green]")
    else:
        console.print(f"Latency to {result.host}: [red]{result.status.value}[/red]")
