"""Shared CLI plumbing: config loading, manager construction, error reporting."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager

import click
from rich.console import Console
from rich.markup import escape

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.bus.gio_ import GioBusConnection
from ovpnmgr.config import OvpnMgrConfig
from ovpnmgr.errors import OvpnMgrError
from ovpnmgr.session.manager import ConnectionManager

console = Console(stderr=True)


def load_config(ctx: click.Context) -> OvpnMgrConfig:
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        config = OvpnMgrConfig.load(obj.get("config_path"))
        obj["config"] = config
    return obj["config"]


def build_manager(config: OvpnMgrConfig) -> ConnectionManager:
    bus = GioBusConnection(system_bus=config.system_bus, call_timeout=config.call_timeout)
    gateway = TransportGateway(
        bus,
        names=config.bus_names,
        max_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
    )
    return ConnectionManager(
        gateway,
        stats_source=config.stats_source,
        bandwidth_capacity=config.bandwidth_capacity,
        ping_timeout_ms=config.ping_timeout_ms,
    )


def connected_manager(ctx: click.Context) -> ConnectionManager:
    """Manager with one completed reconciliation."""
    manager = build_manager(load_config(ctx))
    manager.refresh()
    if manager.last_error is not None:
        raise manager.last_error
    return manager


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn ovpnmgr errors into a red message and exit status 1."""
    try:
        yield
    except OvpnMgrError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(1)
