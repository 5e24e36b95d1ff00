"""CLI entry point: Click group with global options."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

import click

from ovpnmgr import __version__

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="ovpnmgr")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a YAML config file.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="Also write logs to this file (rotated at 5 MiB).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    log_file: str | None,
    verbose: bool,
) -> None:
    """ovpnmgr: manage OpenVPN3 connections over D-Bus."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format=_LOG_FORMAT, datefmt="%H:%M:%S")

    if log_file:
        root = logging.getLogger()
        # The file gets INFO even when the console only shows warnings
        for existing in root.handlers:
            existing.setLevel(level)
        handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        root.addHandler(handler)
        root.setLevel(handler.level)


def _register_commands() -> None:
    from ovpnmgr.cli.control import auth, connect, disconnect, pause, resume  # noqa: F811
    from ovpnmgr.cli.profiles import import_profile, remove, show  # noqa: F811
    from ovpnmgr.cli.status import cleanup, list_connections  # noqa: F811
    from ovpnmgr.cli.watch import watch  # noqa: F811

    main.add_command(list_connections)
    main.add_command(connect)
    main.add_command(disconnect)
    main.add_command(pause)
    main.add_command(resume)
    main.add_command(auth)
    main.add_command(cleanup)
    main.add_command(watch)
    main.add_command(import_profile)
    main.add_command(remove)
    main.add_command(show)


_register_commands()
