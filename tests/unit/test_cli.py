"""Tests for CLI commands using Click's CliRunner."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ovpnmgr.cli import main
from ovpnmgr.errors import BusUnavailableError

AUTH_URL = "https://login.example.com/device"


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))


@pytest.fixture
def fake_bus(bus):
    with patch("ovpnmgr.cli._runtime.GioBusConnection", return_value=bus):
        yield bus


def test_main_help():
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "OpenVPN3" in result.output
    for command in ("list", "connect", "disconnect", "pause", "resume", "auth", "cleanup", "watch", "import", "remove", "show"):
        assert command in result.output


def test_main_version():
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_pause_help():
    runner = CliRunner()
    result = runner.invoke(main, ["pause", "--help"])
    assert result.exit_code == 0
    assert "--reason" in result.output


def test_list(fake_bus):
    fake_bus.add_config("office")
    fake_bus.add_config("home")
    fake_bus.add_session("office", status=(2, 14, "Paused"))

    result = CliRunner().invoke(main, ["list"])

    assert result.exit_code == 0, result.output
    assert "office" in result.output
    assert "paused" in result.output
    assert "disconnected" in result.output


def test_list_shows_session_traffic(fake_bus):
    fake_bus.add_config("office")
    fake_bus.add_session(
        "office", statistics={"BYTES_IN": 5_000_000, "BYTES_OUT": 1_200_000}
    )

    result = CliRunner().invoke(main, ["list"])

    assert result.exit_code == 0, result.output
    assert "↓" in result.output
    assert "4.77" in result.output
    assert "1.14" in result.output


def test_list_empty(fake_bus):
    result = CliRunner().invoke(main, ["list"])

    assert result.exit_code == 0
    assert "No configuration profiles" in result.output


def test_connect_and_disconnect(fake_bus):
    fake_bus.add_config("office")

    result = CliRunner().invoke(main, ["connect", "office"])
    assert result.exit_code == 0, result.output
    assert len(fake_bus.sessions) == 1

    result = CliRunner().invoke(main, ["disconnect", "office"])
    assert result.exit_code == 0, result.output
    assert fake_bus.sessions == {}


def test_unknown_name_exits_with_error(fake_bus):
    result = CliRunner().invoke(main, ["connect", "missing"])

    assert result.exit_code == 1
    assert "Unknown connection" in result.output


def test_auth_prints_url(fake_bus):
    fake_bus.add_config("office")
    fake_bus.add_session("office", connected_to=None, input_queue=[(1, 3, 1, AUTH_URL)])

    result = CliRunner().invoke(main, ["auth", "office"])

    assert result.exit_code == 0, result.output
    assert AUTH_URL in result.output


def test_cleanup_reports_counts(fake_bus):
    fake_bus.add_session("a")
    fake_bus.add_session("b")

    result = CliRunner().invoke(main, ["cleanup"])

    assert result.exit_code == 0, result.output
    assert "2 of 2" in result.output


def test_import_and_show(fake_bus, fixtures_dir: Path):
    result = CliRunner().invoke(main, ["import", str(fixtures_dir / "office.ovpn"), "--persistent"])
    assert result.exit_code == 0, result.output
    [config] = fake_bus.configs.values()
    assert config["name"] == "office"
    assert config["persistent"] is True

    result = CliRunner().invoke(main, ["show", "office"])
    assert result.exit_code == 0, result.output
    assert "vpn.example.com:1194" in result.output


def test_bus_unavailable():
    with patch(
        "ovpnmgr.cli._runtime.GioBusConnection",
        side_effect=BusUnavailableError("no system bus"),
    ):
        result = CliRunner().invoke(main, ["list"])

    assert result.exit_code == 1
    assert "no system bus" in result.output
