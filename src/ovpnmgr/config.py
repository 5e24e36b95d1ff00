"""Global configuration: XDG paths, YAML file, env vars, defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from ovpnmgr.bus.gateway import BusNames
from ovpnmgr.errors import InvalidArgumentError
from ovpnmgr.monitoring.bandwidth import StatsSource


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ovpnmgr"
    return Path.home() / ".config" / "ovpnmgr"


_BUS_NAME_KEYS = {f.name for f in fields(BusNames)}


@dataclass
class OvpnMgrConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    poll_interval: float = 5.0
    display_interval: float = 1.0
    bandwidth_interval: float = 2.0
    bandwidth_capacity: int = 60
    stats_source: StatsSource = StatsSource.AUTO
    retry_attempts: int = 6
    retry_delay: float = 1.0
    call_timeout: float = 25.0
    ping_timeout_ms: int = 2000
    system_bus: bool = True
    bus_names: BusNames = field(default_factory=BusNames)

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yaml"

    @classmethod
    def load(cls, path: str | Path | None = None) -> OvpnMgrConfig:
        """Defaults, then the YAML file (if any), then environment variables."""
        config = cls()

        config_path = Path(path) if path else config.config_file
        if path or config_path.is_file():
            config.apply(_read_yaml(config_path))

        env_interval = os.environ.get("OVPNMGR_POLL_INTERVAL")
        if env_interval:
            config.poll_interval = float(env_interval)

        env_bw_interval = os.environ.get("OVPNMGR_BANDWIDTH_INTERVAL")
        if env_bw_interval:
            config.bandwidth_interval = float(env_bw_interval)

        env_capacity = os.environ.get("OVPNMGR_BANDWIDTH_CAPACITY")
        if env_capacity:
            config.bandwidth_capacity = int(env_capacity)

        env_source = os.environ.get("OVPNMGR_STATS_SOURCE")
        if env_source:
            config.stats_source = _stats_source(env_source)

        env_timeout = os.environ.get("OVPNMGR_CALL_TIMEOUT")
        if env_timeout:
            config.call_timeout = float(env_timeout)

        config.validate()
        return config

    def apply(self, data: dict) -> None:
        """Overlay values from a parsed YAML mapping."""
        for key in ("poll_interval", "display_interval", "bandwidth_interval",
                    "retry_delay", "call_timeout"):
            if key in data:
                setattr(self, key, float(data[key]))
        for key in ("bandwidth_capacity", "retry_attempts", "ping_timeout_ms"):
            if key in data:
                setattr(self, key, int(data[key]))
        if "stats_source" in data:
            self.stats_source = _stats_source(str(data["stats_source"]))
        if "system_bus" in data:
            self.system_bus = bool(data["system_bus"])

        names = data.get("bus_names") or {}
        if not isinstance(names, dict):
            raise InvalidArgumentError("bus_names must be a mapping")
        unknown = set(names) - _BUS_NAME_KEYS
        if unknown:
            raise InvalidArgumentError(f"Unknown bus_names keys: {sorted(unknown)}")
        if names:
            current = {k: getattr(self.bus_names, k) for k in _BUS_NAME_KEYS}
            current.update({k: str(v) for k, v in names.items()})
            self.bus_names = BusNames(**current)

    def validate(self) -> None:
        for key in ("poll_interval", "display_interval", "bandwidth_interval", "call_timeout"):
            if getattr(self, key) <= 0:
                raise InvalidArgumentError(f"{key} must be positive")
        if self.bandwidth_capacity < 1:
            raise InvalidArgumentError("bandwidth_capacity must be at least 1")
        if self.retry_attempts < 1:
            raise InvalidArgumentError("retry_attempts must be at least 1")
        if self.retry_delay < 0:
            raise InvalidArgumentError("retry_delay must not be negative")


def _read_yaml(path: Path) -> dict:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgumentError("Config YAML must be a mapping")
    return data


def _stats_source(value: str) -> StatsSource:
    try:
        return StatsSource(value.lower())
    except ValueError:
        choices = ", ".join(s.value for s in StatsSource)
        raise InvalidArgumentError(
            f"Unknown stats source '{value}' (expected one of: {choices})"
        ) from None
