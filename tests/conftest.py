"""Shared test fixtures."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any

import pytest

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import BusError

CONFIG_ROOT = "/net/openvpn/v3/configuration"
SESSION_ROOT = "/net/openvpn/v3/sessions"


class FakeBus:
    """In-memory stand-in for the OpenVPN3 configuration and session services.

    ``calls`` records ``(method, path, args)`` in order. ``fail(method, exc)``
    queues an exception for the next call of ``method``.
    """

    def __init__(self) -> None:
        self.configs: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, tuple]] = []
        self.handlers: dict[int, tuple[str, str, Any]] = {}
        self._failures: dict[str, list[Exception]] = {}
        self._ids = itertools.count(1)

    # --- test setup ---------------------------------------------------------

    def add_config(
        self,
        name: str,
        content: str = "remote vpn.example.com 1194 udp\n",
        persistent: bool = False,
        locked_down: bool = False,
    ) -> str:
        path = f"{CONFIG_ROOT}/c{next(self._ids)}"
        self.configs[path] = {
            "name": name,
            "content": content,
            "persistent": persistent,
            "locked_down": locked_down,
        }
        return path

    def add_session(
        self,
        config_name: str,
        status: tuple = (2, 7, "Connected"),
        connected_to: tuple | None = ("udp", "198.51.100.7", 1194),
        device_name: str = "tun0",
        created: int = 1_700_000_000,
        statistics: dict[str, int] | None = None,
        input_queue: list[tuple] | None = None,
    ) -> str:
        path = f"{SESSION_ROOT}/s{next(self._ids)}"
        props: dict[str, Any] = {
            "config_name": config_name,
            "device_name": device_name,
            "session_created": created,
            "status": status,
            "backend_pid": 4242,
            "input_queue": list(input_queue or []),
        }
        if connected_to is not None:
            props["connected_to"] = connected_to
        if statistics is not None:
            props["statistics"] = statistics
        self.sessions[path] = props
        return path

    def fail(self, method: str, exc: Exception, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([exc] * times)

    def methods(self) -> list[str]:
        return [method for method, _, _ in self.calls]

    def emit(self, path: str, signal: str, args: tuple) -> None:
        for sub_path, sub_signal, handler in list(self.handlers.values()):
            if sub_path == path and sub_signal == signal:
                handler(path, args)

    # --- BusConnection ----------------------------------------------------------

    def call(
        self,
        service: str,
        path: str,
        interface: str,
        method: str,
        args: tuple = (),
        signature: str | None = None,
    ) -> tuple:
        self.calls.append((method, path, tuple(args)))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)
        handler = getattr(self, f"_do_{method}", None)
        if handler is None:
            raise BusError(f"No method {method}", name="org.freedesktop.DBus.Error.UnknownMethod")
        return handler(path, *args)

    def get_property(self, service: str, path: str, interface: str, name: str) -> Any:
        self.calls.append(("Get", path, (interface, name)))
        props = self.configs.get(path) or self.sessions.get(path)
        if props is None or name not in props:
            raise BusError(
                f"No property {name} on {path}",
                name="org.freedesktop.DBus.Error.InvalidArgs",
            )
        return props[name]

    def subscribe(self, service: str, path: str, interface: str, signal: str, handler: Any) -> int:
        handle = next(self._ids)
        self.handlers[handle] = (path, signal, handler)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self.handlers.pop(handle, None)

    def process_pending(self) -> None:
        pass

    # --- service behaviour -----------------------------------------------------

    def _object(self, table: dict[str, dict[str, Any]], path: str) -> dict[str, Any]:
        if path not in table:
            raise BusError(f"{path} not found", name="net.openvpn.v3.error.not-found")
        return table[path]

    def _do_FetchAvailableConfigs(self, path: str) -> tuple:
        return (list(self.configs),)

    def _do_FetchAvailableSessions(self, path: str) -> tuple:
        return (list(self.sessions),)

    def _do_Fetch(self, path: str) -> tuple:
        return (self._object(self.configs, path)["content"],)

    def _do_Import(self, path: str, name: str, content: str, single_use: bool, persistent: bool) -> tuple:
        return (self.add_config(name, content, persistent=persistent),)

    def _do_Remove(self, path: str) -> tuple:
        self._object(self.configs, path)
        del self.configs[path]
        return ()

    def _do_NewTunnel(self, path: str, config_path: str) -> tuple:
        config = self._object(self.configs, config_path)
        return (
            self.add_session(
                config["name"], status=(2, 6, "Connecting"), connected_to=None, device_name=""
            ),
        )

    def _do_Connect(self, path: str) -> tuple:
        self._object(self.sessions, path)
        return ()

    def _do_Disconnect(self, path: str) -> tuple:
        self._object(self.sessions, path)
        del self.sessions[path]
        return ()

    def _do_Pause(self, path: str, reason: str) -> tuple:
        self._object(self.sessions, path)["status"] = (2, 14, "Paused")
        return ()

    def _do_Resume(self, path: str) -> tuple:
        self._object(self.sessions, path)["status"] = (2, 7, "Connected")
        return ()

    def _do_UserInputQueueGetTypeGroup(self, path: str) -> tuple:
        queue = self._object(self.sessions, path)["input_queue"]
        return (sorted({(entry[0], entry[1]) for entry in queue}),)

    def _do_UserInputQueueCheck(self, path: str, type_: int, group: int) -> tuple:
        queue = self._object(self.sessions, path)["input_queue"]
        return ([e[2] for e in queue if e[0] == type_ and e[1] == group],)

    def _do_UserInputQueueFetch(self, path: str, type_: int, group: int, request_id: int) -> tuple:
        queue = self._object(self.sessions, path)["input_queue"]
        for entry in queue:
            if entry[:3] == (type_, group, request_id):
                return (type_, group, request_id, "url", entry[3], False, False)
        raise BusError("No such request", name="net.openvpn.v3.error.not-found")


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def gateway(bus: FakeBus, sleeps: list[float]) -> TransportGateway:
    return TransportGateway(bus, sleep=sleeps.append)
