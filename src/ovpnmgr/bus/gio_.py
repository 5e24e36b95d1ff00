"""BusConnection backed by PyGObject's Gio.DBusConnection.

PyGObject is an optional dependency (``pip install ovpnmgr[dbus]``) because
it needs the system GLib/GObject-introspection libraries. It is imported when
a connection is opened, so the rest of the package (and its tests) never
requires it.
"""

from __future__ import annotations

import logging
from typing import Any

from ovpnmgr.bus.base import SignalHandler
from ovpnmgr.errors import BusError, BusUnavailableError

logger = logging.getLogger(__name__)

_PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"


def _load_gi() -> tuple[Any, Any]:
    try:
        import gi

        gi.require_version("Gio", "2.0")
        from gi.repository import Gio, GLib
    except (ImportError, ValueError) as exc:
        raise BusUnavailableError(
            "PyGObject with Gio bindings is required for D-Bus access "
            "(install ovpnmgr[dbus])"
        ) from exc
    return Gio, GLib


class GioBusConnection:
    """Synchronous D-Bus access through Gio.

    Signals are delivered on the default GLib main context; callers drive
    delivery with process_pending() from their own loop.
    """

    def __init__(self, system_bus: bool = True, call_timeout: float = 25.0) -> None:
        self._gio, self._glib = _load_gi()
        bus_type = (
            self._gio.BusType.SYSTEM if system_bus else self._gio.BusType.SESSION
        )
        try:
            self._conn = self._gio.bus_get_sync(bus_type, None)
        except self._glib.Error as exc:
            raise BusUnavailableError(f"Cannot connect to D-Bus: {exc.message}") from exc
        self._timeout_ms = int(call_timeout * 1000)
        logger.info(
            "Connected to the %s bus (call timeout %.1fs)",
            "system" if system_bus else "session",
            call_timeout,
        )

    def call(
        self,
        service: str,
        path: str,
        interface: str,
        method: str,
        args: tuple = (),
        signature: str | None = None,
    ) -> tuple:
        params = self._glib.Variant(signature, args) if signature else None
        try:
            reply = self._conn.call_sync(
                service,
                path,
                interface,
                method,
                params,
                None,
                self._gio.DBusCallFlags.NONE,
                self._timeout_ms,
                None,
            )
        except self._glib.Error as exc:
            raise self._to_bus_error(exc, f"{interface}.{method} on {path}") from exc
        if reply is None:
            return ()
        return tuple(reply.unpack())

    def get_property(
        self, service: str, path: str, interface: str, name: str
    ) -> Any:
        reply = self.call(
            service,
            path,
            _PROPERTIES_INTERFACE,
            "Get",
            (interface, name),
            "(ss)",
        )
        if not reply:
            raise BusError(f"Empty reply reading property {name} on {path}")
        return reply[0]

    def subscribe(
        self,
        service: str,
        path: str,
        interface: str,
        signal: str,
        handler: SignalHandler,
    ) -> int:
        def _dispatch(
            _conn: Any,
            _sender: str,
            object_path: str,
            _iface: str,
            _signal: str,
            parameters: Any,
            *_user_data: Any,
        ) -> None:
            handler(object_path, tuple(parameters.unpack()))

        handle = self._conn.signal_subscribe(
            service,
            interface,
            signal,
            path,
            None,
            self._gio.DBusSignalFlags.NONE,
            _dispatch,
        )
        if not handle:
            raise BusError(f"Could not subscribe to {interface}.{signal} on {path}")
        return int(handle)

    def unsubscribe(self, handle: int) -> None:
        self._conn.signal_unsubscribe(handle)

    def process_pending(self) -> None:
        context = self._glib.MainContext.default()
        while context.pending():
            context.iteration(False)

    def _to_bus_error(self, exc: Any, what: str) -> BusError:
        name = self._gio.DBusError.get_remote_error(exc) or ""
        if name:
            self._gio.DBusError.strip_remote_error(exc)
        return BusError(f"{what} failed: {exc.message}", name=name)
