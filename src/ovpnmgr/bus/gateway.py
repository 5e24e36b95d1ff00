"""Typed access to the OpenVPN3 configuration and session services.

Wraps a BusConnection with the method/property contracts of the two
services, reply-shape validation, and the retry policy used while the
services are still being activated by the bus.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ovpnmgr.bus.base import BusConnection, SignalHandler
from ovpnmgr.errors import (
    BusError,
    InvalidArgumentError,
    ProtocolMismatchError,
    TransientBackendError,
)
from ovpnmgr.session.models import (
    AttentionEvent,
    ConfigProfile,
    ConnectedTo,
    SessionHandle,
    SessionStatus,
)
from ovpnmgr.session.profile import parse_remote

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 6
DEFAULT_RETRY_DELAY = 1.0

# Errors reported while a bus-activated service is still starting up.
_TRANSIENT_ERROR_NAMES = frozenset(
    {
        "org.freedesktop.DBus.Error.ServiceUnknown",
        "org.freedesktop.DBus.Error.NameHasNoOwner",
        "org.freedesktop.DBus.Error.UnknownObject",
        "net.openvpn.v3.error.no-data",
    }
)

_SPAWN_ERROR_PREFIX = "org.freedesktop.DBus.Error.Spawn."

_STATISTICS_KEYS = ("BYTES_IN", "BYTES_OUT", "PACKETS_IN", "PACKETS_OUT")


@dataclass(frozen=True)
class BusNames:
    """Service names, object paths and interfaces of the two services."""

    config_service: str = "net.openvpn.v3.configuration"
    config_interface: str = "net.openvpn.v3.configuration"
    config_root: str = "/net/openvpn/v3/configuration"
    session_service: str = "net.openvpn.v3.sessions"
    session_interface: str = "net.openvpn.v3.sessions"
    session_root: str = "/net/openvpn/v3/sessions"


@dataclass(frozen=True)
class UserInputRequest:
    """A queued user-input request (UserInputQueueFetch reply)."""

    type: int
    group: int
    id: int
    name: str
    description: str
    hidden: bool = False
    masked: bool = False


def is_transient(exc: BusError) -> bool:
    """Whether a bus error means the backend is not activated yet."""
    return exc.name in _TRANSIENT_ERROR_NAMES or exc.name.startswith(_SPAWN_ERROR_PREFIX)


def _require(value: str, what: str) -> str:
    if not value:
        raise InvalidArgumentError(f"{what} is required")
    return value


def _single(reply: tuple, kind: type, what: str) -> Any:
    if len(reply) != 1 or not isinstance(reply[0], kind):
        raise ProtocolMismatchError(f"Unexpected reply to {what}: {reply!r}")
    return reply[0]


class TransportGateway:
    """Call/property/signal wrapper over a BusConnection."""

    def __init__(
        self,
        bus: BusConnection,
        names: BusNames | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise InvalidArgumentError("max_attempts must be at least 1")
        self._bus = bus
        self.names = names or BusNames()
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep

    # --- raw contract ---------------------------------------------------

    def call(
        self,
        service: str,
        path: str,
        interface: str,
        method: str,
        args: tuple = (),
        signature: str | None = None,
    ) -> tuple:
        return self._bus.call(service, path, interface, method, args, signature)

    def get_property(self, service: str, path: str, interface: str, name: str) -> Any:
        return self._bus.get_property(service, path, interface, name)

    def subscribe(
        self, path: str, signal: str, handler: SignalHandler
    ) -> int:
        """Subscribe to a session-service signal scoped to ``path``."""
        return self._bus.subscribe(
            self.names.session_service,
            _require(path, "object path"),
            self.names.session_interface,
            signal,
            handler,
        )

    def unsubscribe(self, handle: int) -> None:
        self._bus.unsubscribe(handle)

    def process_pending(self) -> None:
        self._bus.process_pending()

    # --- configuration service -------------------------------------------

    def fetch_config_paths(self) -> list[str]:
        reply = self._with_retry(
            lambda: self._config_call(self.names.config_root, "FetchAvailableConfigs"),
            "configuration service",
        )
        return [str(p) for p in _single(reply, list, "FetchAvailableConfigs")]

    def fetch_configs(self) -> list[ConfigProfile]:
        """All profiles, retrying while the service is being activated."""
        profiles = []
        for path in self.fetch_config_paths():
            try:
                profiles.append(self.fetch_config(path))
            except BusError as exc:
                # Removed between enumeration and property reads
                logger.warning("Skipping configuration %s: %s", path, exc)
        return profiles

    def fetch_config(self, config_path: str, include_server: bool = False) -> ConfigProfile:
        _require(config_path, "config_path")
        name = self._config_property(config_path, "name")
        if not isinstance(name, str):
            raise ProtocolMismatchError(f"Configuration name is not a string: {name!r}")

        server = None
        if include_server:
            try:
                server = parse_remote(self.fetch_config_content(config_path))
            except BusError as exc:
                logger.debug("Cannot fetch content of %s: %s", config_path, exc)

        return ConfigProfile(
            config_path=config_path,
            name=name,
            locked_down=self._optional_bool(config_path, "locked_down"),
            persistent=self._optional_bool(config_path, "persistent"),
            server=server,
        )

    def fetch_config_content(self, config_path: str) -> str:
        reply = self._config_call(_require(config_path, "config_path"), "Fetch")
        return _single(reply, str, "Fetch")

    def import_config(
        self,
        name: str,
        content: str,
        single_use: bool = False,
        persistent: bool = False,
    ) -> str:
        _require(name, "name")
        _require(content, "content")
        reply = self._config_call(
            self.names.config_root,
            "Import",
            (name, content, single_use, persistent),
            "(ssbb)",
        )
        path = _single(reply, str, "Import")
        logger.info("Imported configuration '%s' -> %s", name, path)
        return path

    def remove_config(self, config_path: str) -> None:
        self._config_call(_require(config_path, "config_path"), "Remove")
        logger.info("Removed configuration %s", config_path)

    # --- session service -------------------------------------------------

    def fetch_session_paths(self) -> list[str]:
        reply = self._with_retry(
            lambda: self._session_call(self.names.session_root, "FetchAvailableSessions"),
            "session service",
        )
        return [str(p) for p in _single(reply, list, "FetchAvailableSessions")]

    def fetch_sessions(self) -> list[SessionHandle]:
        """All live sessions, retrying while the service is being activated."""
        return [self.fetch_session(path) for path in self.fetch_session_paths()]

    def fetch_session(self, session_path: str) -> SessionHandle:
        """Read one session's properties. Unreadable optional fields get defaults."""
        _require(session_path, "session_path")
        return SessionHandle(
            session_path=session_path,
            config_name=self._optional(session_path, "config_name", str, ""),
            device_name=self._optional(session_path, "device_name", str, ""),
            created=self._optional(session_path, "session_created", int, 0),
            status=self._session_status(session_path),
            connected_to=self._connected_to(session_path),
            backend_pid=self._optional(session_path, "backend_pid", int, 0),
        )

    def new_tunnel(self, config_path: str) -> str:
        reply = self._session_call(
            self.names.session_root,
            "NewTunnel",
            (_require(config_path, "config_path"),),
            "(o)",
        )
        return _single(reply, str, "NewTunnel")

    def session_connect(self, session_path: str) -> None:
        self._session_call(_require(session_path, "session_path"), "Connect")

    def session_disconnect(self, session_path: str) -> None:
        self._session_call(_require(session_path, "session_path"), "Disconnect")

    def session_pause(self, session_path: str, reason: str) -> None:
        self._session_call(
            _require(session_path, "session_path"), "Pause", (reason,), "(s)"
        )

    def session_resume(self, session_path: str) -> None:
        self._session_call(_require(session_path, "session_path"), "Resume")

    def user_input_type_groups(self, session_path: str) -> list[tuple[int, int]]:
        reply = self._session_call(
            _require(session_path, "session_path"), "UserInputQueueGetTypeGroup"
        )
        pairs = _single(reply, list, "UserInputQueueGetTypeGroup")
        try:
            return [(int(t), int(g)) for t, g in pairs]
        except (TypeError, ValueError) as exc:
            raise ProtocolMismatchError(
                f"Unexpected type/group entries: {pairs!r}"
            ) from exc

    def user_input_check(self, session_path: str, type_: int, group: int) -> list[int]:
        reply = self._session_call(
            _require(session_path, "session_path"),
            "UserInputQueueCheck",
            (type_, group),
            "(uu)",
        )
        ids = _single(reply, list, "UserInputQueueCheck")
        try:
            return [int(i) for i in ids]
        except (TypeError, ValueError) as exc:
            raise ProtocolMismatchError(f"Unexpected request ids: {ids!r}") from exc

    def user_input_fetch(
        self, session_path: str, type_: int, group: int, request_id: int
    ) -> UserInputRequest:
        reply = self._session_call(
            _require(session_path, "session_path"),
            "UserInputQueueFetch",
            (type_, group, request_id),
            "(uuu)",
        )
        if len(reply) != 7:
            raise ProtocolMismatchError(f"Unexpected reply to UserInputQueueFetch: {reply!r}")
        ret_type, ret_group, ret_id, name, description, hidden, masked = reply
        try:
            return UserInputRequest(
                type=int(ret_type),
                group=int(ret_group),
                id=int(ret_id),
                name=str(name),
                description=str(description),
                hidden=bool(hidden),
                masked=bool(masked),
            )
        except (TypeError, ValueError) as exc:
            raise ProtocolMismatchError(
                f"Unexpected reply to UserInputQueueFetch: {reply!r}"
            ) from exc

    def session_statistics(self, session_path: str) -> dict[str, int]:
        """Counters from the ``statistics`` property, recognised keys only."""
        raw = self.get_property(
            self.names.session_service,
            _require(session_path, "session_path"),
            self.names.session_interface,
            "statistics",
        )
        if not isinstance(raw, dict):
            raise ProtocolMismatchError(f"Unexpected statistics value: {raw!r}")
        try:
            return {key: int(raw[key]) for key in _STATISTICS_KEYS if key in raw}
        except (TypeError, ValueError) as exc:
            raise ProtocolMismatchError(f"Unexpected statistics value: {raw!r}") from exc

    def subscribe_attention(
        self, session_path: str, handler: Callable[[AttentionEvent], None]
    ) -> int:
        """Subscribe to ``AttentionRequired(type, group, message)`` for one session."""

        def _on_signal(path: str, args: tuple) -> None:
            if len(args) != 3:
                logger.error("Malformed AttentionRequired signal on %s: %r", path, args)
                return
            type_, group, message = args
            try:
                event = AttentionEvent(
                    session_path=path or session_path,
                    type=int(type_),
                    group=int(group),
                    message=str(message),
                )
            except (TypeError, ValueError):
                logger.error("Malformed AttentionRequired signal on %s: %r", path, args)
                return
            handler(event)

        return self.subscribe(session_path, "AttentionRequired", _on_signal)

    # --- helpers -----------------------------------------------------------

    def _with_retry(self, operation: Callable[[], tuple], service: str) -> tuple:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except BusError as exc:
                if not is_transient(exc):
                    raise
                if attempt == self._max_attempts:
                    logger.error(
                        "The %s is not available after %d attempts: %s",
                        service,
                        attempt,
                        exc,
                    )
                    raise TransientBackendError(
                        f"The {service} did not become ready: {exc}", attempts=attempt
                    ) from exc
                logger.warning(
                    "Waiting for the %s to start (attempt %d/%d)",
                    service,
                    attempt,
                    self._max_attempts,
                )
                self._sleep(self._retry_delay)
        raise AssertionError("unreachable")

    def _config_call(
        self, path: str, method: str, args: tuple = (), signature: str | None = None
    ) -> tuple:
        return self.call(
            self.names.config_service,
            path,
            self.names.config_interface,
            method,
            args,
            signature,
        )

    def _session_call(
        self, path: str, method: str, args: tuple = (), signature: str | None = None
    ) -> tuple:
        return self.call(
            self.names.session_service,
            path,
            self.names.session_interface,
            method,
            args,
            signature,
        )

    def _config_property(self, path: str, name: str) -> Any:
        return self.get_property(
            self.names.config_service, path, self.names.config_interface, name
        )

    def _optional_bool(self, path: str, name: str) -> bool:
        try:
            return bool(self._config_property(path, name))
        except BusError:
            return False

    def _optional(self, path: str, name: str, kind: type, default: Any) -> Any:
        try:
            value = self.get_property(
                self.names.session_service, path, self.names.session_interface, name
            )
        except BusError as exc:
            logger.debug("Session %s has no readable %s: %s", path, name, exc)
            return default
        if not isinstance(value, kind):
            raise ProtocolMismatchError(
                f"Session property {name} has unexpected value {value!r}"
            )
        return value

    def _session_status(self, path: str) -> SessionStatus:
        raw = self._optional(path, "status", tuple, None)
        if raw is None:
            return SessionStatus()
        if len(raw) != 3:
            raise ProtocolMismatchError(f"Unexpected status value: {raw!r}")
        major, minor, message = raw
        return SessionStatus(int(major), int(minor), str(message or ""))

    def _connected_to(self, path: str) -> ConnectedTo | None:
        raw = self._optional(path, "connected_to", tuple, None)
        if raw is None:
            return None
        if len(raw) != 3:
            raise ProtocolMismatchError(f"Unexpected connected_to value: {raw!r}")
        protocol, host, port = raw
        return ConnectedTo(str(protocol or ""), str(host or ""), int(port or 0))
