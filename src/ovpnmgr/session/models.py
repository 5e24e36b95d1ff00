"""Session data models: profiles, live sessions and the reconciled connection view."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import NamedTuple


class ConnectionState(enum.Enum):
    """Classified state of a connection. Exactly one per record."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PAUSED = "paused"
    RECONNECTING = "reconnecting"
    AUTH_REQUIRED = "auth_required"
    ERROR = "error"


class SessionStatus(NamedTuple):
    """Raw ``status`` property of a session: (major, minor, message)."""

    major: int = 0
    minor: int = 0
    message: str = ""


class ConnectedTo(NamedTuple):
    """Raw ``connected_to`` property of a session."""

    protocol: str = ""
    host: str = ""
    port: int = 0

    @property
    def is_valid(self) -> bool:
        return bool(self.protocol) and bool(self.host) and self.port > 0


class RemoteServer(NamedTuple):
    """First ``remote`` directive of a profile."""

    host: str
    port: int = 1194
    protocol: str = "udp"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ConfigProfile:
    """A configuration profile known to the configuration service."""

    config_path: str
    name: str
    locked_down: bool = False
    persistent: bool = False
    server: RemoteServer | None = None


@dataclass(frozen=True)
class SessionHandle:
    """A live session as reported by the session service."""

    session_path: str
    config_name: str
    device_name: str = ""
    created: int = 0
    status: SessionStatus = SessionStatus()
    connected_to: ConnectedTo | None = None
    backend_pid: int = 0


@dataclass
class ConnectionRecord:
    """Reconciled per-profile view, keyed by ``config_path``."""

    config_path: str
    name: str
    session_path: str | None = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    connect_time: float | None = None
    device_name: str = ""
    status: SessionStatus | None = None
    auth_url: str = ""

    @property
    def has_session(self) -> bool:
        return self.session_path is not None


@dataclass(frozen=True)
class ConnectionChange:
    """A record appeared, disappeared or changed state during a refresh.

    ``previous`` is None for a new record; ``current`` is None when the
    profile vanished.
    """

    config_path: str
    name: str
    previous: ConnectionState | None
    current: ConnectionState | None
    record: ConnectionRecord | None = None


@dataclass(frozen=True)
class AttentionEvent:
    """Payload of the ``AttentionRequired`` signal for one session."""

    session_path: str
    type: int
    group: int
    message: str

    @property
    def is_web_auth(self) -> bool:
        return self.type == 1 and self.message.startswith(("http://", "https://"))
