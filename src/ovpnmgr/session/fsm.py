"""Per-connection state machine with an explicit transition table."""

from __future__ import annotations

import enum
import logging

from ovpnmgr.session.models import ConnectionState

logger = logging.getLogger(__name__)


class FsmEvent(enum.Enum):
    CONNECT_REQUESTED = "connect_requested"
    DISCONNECT_REQUESTED = "disconnect_requested"
    OBSERVED_CONNECTING = "observed_connecting"
    OBSERVED_CONNECTED = "observed_connected"
    OBSERVED_PAUSED = "observed_paused"
    OBSERVED_RESUMED = "observed_resumed"
    OBSERVED_AUTH_REQUIRED = "observed_auth_required"
    OBSERVED_ERROR = "observed_error"
    OBSERVED_DISCONNECTED = "observed_disconnected"
    OBSERVED_RECONNECTING = "observed_reconnecting"


class UserAction(enum.Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    PAUSE = "pause"
    RESUME = "resume"
    AUTHENTICATE = "authenticate"


S = ConnectionState
E = FsmEvent

_TRANSITIONS: dict[tuple[ConnectionState, FsmEvent], ConnectionState] = {
    # Disconnected; observed events cover a VPN already up at startup
    (S.DISCONNECTED, E.CONNECT_REQUESTED): S.CONNECTING,
    (S.DISCONNECTED, E.OBSERVED_CONNECTING): S.CONNECTING,
    (S.DISCONNECTED, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.DISCONNECTED, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.DISCONNECTED, E.OBSERVED_AUTH_REQUIRED): S.AUTH_REQUIRED,
    (S.DISCONNECTED, E.OBSERVED_PAUSED): S.PAUSED,
    (S.DISCONNECTED, E.OBSERVED_ERROR): S.ERROR,
    (S.DISCONNECTED, E.OBSERVED_RECONNECTING): S.RECONNECTING,
    # Connecting
    (S.CONNECTING, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.CONNECTING, E.OBSERVED_AUTH_REQUIRED): S.AUTH_REQUIRED,
    (S.CONNECTING, E.OBSERVED_ERROR): S.ERROR,
    (S.CONNECTING, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.CONNECTING, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.CONNECTING, E.OBSERVED_CONNECTING): S.CONNECTING,
    # Connected
    (S.CONNECTED, E.OBSERVED_PAUSED): S.PAUSED,
    (S.CONNECTED, E.OBSERVED_RECONNECTING): S.RECONNECTING,
    (S.CONNECTED, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.CONNECTED, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.CONNECTED, E.OBSERVED_ERROR): S.ERROR,
    (S.CONNECTED, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.CONNECTED, E.OBSERVED_RESUMED): S.CONNECTED,
    # Paused
    (S.PAUSED, E.OBSERVED_RESUMED): S.CONNECTED,
    (S.PAUSED, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.PAUSED, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.PAUSED, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.PAUSED, E.OBSERVED_ERROR): S.ERROR,
    (S.PAUSED, E.OBSERVED_PAUSED): S.PAUSED,
    # Auth required
    (S.AUTH_REQUIRED, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.AUTH_REQUIRED, E.OBSERVED_CONNECTING): S.CONNECTING,
    (S.AUTH_REQUIRED, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.AUTH_REQUIRED, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.AUTH_REQUIRED, E.OBSERVED_ERROR): S.ERROR,
    (S.AUTH_REQUIRED, E.OBSERVED_AUTH_REQUIRED): S.AUTH_REQUIRED,
    # Error; connect doubles as retry
    (S.ERROR, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.ERROR, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.ERROR, E.CONNECT_REQUESTED): S.CONNECTING,
    (S.ERROR, E.OBSERVED_CONNECTING): S.CONNECTING,
    (S.ERROR, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.ERROR, E.OBSERVED_ERROR): S.ERROR,
    # Reconnecting
    (S.RECONNECTING, E.OBSERVED_CONNECTED): S.CONNECTED,
    (S.RECONNECTING, E.OBSERVED_AUTH_REQUIRED): S.AUTH_REQUIRED,
    (S.RECONNECTING, E.OBSERVED_DISCONNECTED): S.DISCONNECTED,
    (S.RECONNECTING, E.DISCONNECT_REQUESTED): S.DISCONNECTED,
    (S.RECONNECTING, E.OBSERVED_ERROR): S.ERROR,
    (S.RECONNECTING, E.OBSERVED_RECONNECTING): S.RECONNECTING,
}

_ALLOWED_ACTIONS: dict[ConnectionState, frozenset[UserAction]] = {
    S.DISCONNECTED: frozenset({UserAction.CONNECT}),
    S.CONNECTING: frozenset({UserAction.DISCONNECT}),
    S.CONNECTED: frozenset({UserAction.DISCONNECT, UserAction.PAUSE}),
    S.PAUSED: frozenset({UserAction.RESUME, UserAction.DISCONNECT}),
    S.AUTH_REQUIRED: frozenset({UserAction.AUTHENTICATE, UserAction.DISCONNECT}),
    S.ERROR: frozenset({UserAction.CONNECT, UserAction.DISCONNECT}),
    S.RECONNECTING: frozenset({UserAction.DISCONNECT}),
}

_OBSERVED_EVENTS: dict[ConnectionState, FsmEvent] = {
    S.DISCONNECTED: E.OBSERVED_DISCONNECTED,
    S.CONNECTING: E.OBSERVED_CONNECTING,
    S.CONNECTED: E.OBSERVED_CONNECTED,
    S.PAUSED: E.OBSERVED_PAUSED,
    S.RECONNECTING: E.OBSERVED_RECONNECTING,
    S.AUTH_REQUIRED: E.OBSERVED_AUTH_REQUIRED,
    S.ERROR: E.OBSERVED_ERROR,
}

del S, E


def transition_table() -> dict[tuple[ConnectionState, FsmEvent], ConnectionState]:
    """Copy of the full transition table."""
    return dict(_TRANSITIONS)


def event_for_state(state: ConnectionState) -> FsmEvent:
    """The observed_* event that reports ``state``."""
    return _OBSERVED_EVENTS[state]


def next_state(state: ConnectionState, event: FsmEvent) -> ConnectionState | None:
    return _TRANSITIONS.get((state, event))


class ConnectionFsm:
    """State machine for one connection.

    Invalid transitions are logged and counted, never raised, so one bad
    observation cannot break the poll loop.
    """

    def __init__(self, name: str, state: ConnectionState = ConnectionState.DISCONNECTED) -> None:
        self.name = name
        self._state = state
        self.rejected_count = 0
        self.forced_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    def process_event(self, event: FsmEvent) -> bool:
        """Apply ``event``. Returns False if the table rejects it."""
        target = next_state(self._state, event)
        if target is None:
            self.rejected_count += 1
            logger.warning(
                "[%s] Rejected event %s in state %s",
                self.name,
                event.value,
                self._state.value,
            )
            return False

        if target == self._state:
            logger.debug("[%s] %s: still %s", self.name, event.value, target.value)
        else:
            logger.info(
                "[%s] %s -> %s (%s)",
                self.name,
                self._state.value,
                target.value,
                event.value,
            )
        self._state = target
        return True

    def force_state(self, state: ConnectionState) -> None:
        """Resynchronise to an observed state the table cannot reach."""
        self.forced_count += 1
        logger.warning(
            "[%s] Forcing state %s -> %s",
            self.name,
            self._state.value,
            state.value,
        )
        self._state = state

    def sync(self, observed: ConnectionState) -> bool:
        """Feed a polled state. Returns True if the state changed."""
        before = self._state
        if not self.process_event(event_for_state(observed)) or self._state != observed:
            self.force_state(observed)
        return self._state != before

    @property
    def allowed_actions(self) -> frozenset[UserAction]:
        return _ALLOWED_ACTIONS[self._state]

    def can(self, action: UserAction) -> bool:
        return action in _ALLOWED_ACTIONS[self._state]

    def __repr__(self) -> str:
        return f"ConnectionFsm({self.name!r}, {self._state.value})"
