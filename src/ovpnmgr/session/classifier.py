"""Map raw session status fields onto a single ConnectionState.

The session service is inconsistent about whether it populates the numeric
status codes or only the free-text message, so classification checks the
structured fields first and falls back to message text last.
"""

from __future__ import annotations

from ovpnmgr.session.models import ConnectedTo, ConnectionState, SessionStatus

# StatusMajor values
MAJOR_CONNECTION = 2
MAJOR_SESSION = 4

# StatusMinor values under MAJOR_CONNECTION
MINOR_CONN_PAUSING = 13
MINOR_CONN_PAUSED = 14

_PAUSED_MINORS = frozenset({MINOR_CONN_PAUSING, MINOR_CONN_PAUSED})
_ERROR_MARKERS = ("failed", "Failed", "Error")
_AUTH_MARKERS = ("authentication required", "Web authentication", "https://")


def is_paused(status: SessionStatus) -> bool:
    if status.major == MAJOR_SESSION:
        return True
    return status.major == MAJOR_CONNECTION and status.minor in _PAUSED_MINORS


def classify_message(message: str) -> ConnectionState:
    """Last-resort classification from the status message alone."""
    if any(marker in message for marker in _AUTH_MARKERS):
        return ConnectionState.AUTH_REQUIRED
    if "Reconnecting" in message:
        return ConnectionState.RECONNECTING
    if "Connecting" in message:
        return ConnectionState.CONNECTING
    if "Paused" in message:
        return ConnectionState.PAUSED
    return ConnectionState.DISCONNECTED


def classify_status(
    status: SessionStatus | None,
    connected_to: ConnectedTo | None = None,
    auth_pending: bool = False,
) -> ConnectionState:
    """Classify one session. First matching rule wins.

    1. pending web authentication
    2. paused or pausing (before connected_to, which goes stale on pause)
    3. a valid connected_to tuple
    4. an error marker in the message
    5. the connection major code
    6. message text
    """
    if auth_pending:
        return ConnectionState.AUTH_REQUIRED

    status = status or SessionStatus()

    if is_paused(status):
        return ConnectionState.PAUSED

    if connected_to is not None and connected_to.is_valid:
        return ConnectionState.CONNECTED

    message = status.message
    if message and any(marker in message for marker in _ERROR_MARKERS):
        return ConnectionState.ERROR

    if status.major == MAJOR_CONNECTION:
        return ConnectionState.CONNECTING

    if message:
        return classify_message(message)

    return ConnectionState.DISCONNECTED
