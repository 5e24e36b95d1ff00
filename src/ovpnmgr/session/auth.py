"""Pending web-authentication discovery and per-session surfacing dedup."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import OvpnMgrError
from ovpnmgr.session.models import ConnectionState

logger = logging.getLogger(__name__)

# ClientAttentionType for OAuth-style web authentication
WEB_AUTH_TYPE = 1

_URL_PREFIXES = ("http://", "https://")
_MESSAGE_URL = re.compile(r"https://\S+")


@dataclass(frozen=True)
class AuthRequest:
    """A pending web-authentication request."""

    session_path: str
    url: str
    type: int = WEB_AUTH_TYPE
    group: int = 0
    request_id: int = 0


class AuthProbe:
    """Query a session's user-input queue for a web-authentication URL."""

    def __init__(self, gateway: TransportGateway) -> None:
        self._gateway = gateway

    def probe(self, session_path: str) -> AuthRequest | None:
        """Run the three-step queue query.

        Returns None when the queue holds no web-auth request, the request
        description is not a URL, or any call fails.
        """
        try:
            groups = self._gateway.user_input_type_groups(session_path)
            pair = next((p for p in groups if p[0] == WEB_AUTH_TYPE), None)
            if pair is None:
                return None

            type_, group = pair
            ids = self._gateway.user_input_check(session_path, type_, group)
            if not ids:
                return None

            request = self._gateway.user_input_fetch(session_path, type_, group, ids[0])
        except OvpnMgrError as exc:
            logger.debug("Auth probe failed for %s: %s", session_path, exc)
            return None

        if not request.description.startswith(_URL_PREFIXES):
            logger.debug(
                "Input request %d on %s is not a URL", request.id, session_path
            )
            return None

        return AuthRequest(
            session_path=session_path,
            url=request.description,
            type=request.type,
            group=request.group,
            request_id=request.id,
        )

    def auth_url(self, session_path: str, status_message: str = "") -> str | None:
        """URL from the queue, else one embedded in the status message."""
        request = self.probe(session_path)
        if request is not None:
            return request.url
        return url_from_message(status_message)


def url_from_message(message: str) -> str | None:
    match = _MESSAGE_URL.search(message or "")
    return match.group(0) if match else None


class AuthTracker:
    """Remembers which sessions already had their auth URL surfaced.

    An entry is cleared when the session moves away from AUTH_REQUIRED or
    vanishes, so re-entering the state surfaces the URL again.
    """

    def __init__(self) -> None:
        self._surfaced: set[str] = set()
        self._states: dict[str, ConnectionState] = {}

    def __contains__(self, session_path: str) -> bool:
        return session_path in self._surfaced

    def __len__(self) -> int:
        return len(self._surfaced)

    def should_surface(self, session_path: str) -> bool:
        return session_path not in self._surfaced

    def mark_surfaced(self, session_path: str) -> None:
        self._surfaced.add(session_path)

    def observe(self, session_path: str, state: ConnectionState) -> None:
        previous = self._states.get(session_path)
        self._states[session_path] = state
        if previous == ConnectionState.AUTH_REQUIRED and state != previous:
            self._surfaced.discard(session_path)

    def forget(self, session_path: str) -> None:
        self._surfaced.discard(session_path)
        self._states.pop(session_path, None)

    def prune(self, live_paths: set[str]) -> None:
        self._surfaced &= live_paths
        for path in list(self._states):
            if path not in live_paths:
                del self._states[path]
