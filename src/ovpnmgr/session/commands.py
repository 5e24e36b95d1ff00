"""Session lifecycle commands: connect, disconnect, pause, resume, cleanup."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import NamedTuple

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import BusError, CommandFailureError, OvpnMgrError
from ovpnmgr.session.models import AttentionEvent

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_REASON = "User requested"


class CleanupResult(NamedTuple):
    total: int
    disconnected: int

    @property
    def failed(self) -> int:
        return self.total - self.disconnected


class LifecycleCommands:
    """Pass-through lifecycle commands. Nothing here is retried."""

    def __init__(
        self,
        gateway: TransportGateway,
        on_attention: Callable[[AttentionEvent], None] | None = None,
    ) -> None:
        self._gateway = gateway
        self._on_attention = on_attention
        self._subscriptions: dict[str, int] = {}

    @property
    def subscriptions(self) -> dict[str, int]:
        return dict(self._subscriptions)

    def disconnect_existing_sessions_for(self, config_path: str) -> int:
        """Disconnect every session started from this profile's name.

        Returns the number of sessions disconnected.
        """
        profile = self._gateway.fetch_config(config_path)
        count = 0
        for session in self._gateway.fetch_sessions():
            if session.config_name != profile.name:
                continue
            logger.info(
                "Disconnecting stale session %s for '%s'",
                session.session_path,
                profile.name,
            )
            try:
                self._gateway.session_disconnect(session.session_path)
            except BusError as exc:
                logger.warning(
                    "Could not disconnect stale session %s: %s",
                    session.session_path,
                    exc,
                )
                continue
            self.unsubscribe(session.session_path)
            count += 1
        return count

    def connect(self, config_path: str) -> str:
        """Start a fresh session for a profile and return its path."""
        try:
            self.disconnect_existing_sessions_for(config_path)
        except BusError as exc:
            raise CommandFailureError(
                f"Could not look up existing sessions for {config_path}: {exc}"
            ) from exc

        try:
            session_path = self._gateway.new_tunnel(config_path)
        except BusError as exc:
            raise CommandFailureError(
                f"Could not create a session for {config_path}: {exc}"
            ) from exc

        self._run(self._gateway.session_connect, session_path, "connect")
        logger.info("Connecting %s via %s", config_path, session_path)

        if self._on_attention is not None:
            try:
                self._subscriptions[session_path] = self._gateway.subscribe_attention(
                    session_path, self._on_attention
                )
            except OvpnMgrError as exc:
                logger.warning(
                    "Could not subscribe to attention signals on %s: %s",
                    session_path,
                    exc,
                )
        return session_path

    def disconnect(self, session_path: str) -> None:
        self._run(self._gateway.session_disconnect, session_path, "disconnect")
        self.unsubscribe(session_path)

    def pause(self, session_path: str, reason: str = DEFAULT_PAUSE_REASON) -> None:
        self._run(
            lambda path: self._gateway.session_pause(path, reason),
            session_path,
            "pause",
        )

    def resume(self, session_path: str) -> None:
        self._run(self._gateway.session_resume, session_path, "resume")

    def cleanup_all(self) -> CleanupResult:
        """Disconnect every live session, counting failures instead of raising."""
        paths = self._gateway.fetch_session_paths()
        disconnected = 0
        for path in paths:
            try:
                self._gateway.session_disconnect(path)
            except OvpnMgrError as exc:
                logger.warning("Failed to disconnect %s: %s", path, exc)
                continue
            self.unsubscribe(path)
            disconnected += 1

        logger.info("Cleaned up %d of %d sessions", disconnected, len(paths))
        return CleanupResult(total=len(paths), disconnected=disconnected)

    def unsubscribe(self, session_path: str) -> None:
        handle = self._subscriptions.pop(session_path, None)
        if handle is None:
            return
        try:
            self._gateway.unsubscribe(handle)
        except BusError as exc:
            logger.debug("Unsubscribe from %s failed: %s", session_path, exc)

    def prune_subscriptions(self, live_paths: set[str]) -> None:
        for path in list(self._subscriptions):
            if path not in live_paths:
                self.unsubscribe(path)

    def _run(self, command: Callable[[str], None], session_path: str, what: str) -> None:
        try:
            command(session_path)
        except BusError as exc:
            raise CommandFailureError(
                f"The session service rejected {what} on {session_path}: {exc}"
            ) from exc
        logger.debug("%s sent to %s", what, session_path)
