"""Merge configuration profiles and live sessions into connection records."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import OvpnMgrError
from ovpnmgr.session.auth import AuthProbe, url_from_message
from ovpnmgr.session.classifier import classify_status
from ovpnmgr.session.models import (
    ConfigProfile,
    ConnectionRecord,
    ConnectionState,
    SessionHandle,
)

logger = logging.getLogger(__name__)


def match_session(
    profile: ConfigProfile, sessions: Iterable[SessionHandle]
) -> SessionHandle | None:
    """First session started from a profile with the same name.

    Profiles expose no link to their sessions, so matching is by name.
    Two profiles sharing a name both match the same session.
    """
    for session in sessions:
        if session.config_name == profile.name:
            return session
    return None


class ConnectionReconciler:
    """Owns the reconciled record list and the connect-time cache."""

    def __init__(
        self,
        gateway: TransportGateway,
        auth_probe: AuthProbe | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._auth_probe = auth_probe
        self._clock = clock
        self._records: list[ConnectionRecord] = []
        self._connect_times: dict[str, float] = {}
        self.last_error: OvpnMgrError | None = None

    @property
    def records(self) -> list[ConnectionRecord]:
        return list(self._records)

    def connect_time(self, session_path: str) -> float | None:
        return self._connect_times.get(session_path)

    def refresh(self) -> list[ConnectionRecord]:
        """Fetch both collections and reconcile.

        A failed fetch keeps the previous records and sets ``last_error``.
        """
        try:
            configs = self._gateway.fetch_configs()
            sessions = self._gateway.fetch_sessions()
        except OvpnMgrError as exc:
            self.last_error = exc
            logger.error("Reconciliation skipped, keeping previous state: %s", exc)
            return self.records

        self.last_error = None
        self._records = self.reconcile(configs, sessions)
        return self.records

    def reconcile(
        self,
        configs: Iterable[ConfigProfile],
        sessions: Iterable[SessionHandle],
    ) -> list[ConnectionRecord]:
        sessions = list(sessions)
        records = []
        for profile in configs:
            record = ConnectionRecord(config_path=profile.config_path, name=profile.name)
            session = match_session(profile, sessions)
            if session is not None:
                self._apply_session(record, session)
            records.append(record)

        live = {s.session_path for s in sessions}
        for path in list(self._connect_times):
            if path not in live:
                del self._connect_times[path]

        records.sort(key=lambda r: (r.name, r.config_path))
        return records

    def _apply_session(self, record: ConnectionRecord, session: SessionHandle) -> None:
        record.session_path = session.session_path
        record.device_name = session.device_name
        record.status = session.status

        request = None
        if self._auth_probe is not None:
            request = self._auth_probe.probe(session.session_path)
        record.state = classify_status(
            session.status, session.connected_to, auth_pending=request is not None
        )
        if request is not None:
            record.auth_url = request.url
        elif record.state == ConnectionState.AUTH_REQUIRED:
            record.auth_url = url_from_message(session.status.message) or ""

        if session.session_path not in self._connect_times:
            self._connect_times[session.session_path] = (
                float(session.created) if session.created else self._clock()
            )
        record.connect_time = self._connect_times[session.session_path]
