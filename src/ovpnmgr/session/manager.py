"""Connection manager: orchestrates reconciliation, state machines, auth and bandwidth."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import InvalidArgumentError, OvpnMgrError
from ovpnmgr.monitoring.bandwidth import (
    DEFAULT_CAPACITY,
    BandwidthRate,
    BandwidthSample,
    BandwidthSampler,
    SampleTarget,
    SessionStatisticsSource,
    StatsSource,
)
from ovpnmgr.monitoring.format import format_elapsed
from ovpnmgr.monitoring.latency import DEFAULT_TIMEOUT_MS, PingResult, ping_host_async
from ovpnmgr.session.auth import AuthProbe, AuthTracker
from ovpnmgr.session.commands import DEFAULT_PAUSE_REASON, CleanupResult, LifecycleCommands
from ovpnmgr.session.fsm import ConnectionFsm, FsmEvent
from ovpnmgr.session.models import (
    AttentionEvent,
    ConfigProfile,
    ConnectionChange,
    ConnectionRecord,
    ConnectionState,
)
from ovpnmgr.session.reconciler import ConnectionReconciler

logger = logging.getLogger(__name__)

# States in which a session carries traffic worth sampling
_SAMPLED_STATES = frozenset(
    {ConnectionState.CONNECTED, ConnectionState.PAUSED, ConnectionState.RECONNECTING}
)

ChangeCallback = Callable[[ConnectionChange], None]
# callback(connection name, url)
AuthCallback = Callable[[str, str], None]
Deliver = Callable[[Callable[[], None]], None]


@dataclass(frozen=True)
class BandwidthSnapshot:
    rate: BandwidthRate | None
    totals: BandwidthSample | None
    samples: list[BandwidthSample] = field(default_factory=list)


class ConnectionManager:
    """Collaborator-facing API over the reconciliation engine.

    All methods are meant to be called from a single thread (the
    PollScheduler's); only ``probe_latency`` does work elsewhere, and it
    hands its result back through ``deliver``.
    """

    def __init__(
        self,
        gateway: TransportGateway,
        stats_source: StatsSource = StatsSource.AUTO,
        bandwidth_capacity: int = DEFAULT_CAPACITY,
        ping_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._stats_source = stats_source
        self._bandwidth_capacity = bandwidth_capacity
        self._ping_timeout_ms = ping_timeout_ms
        self._clock = clock
        self._auth_probe = AuthProbe(gateway)
        self._reconciler = ConnectionReconciler(gateway, self._auth_probe, clock)
        self._commands = LifecycleCommands(gateway, on_attention=self.handle_attention)
        self._auth = AuthTracker()
        self._fsms: dict[str, ConnectionFsm] = {}
        self._samplers: dict[str, BandwidthSampler] = {}
        self._statistics = SessionStatisticsSource(gateway)
        self._change_callbacks: list[ChangeCallback] = []
        self._auth_callbacks: list[AuthCallback] = []
        # Hands background results back to the loop thread; set by PollScheduler
        self.deliver: Deliver | None = None

    @property
    def last_error(self) -> OvpnMgrError | None:
        return self._reconciler.last_error

    @property
    def commands(self) -> LifecycleCommands:
        return self._commands

    # --- observation -----------------------------------------------------

    def list_connections(self) -> list[ConnectionRecord]:
        return self._reconciler.records

    def on_change(self, callback: ChangeCallback) -> None:
        self._change_callbacks.append(callback)

    def on_auth_required(self, callback: AuthCallback) -> None:
        self._auth_callbacks.append(callback)

    def refresh(self) -> list[ConnectionChange]:
        """One reconciliation tick. Returns the state changes it produced."""
        records = self._reconciler.refresh()
        if self._reconciler.last_error is not None:
            return []

        changes = self._sync_fsms(records)
        live = {r.session_path for r in records if r.session_path}
        self._surface_auth(records)
        self._auth.prune(live)
        self._update_samplers(records)
        self._commands.prune_subscriptions(live)

        for change in changes:
            for callback in self._change_callbacks:
                callback(change)
        return changes

    def refresh_display(self, now: float | None = None) -> dict[str, str]:
        """Uptime labels per connected profile. Makes no bus calls."""
        now = self._clock() if now is None else now
        return {
            record.config_path: format_elapsed(now - record.connect_time)
            for record in self._reconciler.records
            if record.has_session and record.connect_time is not None
        }

    def process_signals(self) -> None:
        self._gateway.process_pending()

    def sample_bandwidth(self) -> None:
        for sampler in list(self._samplers.values()):
            try:
                sampler.update()
            except OvpnMgrError as exc:
                logger.debug(
                    "Bandwidth sample failed for %s: %s",
                    sampler.target.session_path,
                    exc,
                )

    def bandwidth(self, identifier: str, count: int | None = None) -> BandwidthSnapshot | None:
        record = self.find(identifier)
        if record is None or record.session_path is None:
            return None
        sampler = self._samplers.get(record.session_path)
        if sampler is None:
            return None
        return BandwidthSnapshot(
            rate=sampler.rate(),
            totals=sampler.totals(),
            samples=sampler.samples(count),
        )

    def counters(self, identifier: str) -> BandwidthSample | None:
        """Cumulative counters of the connection's session, read now."""
        record = self.find(identifier)
        if record is None or record.session_path is None:
            return None
        sampler = self._samplers.get(record.session_path)
        if sampler is None:
            return None
        try:
            return sampler.read()
        except OvpnMgrError as exc:
            logger.debug("Cannot read counters for %s: %s", record.session_path, exc)
            return None

    def find(self, identifier: str) -> ConnectionRecord | None:
        """Look up by config path, session path or profile name."""
        records = self._reconciler.records
        for record in records:
            if identifier in (record.config_path, record.session_path):
                return record
        for record in records:
            if record.name == identifier:
                return record
        return None

    def fsm(self, config_path: str) -> ConnectionFsm | None:
        return self._fsms.get(config_path)

    def handle_attention(self, event: AttentionEvent) -> None:
        """AttentionRequired signal from a session we started."""
        if not event.is_web_auth:
            logger.debug(
                "Ignoring attention request type %d on %s", event.type, event.session_path
            )
            return
        record = self.find(event.session_path)
        name = record.name if record is not None else event.session_path
        self._notify_auth(event.session_path, name, event.message)

    # --- commands ----------------------------------------------------------

    def connect(self, identifier: str) -> str:
        record = self._require(identifier)
        session_path = self._commands.connect(record.config_path)
        self._fire(record, FsmEvent.CONNECT_REQUESTED)
        return session_path

    def disconnect(self, identifier: str) -> None:
        record, session_path = self._require_session(identifier)
        self._commands.disconnect(session_path)
        self._samplers.pop(session_path, None)
        self._auth.forget(session_path)
        self._fire(record, FsmEvent.DISCONNECT_REQUESTED)

    def pause(self, identifier: str, reason: str = DEFAULT_PAUSE_REASON) -> None:
        _, session_path = self._require_session(identifier)
        self._commands.pause(session_path, reason)

    def resume(self, identifier: str) -> None:
        _, session_path = self._require_session(identifier)
        self._commands.resume(session_path)

    def authenticate(self, identifier: str) -> str | None:
        """URL the user must open to finish authentication, if any."""
        record, session_path = self._require_session(identifier)
        url = record.auth_url or self._auth_probe.auth_url(
            session_path, record.status.message if record.status else ""
        )
        if url:
            self._auth.mark_surfaced(session_path)
        return url

    def cleanup_all(self) -> CleanupResult:
        result = self._commands.cleanup_all()
        self._samplers.clear()
        return result

    # --- profiles -----------------------------------------------------------

    def import_profile(
        self,
        name: str,
        content: str,
        single_use: bool = False,
        persistent: bool = False,
    ) -> str:
        return self._gateway.import_config(name, content, single_use, persistent)

    def remove_profile(self, identifier: str) -> None:
        record = self._require(identifier)
        self._gateway.remove_config(record.config_path)

    def describe(self, identifier: str) -> ConfigProfile:
        record = self._require(identifier)
        return self._gateway.fetch_config(record.config_path, include_server=True)

    def probe_latency(
        self,
        identifier: str,
        callback: Callable[[PingResult], None],
        deliver: Deliver | None = None,
    ) -> threading.Thread:
        """Ping the profile's server in the background.

        The callback goes through ``deliver``, or the manager's own
        ``deliver`` hook when none is given.
        """
        profile = self.describe(identifier)
        if profile.server is None:
            raise InvalidArgumentError(f"Profile '{profile.name}' has no remote server")
        return ping_host_async(
            profile.server.host,
            callback,
            deliver or self.deliver,
            timeout_ms=self._ping_timeout_ms,
        )

    # --- internals ------------------------------------------------------------

    def _require(self, identifier: str) -> ConnectionRecord:
        if not identifier:
            raise InvalidArgumentError("A connection name or path is required")
        record = self.find(identifier)
        if record is None:
            raise InvalidArgumentError(f"Unknown connection '{identifier}'")
        return record

    def _require_session(self, identifier: str) -> tuple[ConnectionRecord, str]:
        record = self._require(identifier)
        if record.session_path is None:
            raise InvalidArgumentError(f"'{record.name}' has no active session")
        return record, record.session_path

    def _fire(self, record: ConnectionRecord, event: FsmEvent) -> None:
        fsm = self._fsms.get(record.config_path)
        if fsm is not None:
            fsm.process_event(event)

    def _sync_fsms(self, records: list[ConnectionRecord]) -> list[ConnectionChange]:
        changes = []
        seen = set()
        for record in records:
            seen.add(record.config_path)
            fsm = self._fsms.get(record.config_path)
            is_new = fsm is None
            if fsm is None:
                fsm = self._fsms[record.config_path] = ConnectionFsm(record.name)
            before = fsm.state
            fsm.sync(record.state)
            if is_new or fsm.state != before:
                changes.append(
                    ConnectionChange(
                        config_path=record.config_path,
                        name=record.name,
                        previous=None if is_new else before,
                        current=fsm.state,
                        record=record,
                    )
                )

        for config_path in list(self._fsms):
            if config_path not in seen:
                fsm = self._fsms.pop(config_path)
                logger.info("Profile '%s' is gone", fsm.name)
                changes.append(
                    ConnectionChange(
                        config_path=config_path,
                        name=fsm.name,
                        previous=fsm.state,
                        current=None,
                    )
                )
        return changes

    def _surface_auth(self, records: list[ConnectionRecord]) -> None:
        for record in records:
            if record.session_path is None:
                continue
            self._auth.observe(record.session_path, record.state)
            if record.state == ConnectionState.AUTH_REQUIRED and record.auth_url:
                self._notify_auth(record.session_path, record.name, record.auth_url)

    def _notify_auth(self, session_path: str, name: str, url: str) -> None:
        if not self._auth.should_surface(session_path):
            return
        self._auth.mark_surfaced(session_path)
        logger.info("Authentication required for '%s': %s", name, url)
        for callback in self._auth_callbacks:
            callback(name, url)

    def _update_samplers(self, records: list[ConnectionRecord]) -> None:
        live = set()
        for record in records:
            if record.session_path is None:
                continue
            live.add(record.session_path)
            existing = self._samplers.get(record.session_path)
            if existing is not None:
                # The tunnel device is assigned after the session starts
                if existing.target.device_name != record.device_name:
                    existing.target = SampleTarget(record.session_path, record.device_name)
                continue
            if record.state not in _SAMPLED_STATES:
                continue
            self._samplers[record.session_path] = BandwidthSampler(
                SampleTarget(record.session_path, record.device_name),
                preferred=self._statistics,
                source=self._stats_source,
                capacity=self._bandwidth_capacity,
                clock=self._clock,
            )
            logger.debug("Sampling bandwidth for '%s'", record.name)

        for path in list(self._samplers):
            if path not in live:
                del self._samplers[path]
