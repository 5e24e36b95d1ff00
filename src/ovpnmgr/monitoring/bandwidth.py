"""Bandwidth sampling for active sessions.

Counters come from the session's ``statistics`` property when the session
service provides it, or from the kernel's per-interface counters via psutil.
Samples go into a fixed-capacity series that also keeps the first sample
ever taken, so session totals survive window rotation.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, fields
from typing import NamedTuple, Protocol

import psutil

from ovpnmgr.bus.gateway import TransportGateway
from ovpnmgr.errors import InvalidArgumentError, OvpnMgrError, StatisticsUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 60


class StatsSource(enum.Enum):
    """Which counter source a sampler may use."""

    AUTO = "auto"
    PREFERRED_ONLY = "preferred"
    FALLBACK_ONLY = "fallback"


@dataclass(frozen=True)
class BandwidthSample:
    timestamp: float
    bytes_in: int = 0
    bytes_out: int = 0
    packets_in: int = 0
    packets_out: int = 0
    errors_in: int = 0
    errors_out: int = 0
    drops_in: int = 0
    drops_out: int = 0

    def counters(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "timestamp"}

    def since(self, earlier: BandwidthSample) -> BandwidthSample:
        """Counter deltas from ``earlier``; counter resets clamp to 0."""
        mine = self.counters()
        theirs = earlier.counters()
        return BandwidthSample(
            timestamp=self.timestamp,
            **{name: max(0, value - theirs[name]) for name, value in mine.items()},
        )


class BandwidthRate(NamedTuple):
    """Per-second rates between the two newest samples."""

    bytes_in: float
    bytes_out: float
    packets_in: float
    packets_out: float
    errors_in: float
    errors_out: float
    drops_in: float
    drops_out: float
    interval: float


class BandwidthSeries:
    """Rolling window of samples plus a retained baseline."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise InvalidArgumentError(f"capacity must be at least 1, got {capacity}")
        self._samples: deque[BandwidthSample] = deque(maxlen=capacity)
        self._baseline: BandwidthSample | None = None

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    @property
    def baseline(self) -> BandwidthSample | None:
        return self._baseline

    @property
    def latest(self) -> BandwidthSample | None:
        return self._samples[-1] if self._samples else None

    @property
    def start_time(self) -> float | None:
        return self._baseline.timestamp if self._baseline else None

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, sample: BandwidthSample) -> None:
        if self._baseline is None:
            self._baseline = sample
        self._samples.append(sample)

    def samples(self, n: int | None = None) -> list[BandwidthSample]:
        """Up to ``n`` samples, newest first."""
        newest_first = list(reversed(self._samples))
        if n is None:
            return newest_first
        return newest_first[: max(0, n)]

    def rate(self) -> BandwidthRate | None:
        """None until two samples exist."""
        if len(self._samples) < 2:
            return None
        previous, current = self._samples[-2], self._samples[-1]
        interval = current.timestamp - previous.timestamp
        if interval <= 0:
            interval = 1.0
        delta = current.since(previous)
        return BandwidthRate(
            **{name: value / interval for name, value in delta.counters().items()},
            interval=interval,
        )

    def totals(self) -> BandwidthSample | None:
        """Latest sample minus the baseline."""
        latest = self.latest
        if latest is None:
            return None
        if self._baseline is None:
            return latest
        return latest.since(self._baseline)

    def reset(self) -> None:
        self._samples.clear()
        self._baseline = None


@dataclass(frozen=True)
class SampleTarget:
    """What to sample: a session and the tunnel device it uses."""

    session_path: str
    device_name: str = ""


class CounterSource(Protocol):
    def read(self, target: SampleTarget, timestamp: float) -> BandwidthSample:
        """Return current counters or raise StatisticsUnavailableError."""
        ...


class SessionStatisticsSource:
    """Counters from the session service's ``statistics`` property."""

    def __init__(self, gateway: TransportGateway) -> None:
        self._gateway = gateway

    def read(self, target: SampleTarget, timestamp: float) -> BandwidthSample:
        try:
            stats = self._gateway.session_statistics(target.session_path)
        except OvpnMgrError as exc:
            raise StatisticsUnavailableError(
                f"No session statistics for {target.session_path}: {exc}"
            ) from exc
        if not stats:
            raise StatisticsUnavailableError(
                f"Session {target.session_path} reports no counters"
            )
        return BandwidthSample(
            timestamp=timestamp,
            bytes_in=stats.get("BYTES_IN", 0),
            bytes_out=stats.get("BYTES_OUT", 0),
            packets_in=stats.get("PACKETS_IN", 0),
            packets_out=stats.get("PACKETS_OUT", 0),
        )


class DeviceCounterSource:
    """Per-interface kernel counters via psutil."""

    def read(self, target: SampleTarget, timestamp: float) -> BandwidthSample:
        if not target.device_name:
            raise StatisticsUnavailableError(
                f"Session {target.session_path} has no tunnel device"
            )
        counters = psutil.net_io_counters(pernic=True).get(target.device_name)
        if counters is None:
            raise StatisticsUnavailableError(
                f"Interface {target.device_name} not found"
            )
        return BandwidthSample(
            timestamp=timestamp,
            bytes_in=counters.bytes_recv,
            bytes_out=counters.bytes_sent,
            packets_in=counters.packets_recv,
            packets_out=counters.packets_sent,
            errors_in=counters.errin,
            errors_out=counters.errout,
            drops_in=counters.dropin,
            drops_out=counters.dropout,
        )


class BandwidthSampler:
    """Samples one target into a BandwidthSeries."""

    def __init__(
        self,
        target: SampleTarget,
        preferred: CounterSource | None = None,
        fallback: CounterSource | None = None,
        source: StatsSource = StatsSource.AUTO,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.target = target
        self.source = source
        self._preferred = preferred
        self._fallback = fallback or DeviceCounterSource()
        self._clock = clock
        self.series = BandwidthSeries(capacity)

    def update(self) -> BandwidthSample:
        """Take one sample and append it to the series."""
        now = self._clock()
        sample = self._read(now)
        self.series.append(sample)
        return sample

    def read(self) -> BandwidthSample:
        """Current counters, not recorded in the series."""
        return self._read(self._clock())

    def _read(self, now: float) -> BandwidthSample:
        if self.source == StatsSource.FALLBACK_ONLY:
            return self._fallback.read(self.target, now)

        if self._preferred is None:
            if self.source == StatsSource.PREFERRED_ONLY:
                raise StatisticsUnavailableError("No preferred statistics source configured")
            return self._fallback.read(self.target, now)

        try:
            return self._preferred.read(self.target, now)
        except StatisticsUnavailableError as exc:
            if self.source == StatsSource.PREFERRED_ONLY:
                raise
            logger.debug(
                "Preferred statistics failed for %s (%s), using device counters",
                self.target.session_path,
                exc,
            )
        return self._fallback.read(self.target, now)

    def rate(self) -> BandwidthRate | None:
        return self.series.rate()

    def totals(self) -> BandwidthSample | None:
        return self.series.totals()

    def samples(self, n: int | None = None) -> list[BandwidthSample]:
        return self.series.samples(n)
