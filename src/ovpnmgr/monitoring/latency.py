"""Server latency checks using the system ``ping`` binary."""

from __future__ import annotations

import enum
import logging
import math
import re
import shutil
import subprocess
import threading
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000

_RTT_SUMMARY = re.compile(r"rtt min/avg/max/mdev = [\d.]+/([\d.]+)/")
_TIME_FIELD = re.compile(r"time=([\d.]+)")


class PingStatus(enum.Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    DNS_ERROR = "dns_error"
    PERMISSION_ERROR = "permission_error"
    PARSE_ERROR = "parse_error"
    EXEC_ERROR = "exec_error"


class PingResult(NamedTuple):
    host: str
    status: PingStatus
    latency_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == PingStatus.SUCCESS


def _round_ms(value: str) -> int:
    return int(math.floor(float(value) + 0.5))


def parse_ping_output(output: str) -> tuple[PingStatus, int | None]:
    """Extract the round-trip time, preferring the rtt summary line."""
    match = _RTT_SUMMARY.search(output)
    if match is None:
        match = _TIME_FIELD.search(output)
    if match is not None:
        return PingStatus.SUCCESS, _round_ms(match.group(1))

    if "Destination Host Unreachable" in output or "100% packet loss" in output:
        return PingStatus.TIMEOUT, None
    if "unknown host" in output or "Name or service not known" in output:
        return PingStatus.DNS_ERROR, None
    return PingStatus.PARSE_ERROR, None


def extract_hostname(address: str) -> str:
    """``host:port`` -> ``host``. Bracketed IPv6 literals lose their brackets."""
    address = address.strip()
    if address.startswith("["):
        end = address.find("]")
        if end != -1:
            return address[1:end]
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


def ping_host(host: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> PingResult:
    """Send one echo request and wait for the reply."""
    if not host:
        return PingResult(host, PingStatus.EXEC_ERROR)

    ping = shutil.which("ping")
    if ping is None:
        logger.warning("ping executable not found")
        return PingResult(host, PingStatus.EXEC_ERROR)

    # ping takes whole seconds
    timeout_sec = max(1, (timeout_ms + 999) // 1000)
    try:
        proc = subprocess.run(
            [ping, "-c", "1", "-W", str(timeout_sec), host],
            capture_output=True,
            text=True,
            timeout=timeout_sec + 2,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return PingResult(host, PingStatus.TIMEOUT)
    except OSError as exc:
        logger.warning("Could not run ping for %s: %s", host, exc)
        return PingResult(host, PingStatus.EXEC_ERROR)

    output = proc.stdout + proc.stderr
    if "Operation not permitted" in output or "Permission denied" in output:
        return PingResult(host, PingStatus.PERMISSION_ERROR)

    status, latency = parse_ping_output(output)
    if status == PingStatus.PARSE_ERROR and proc.returncode != 0:
        status = PingStatus.TIMEOUT
    logger.debug("Ping %s: %s %s", host, status.value, latency)
    return PingResult(host, status, latency)


def ping_host_async(
    host: str,
    callback: Callable[[PingResult], None],
    deliver: Callable[[Callable[[], None]], None] | None = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> threading.Thread:
    """Ping on a daemon thread.

    The result is handed to ``deliver`` (e.g. PollScheduler.post) so the
    callback runs on the loop thread. Without ``deliver`` the callback runs
    on the worker thread.
    """

    def _worker() -> None:
        result = ping_host(host, timeout_ms)
        if deliver is None:
            callback(result)
        else:
            deliver(lambda: callback(result))

    thread = threading.Thread(target=_worker, name=f"ping-{host}", daemon=True)
    thread.start()
    return thread
