"""Single-threaded poll loop driving reconciliation, display refresh and sampling."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

from ovpnmgr.session.manager import ConnectionManager

logger = logging.getLogger(__name__)

# Upper bound on how long run() sleeps before checking signals and posted work
_MAX_WAIT = 0.25


class PollScheduler:
    """Runs each cadence when due. Everything executes on the loop thread.

    ``post`` is the only thread-safe entry point: background work (e.g.
    latency probes) posts a callable that the loop runs on its next pass.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        reconcile_interval: float = 5.0,
        display_interval: float = 1.0,
        bandwidth_interval: float = 2.0,
        on_display: Callable[[dict[str, str]], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._manager = manager
        self._on_display = on_display
        self._clock = clock
        self._stop_event = threading.Event()
        self._posted: queue.SimpleQueue[Callable[[], None]] = queue.SimpleQueue()
        # (name, interval, task); reconcile first so display sees fresh records
        self._cadences: list[tuple[str, float, Callable[[], None]]] = [
            ("reconcile", reconcile_interval, self._reconcile),
            ("display", display_interval, self._display),
            ("bandwidth", bandwidth_interval, manager.sample_bandwidth),
        ]
        self._next_due: dict[str, float] = {}
        manager.deliver = self.post

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def post(self, fn: Callable[[], None]) -> None:
        self._posted.put(fn)

    def run_pending(self, now: float | None = None) -> list[str]:
        """Run every cadence that is due. Returns the names that ran."""
        now = self._clock() if now is None else now
        ran = []
        for name, interval, task in self._cadences:
            due = self._next_due.get(name, now)
            if now < due:
                continue
            self._next_due[name] = now + interval
            try:
                task()
            except Exception:
                logger.exception("Error in %s cadence", name)
            ran.append(name)
        return ran

    def drain_posted(self) -> int:
        count = 0
        while True:
            try:
                fn = self._posted.get_nowait()
            except queue.Empty:
                return count
            try:
                fn()
            except Exception:
                logger.exception("Error in posted callback")
            count += 1

    def run(self) -> None:
        """Blocking loop until stop()."""
        logger.info("Poll loop started")
        while not self._stop_event.is_set():
            try:
                self._manager.process_signals()
            except Exception:
                logger.exception("Error dispatching bus signals")
            self.drain_posted()
            self.run_pending()
            self._stop_event.wait(timeout=self._seconds_until_due())
        logger.info("Poll loop stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def _seconds_until_due(self) -> float:
        if not self._next_due:
            return 0.0
        delay = min(self._next_due.values()) - self._clock()
        return max(0.0, min(delay, _MAX_WAIT))

    def _reconcile(self) -> None:
        self._manager.refresh()

    def _display(self) -> None:
        labels = self._manager.refresh_display()
        if self._on_display is not None:
            self._on_display(labels)
