# Overview: Connectivity monitor; turns online transitions and ticks into coalesced sync passes.

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """
    Watches the online signal and schedules background sync passes.

    - offline -> online fires one pass.
    - Triggers that arrive while a pass runs are folded into at most one
      follow-up pass, so flapping never overlaps passes.
    - start(interval) probes reachability on a ticker; while online with
      sales pending it triggers a pass.

    on_sync is called on a worker thread; its return value is kept in
    last_result.
    """

    def __init__(
        self,
        on_sync: Callable[[], object],
        probe: Optional[Callable[[], bool]] = None,
        has_pending: Optional[Callable[[], bool]] = None,
        initially_online: bool = False,
    ):
        self._on_sync = on_sync
        self._probe = probe
        self._has_pending = has_pending
        self._online = initially_online

        self._lock = threading.Lock()
        self._subscribers: list[Callable[[bool], None]] = []
        self._running = False
        self._rerun = False
        self._idle = threading.Event()
        self._idle.set()

        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None

        self.last_result = None
        self.passes = 0

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a state-change callback; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def set_online(self, online: bool) -> None:
        with self._lock:
            if online == self._online:
                return
            self._online = online
            subscribers = list(self._subscribers)

        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for callback in subscribers:
            try:
                callback(online)
            except Exception:
                logger.exception("Connectivity subscriber failed")

        if online:
            self.trigger_sync()

    def trigger_sync(self) -> bool:
        """
        Start a background pass.

        Returns False when a pass is already running; a single follow-up
        pass is queued instead.
        """
        with self._lock:
            if self._running:
                self._rerun = True
                return False
            self._running = True
            self._idle.clear()

        worker = threading.Thread(target=self._worker, name="kassa-sync", daemon=True)
        worker.start()
        return True

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no pass is running or queued."""
        return self._idle.wait(timeout)

    def _worker(self) -> None:
        while True:
            try:
                self.last_result = self._on_sync()
            except Exception:
                logger.exception("Sync pass crashed")
            self.passes += 1

            with self._lock:
                if self._rerun:
                    self._rerun = False
                    continue
                self._running = False
                self._idle.set()
                return

    # ------------------------------------------------------------------
    # Ticker
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """One probe: refresh the online signal and sync if work is waiting."""
        if self._probe is not None:
            try:
                reachable = bool(self._probe())
            except Exception:
                logger.exception("Connectivity probe failed")
                reachable = False
            was_online = self._online
            self.set_online(reachable)
            if reachable and not was_online:
                return

        if self._online and (self._has_pending is None or self._has_pending()):
            self.trigger_sync()

    def start(self, interval: float) -> None:
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval):
                self.tick()

        self._ticker = threading.Thread(target=_loop, name="kassa-connectivity", daemon=True)
        self._ticker.start()
        logger.info("Connectivity monitor started (interval=%ss)", interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._ticker is not None:
            self._ticker.join(timeout)
            self._ticker = None
        logger.info("Connectivity monitor stopped")
