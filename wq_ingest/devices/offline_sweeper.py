"""Thread de sweep periódico Online -> Offline."""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .state_tracker import DeviceStateTracker

logger = logging.getLogger(__name__)


class OfflineSweeper:
    """Ejecuta tracker.sweep_offline cada `interval` segundos."""

    DEFAULT_INTERVAL = 60.0

    def __init__(
        self,
        tracker: DeviceStateTracker,
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._tracker = tracker
        self._interval = interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweeps = 0

    @classmethod
    def from_env(cls, tracker: DeviceStateTracker) -> "OfflineSweeper":
        return cls(tracker, interval=float(os.getenv("DEVICE_SWEEP_INTERVAL_SECONDS", "60")))

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="offline-sweeper", daemon=True)
        self._thread.start()
        logger.info("[DEVICE_STATE] OfflineSweeper started interval=%.1fs", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("[DEVICE_STATE] OfflineSweeper stopped after %d sweeps", self._sweeps)

    def run_once(self) -> list[str]:
        self._sweeps += 1
        return self._tracker.sweep_offline(self._clock())

    def _loop(self) -> None:
        # wait() en vez de sleep(): stop() no espera un intervalo completo.
        while not self._stop_event.wait(self._interval):
            try:
                moved = self.run_once()
                if moved:
                    logger.info("[DEVICE_STATE] sweep moved %d devices offline", len(moved))
            except Exception:
                logger.exception("[DEVICE_STATE] sweep failed")
