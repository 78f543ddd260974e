"""Circuit breaker con ventana deslizante para el backend de notificaciones.

CLOSED: registra los últimos `window_size` resultados. Con al menos
`min_calls` resultados y tasa de error >= `failure_rate_threshold` abre.
OPEN: falla rápido durante `open_seconds`.
HALF_OPEN: deja pasar UNA entrega de prueba; éxito cierra y limpia la
ventana, fallo vuelve a abrir.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    window_size: int = 20
    min_calls: int = 10
    failure_rate_threshold: float = 0.5
    open_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "CircuitBreakerConfig":
        return cls(
            window_size=int(os.getenv("NOTIFY_CB_WINDOW_SIZE", "20")),
            min_calls=int(os.getenv("NOTIFY_CB_MIN_CALLS", "10")),
            failure_rate_threshold=float(os.getenv("NOTIFY_CB_FAILURE_RATE", "0.5")),
            open_seconds=float(os.getenv("NOTIFY_CB_OPEN_SECONDS", "30")),
        )


class CircuitBreakerOpen(Exception):
    """El circuito está abierto; no se llama al backend."""

    def __init__(self, name: str, remaining_seconds: float):
        self.name = name
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Circuit breaker '{name}' is OPEN. "
            f"Retry in {remaining_seconds:.1f}s"
        )


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        on_open: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self._config = config or CircuitBreakerConfig.from_env()
        self._clock = clock
        self._on_open = on_open

        self._state = CircuitState.CLOSED
        self._window: deque[bool] = deque(maxlen=self._config.window_size)
        self._opened_at: float = 0.0
        self._trial_in_flight = False
        self._open_count = 0
        self._lock = threading.Lock()

        logger.info(
            "CircuitBreaker '%s' initialized: window=%d, min_calls=%d, "
            "failure_rate=%.2f, open=%.1fs",
            name,
            self._config.window_size,
            self._config.min_calls,
            self._config.failure_rate_threshold,
            self._config.open_seconds,
        )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def allow_request(self) -> bool:
        """True si se puede llamar al backend ahora.

        En HALF_OPEN solo el primer llamador obtiene True hasta que la
        prueba registre su resultado.
        """
        with self._lock:
            self._check_state_transition()
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True
            return False

    def remaining_open_seconds(self) -> float:
        with self._lock:
            if self._state != CircuitState.OPEN:
                return 0.0
            return max(0.0, self._config.open_seconds - (self._clock() - self._opened_at))

    def call(self, func: Callable[[], T]) -> T:
        if not self.allow_request():
            raise CircuitBreakerOpen(self.name, self.remaining_open_seconds())
        try:
            result = func()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self._config.open_seconds:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("CircuitBreaker '%s': OPEN -> HALF_OPEN (testing recovery)", self.name)

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._trial_in_flight = False
                self._window.clear()
                logger.info("CircuitBreaker '%s': HALF_OPEN -> CLOSED (recovered)", self.name)
            elif self._state == CircuitState.CLOSED:
                self._window.append(True)

    def record_failure(self, error: Optional[Exception] = None) -> None:
        reason = str(error)[:100] if error else "delivery failed"
        opened = False
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open(now=self._clock())
                opened = True
                logger.warning("CircuitBreaker '%s': HALF_OPEN -> OPEN (test failed: %s)", self.name, reason)
            elif self._state == CircuitState.CLOSED:
                self._window.append(False)
                calls = len(self._window)
                failures = calls - sum(self._window)
                if calls >= self._config.min_calls and failures / calls >= self._config.failure_rate_threshold:
                    self._open(now=self._clock())
                    opened = True
                    logger.warning(
                        "CircuitBreaker '%s': CLOSED -> OPEN (failures=%d/%d, error=%s)",
                        self.name, failures, calls, reason,
                    )
        if opened and self._on_open is not None:
            self._on_open()

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._open_count += 1

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._window.clear()
            self._trial_in_flight = False
            logger.info("CircuitBreaker '%s': RESET to CLOSED", self.name)

    def get_stats(self) -> dict:
        with self._lock:
            self._check_state_transition()
            calls = len(self._window)
            failures = calls - sum(self._window)
            return {
                "name": self.name,
                "state": self._state.value,
                "window_calls": calls,
                "window_failures": failures,
                "open_count": self._open_count,
                "config": {
                    "window_size": self._config.window_size,
                    "min_calls": self._config.min_calls,
                    "failure_rate_threshold": self._config.failure_rate_threshold,
                    "open_seconds": self._config.open_seconds,
                },
            }
