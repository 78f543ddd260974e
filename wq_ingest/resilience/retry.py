"""Retry con backoff exponencial acotado.

No existen loops de reintento infinitos en el pipeline: toda operación
reintentable pasa por RetryExecutor con un presupuesto finito.
"""

from __future__ import annotations

import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuración para retry con backoff."""

    max_attempts: int = 3
    base_delay: float = 0.2  # segundos
    max_delay: float = 2.0  # segundos
    exponential_base: float = 2.0
    jitter: bool = True  # ±25%
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)

    @classmethod
    def from_env(cls, prefix: str = "STORE_RETRY") -> "RetryConfig":
        return cls(
            max_attempts=int(os.getenv(f"{prefix}_MAX_ATTEMPTS", "3")),
            base_delay=float(os.getenv(f"{prefix}_BASE_DELAY", "0.2")),
            max_delay=float(os.getenv(f"{prefix}_MAX_DELAY", "2.0")),
        )

    def calculate_delay(self, attempt: int) -> float:
        """Delay antes del reintento tras el intento `attempt` (1-indexed)."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)


class RetryExecutor:
    """Ejecutor de operaciones con retry y estadísticas.

    `sleep` es inyectable para tests.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "operation",
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._name = name
        self._lock = threading.Lock()
        self._total_attempts = 0
        self._total_retries = 0
        self._total_failures = 0

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                "total_attempts": self._total_attempts,
                "total_retries": self._total_retries,
                "total_failures": self._total_failures,
            }

    def execute(
        self,
        func: Callable[..., T],
        *args,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
        **kwargs,
    ) -> T:
        """Ejecuta func con retry. Propaga la última excepción al agotar."""
        max_attempts = max(1, self._config.max_attempts)

        for attempt in range(1, max_attempts + 1):
            with self._lock:
                self._total_attempts += 1

            try:
                return func(*args, **kwargs)

            except self._config.retryable_exceptions as e:
                if attempt == max_attempts:
                    with self._lock:
                        self._total_failures += 1
                    logger.error(
                        "RETRY_EXHAUSTED op=%s attempts=%d err=%s",
                        self._name, attempt, e,
                    )
                    raise

                with self._lock:
                    self._total_retries += 1
                delay = self._config.calculate_delay(attempt)

                logger.warning(
                    "RETRY op=%s attempt=%d/%d delay=%.2fs err=%s",
                    self._name, attempt, max_attempts, delay, e,
                )

                if on_retry:
                    on_retry(attempt, e)

                self._sleep(delay)

        raise RuntimeError("Retry loop completed without result")
