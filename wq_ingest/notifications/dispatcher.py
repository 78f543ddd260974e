"""Dispatcher de notificaciones desacoplado del camino de ingesta.

- Cola acotada (deque + Condition). Con la cola llena se descarta la
  tarea más antigua: una alerta nueva vale más que una vieja.
- Reintentos con backoff exponencial (base 1s, factor 2) hasta
  max_attempts; luego la tarea se abandona.
- Circuit breaker: abierto => la tarea tomada se descarta sin llamar al
  backend y no se re-encola.
- Las tareas llevan alert_id: un reintento es idempotente en el destino.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from ..metrics.pipeline_metrics import (
    CIRCUIT_OPEN_TOTAL,
    NOTIFICATION_QUEUE_DEPTH,
    NOTIFICATIONS_TOTAL,
)
from .backends import NotificationBackend
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig

logger = logging.getLogger(__name__)


@dataclass
class NotificationTask:
    alert_id: str
    recipients: tuple[str, ...]
    payload: dict = field(compare=False)
    attempts: int = 0
    not_before: float = 0.0


@dataclass
class DispatcherConfig:
    capacity: int = 200
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    max_backoff: float = 60.0
    num_workers: int = 2
    shutdown_grace_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "DispatcherConfig":
        return cls(
            capacity=int(os.getenv("NOTIFY_QUEUE_CAPACITY", "200")),
            max_attempts=int(os.getenv("NOTIFY_MAX_ATTEMPTS", "5")),
            backoff_base=float(os.getenv("NOTIFY_BACKOFF_BASE", "1.0")),
            backoff_factor=float(os.getenv("NOTIFY_BACKOFF_FACTOR", "2.0")),
            max_backoff=float(os.getenv("NOTIFY_MAX_BACKOFF", "60")),
            num_workers=int(os.getenv("NOTIFY_NUM_WORKERS", "2")),
            shutdown_grace_seconds=float(os.getenv("NOTIFY_SHUTDOWN_GRACE", "10")),
        )

    def backoff_for(self, attempts: int) -> float:
        """Delay tras `attempts` intentos fallidos (1-indexed)."""
        return min(self.backoff_base * (self.backoff_factor ** (attempts - 1)), self.max_backoff)


class NotificationDispatcher:
    POLL_INTERVAL = 0.5

    def __init__(
        self,
        backend: NotificationBackend,
        config: Optional[DispatcherConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self._config = config or DispatcherConfig()
        self._clock = clock
        self._breaker = breaker or CircuitBreaker(
            "notifications",
            CircuitBreakerConfig.from_env(),
            clock=clock,
            on_open=CIRCUIT_OPEN_TOTAL.inc,
        )

        self._queue: deque[NotificationTask] = deque()
        self._cond = threading.Condition(threading.Lock())
        self._in_flight = 0
        self._closed = False
        self._stop_event = threading.Event()
        self._workers: list[threading.Thread] = []

        self._stats_lock = threading.Lock()
        self._counts = {
            "enqueued": 0,
            "delivered": 0,
            "retried": 0,
            "abandoned": 0,
            "discarded_open": 0,
            "dropped_full": 0,
            "rejected_closed": 0,
        }

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def config(self) -> DispatcherConfig:
        return self._config

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._counts[key] += amount
        if key != "enqueued" and key != "rejected_closed":
            NOTIFICATIONS_TOTAL.labels(result=key).inc(amount)

    # ------------------------------------------------------------------
    # Productor
    # ------------------------------------------------------------------

    def enqueue(self, alert_id: str, recipients: Sequence[str], payload: dict) -> bool:
        """Encola una notificación. False solo si el dispatcher está cerrado."""
        if self._closed:
            self._count("rejected_closed")
            logger.warning("[NOTIFY] dispatcher closed, notification for alert=%s not queued", alert_id)
            return False
        self._put(NotificationTask(alert_id=alert_id, recipients=tuple(recipients), payload=payload))
        self._count("enqueued")
        return True

    def _put(self, task: NotificationTask) -> None:
        dropped: Optional[NotificationTask] = None
        with self._cond:
            if len(self._queue) >= self._config.capacity:
                dropped = self._queue.popleft()
            self._queue.append(task)
            NOTIFICATION_QUEUE_DEPTH.set(len(self._queue))
            self._cond.notify()
        if dropped is not None:
            self._count("dropped_full")
            logger.warning(
                "[NOTIFY] queue full (capacity=%d), dropped oldest alert=%s",
                self._config.capacity, dropped.alert_id,
            )

    # ------------------------------------------------------------------
    # Consumidores
    # ------------------------------------------------------------------

    def _pop_ready(self) -> Optional[NotificationTask]:
        """Saca la primera tarea lista. Llamar con self._cond tomado."""
        now = self._clock()
        for i, task in enumerate(self._queue):
            if task.not_before <= now:
                del self._queue[i]
                self._in_flight += 1
                NOTIFICATION_QUEUE_DEPTH.set(len(self._queue))
                return task
        return None

    def _next_wait(self) -> float:
        if not self._queue:
            return self.POLL_INTERVAL
        earliest = min(t.not_before for t in self._queue)
        return max(0.0, min(self.POLL_INTERVAL, earliest - self._clock()))

    def _take(self) -> Optional[NotificationTask]:
        with self._cond:
            task = self._pop_ready()
            if task is None and not self._stop_event.is_set():
                self._cond.wait(self._next_wait())
                task = self._pop_ready()
            return task

    def _done(self) -> None:
        with self._cond:
            self._in_flight -= 1
            self._cond.notify_all()

    def drain(self, max_tasks: Optional[int] = None) -> int:
        """Procesa en el hilo actual las tareas listas. Devuelve cuántas tomó."""
        processed = 0
        while max_tasks is None or processed < max_tasks:
            with self._cond:
                task = self._pop_ready()
            if task is None:
                break
            try:
                self._deliver(task)
            finally:
                self._done()
            processed += 1
        return processed

    def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            task = self._take()
            if task is None:
                continue
            try:
                self._deliver(task)
            except Exception as e:
                logger.error("[NOTIFY] worker %d unexpected error alert=%s: %s", worker_id, task.alert_id, e)
            finally:
                self._done()

    def _deliver(self, task: NotificationTask) -> None:
        if not self._breaker.allow_request():
            self._count("discarded_open")
            logger.warning(
                "[NOTIFY] circuit open, discarded alert=%s (attempts=%d)",
                task.alert_id, task.attempts,
            )
            return

        error: Optional[Exception] = None
        try:
            ok = bool(self._backend.send(task.recipients, task.payload))
        except Exception as e:
            ok = False
            error = e

        if ok:
            self._breaker.record_success()
            self._count("delivered")
            logger.info("[NOTIFY] delivered alert=%s attempt=%d", task.alert_id, task.attempts + 1)
            return

        self._breaker.record_failure(error)
        task.attempts += 1
        if task.attempts >= self._config.max_attempts:
            self._count("abandoned")
            logger.error(
                "[NOTIFY] abandoned alert=%s after %d attempts err=%s",
                task.alert_id, task.attempts, error or "backend rejected",
            )
            return

        delay = self._config.backoff_for(task.attempts)
        task.not_before = self._clock() + delay
        self._count("retried")
        logger.warning(
            "[NOTIFY] delivery failed alert=%s attempt=%d/%d retry_in=%.1fs err=%s",
            task.alert_id, task.attempts, self._config.max_attempts, delay, error or "backend rejected",
        )
        self._put(task)

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._workers:
            return
        self._stop_event.clear()
        for i in range(self._config.num_workers):
            t = threading.Thread(target=self._worker_loop, args=(i,), daemon=True, name=f"notify-worker-{i}")
            t.start()
            self._workers.append(t)
        logger.info(
            "[NOTIFY] Started workers=%d capacity=%d max_attempts=%d",
            self._config.num_workers, self._config.capacity, self._config.max_attempts,
        )

    def shutdown(self, grace_seconds: Optional[float] = None) -> int:
        """Deja de aceptar tareas, drena con periodo de gracia y abandona el resto.

        Returns:
            Tareas abandonadas al vencer la gracia.
        """
        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self._closed = True
        deadline = time.monotonic() + grace

        if not self._workers:
            self.drain()

        with self._cond:
            while (self._queue or self._in_flight) and self._workers:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(min(remaining, self.POLL_INTERVAL))

        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()
        for t in self._workers:
            t.join(timeout=max(0.1, deadline - time.monotonic()))
        self._workers.clear()

        with self._cond:
            leftover = len(self._queue)
            self._queue.clear()
            NOTIFICATION_QUEUE_DEPTH.set(0)
        if leftover:
            self._count("abandoned", leftover)
            logger.warning("[NOTIFY] shutdown grace expired, abandoned %d notifications", leftover)
        logger.info("[NOTIFY] Stopped. %s", self.stats)
        return leftover

    @property
    def queue_depth(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            counts = dict(self._counts)
        counts["queue_depth"] = self.queue_depth
        counts["capacity"] = self._config.capacity
        counts["breaker"] = self._breaker.get_stats()["state"]
        return counts
