"""Coordinador de ingesta.

Recibe eventos ya resueltos en la frontera (MQTT/HTTP), los reparte por
hash(device_id) a colas acotadas por worker y los lleva por:

    Received -> Validated -> Evaluated -> (Deduplicated | GuardChecked)
             -> Dispatched -> Done
    + Rejected (validación) / Dropped (store caído tras reintentos)

Un mismo dispositivo siempre cae en el mismo worker, así sus lecturas se
procesan en orden. No hay lock global del pipeline.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..alerts.dedup_cache import CooldownCache
from ..alerts.guard import AlertGuard
from ..alerts.store import new_alert_id
from ..devices.state_tracker import DeviceStateTracker
from ..domain.alert import Severity
from ..domain.events import (
    DeviceHeartbeat,
    DeviceRegistration,
    DeviceStatusReport,
    InboundEvent,
    Reading,
    UnknownEvent,
    event_device_id,
)
from ..metrics.pipeline_metrics import (
    ALERTS_TOTAL,
    INGEST_QUEUE_DEPTH,
    READINGS_TOTAL,
    REJECTIONS_TOTAL,
    PipelineStats,
)
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.recipients import RecipientResolver
from ..resilience.errors import StoreUnavailable
from ..resilience.retry import RetryConfig, RetryExecutor
from ..sharding import shard_index
from ..thresholds.evaluator import ThresholdEvaluator
from ..validation.validator import DEVICE_ID_PATTERN, ReadingValidator, Rejection
from .outcome import EventState, ProcessingOutcome

logger = logging.getLogger(__name__)


def _guard_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        base_delay=0.2,
        max_delay=2.0,
        retryable_exceptions=(StoreUnavailable,),
    )


@dataclass
class CoordinatorConfig:
    num_workers: int = 4
    queue_size: int = 1000  # total, repartido entre workers
    advisory_alerts_enabled: bool = False
    guard_retry: RetryConfig = field(default_factory=_guard_retry_config)
    shutdown_grace_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "CoordinatorConfig":
        retry = RetryConfig.from_env(prefix="GUARD_RETRY")
        retry.retryable_exceptions = (StoreUnavailable,)
        return cls(
            num_workers=int(os.getenv("INGEST_NUM_WORKERS", "4")),
            queue_size=int(os.getenv("INGEST_QUEUE_SIZE", "1000")),
            advisory_alerts_enabled=os.getenv("ADVISORY_ALERTS_ENABLED", "false").lower() in ("true", "1", "yes"),
            guard_retry=retry,
            shutdown_grace_seconds=float(os.getenv("NOTIFY_SHUTDOWN_GRACE", "10")),
        )


class IngestionCoordinator:
    def __init__(
        self,
        validator: ReadingValidator,
        tracker: DeviceStateTracker,
        evaluator: ThresholdEvaluator,
        dedup_cache: CooldownCache,
        guard: AlertGuard,
        dispatcher: NotificationDispatcher,
        recipients: Optional[RecipientResolver] = None,
        config: Optional[CoordinatorConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._validator = validator
        self._tracker = tracker
        self._evaluator = evaluator
        self._cache = dedup_cache
        self._guard = guard
        self._dispatcher = dispatcher
        self._recipients = recipients
        self._config = config or CoordinatorConfig()
        self._clock = clock
        self._guard_retry = RetryExecutor(self._config.guard_retry, sleep=sleep, name="alert_guard")

        per_worker = max(1, self._config.queue_size // self._config.num_workers)
        self._queues: list[queue.Queue] = [
            queue.Queue(maxsize=per_worker) for _ in range(self._config.num_workers)
        ]
        self._workers: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._accepting = True
        self._stats = PipelineStats()

    @property
    def tracker(self) -> DeviceStateTracker:
        return self._tracker

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def guard(self) -> AlertGuard:
        return self._guard

    @property
    def config(self) -> CoordinatorConfig:
        return self._config

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ------------------------------------------------------------------
    # Procesamiento de un evento
    # ------------------------------------------------------------------

    def process(self, event: InboundEvent, now: Optional[datetime] = None) -> ProcessingOutcome:
        """Lleva un evento hasta un estado terminal. Nunca lanza por datos malos."""
        now = now or self._clock()

        if isinstance(event, Reading):
            outcome = self._process_reading(event, now)
        elif isinstance(event, UnknownEvent):
            outcome = ProcessingOutcome(device_id=None)
            outcome.advance(EventState.REJECTED, f"unknown event from {event.source}: {event.reason}")
            logger.info("[PIPELINE] unknown event source=%s reason=%s", event.source, event.reason)
            self._stats.incr("unknown")
        else:
            outcome = self._process_device_event(event, now)

        self._stats.incr("outcomes", outcome.state.value)
        READINGS_TOTAL.labels(outcome=outcome.state.value.lower()).inc()
        return outcome

    def _process_device_event(self, event: InboundEvent, now: datetime) -> ProcessingOutcome:
        device_id = event_device_id(event)
        outcome = ProcessingOutcome(device_id=device_id)
        if not device_id or not DEVICE_ID_PATTERN.match(device_id):
            return outcome.advance(EventState.REJECTED, f"invalid device_id {device_id!r}")

        outcome.advance(EventState.VALIDATED)
        if isinstance(event, DeviceRegistration):
            self._tracker.register(device_id, now)
            logger.info(
                "[PIPELINE] device registered device=%s type=%s fw=%s sensors=%s",
                device_id, event.device_type, event.firmware_version, ",".join(event.sensors) or "-",
            )
        elif isinstance(event, DeviceStatusReport):
            self._tracker.apply_status_report(device_id, event.online, now)
        elif isinstance(event, DeviceHeartbeat):
            self._tracker.record_seen(device_id, now)
        return outcome.advance(EventState.DONE)

    def _process_reading(self, reading: Reading, now: datetime) -> ProcessingOutcome:
        outcome = ProcessingOutcome(device_id=reading.device_id)

        result = self._validator.validate(reading, now)
        if isinstance(result, Rejection):
            self._stats.incr("rejections", result.reason.value)
            REJECTIONS_TOTAL.labels(reason=result.reason.value).inc()
            logger.info(
                "[PIPELINE] rejected device=%r param=%s reason=%s: %s",
                reading.device_id, reading.parameter.value, result.reason.value, result.detail,
            )
            return outcome.advance(EventState.REJECTED, result.detail)
        outcome.advance(EventState.VALIDATED)

        # Liveness con reloj del servidor: el reloj del dispositivo puede
        # ir atrasado hasta el skew permitido.
        self._tracker.record_seen(reading.device_id, now)

        evaluation = self._evaluator.evaluate(reading.parameter, reading.value)
        outcome.severity = evaluation.severity
        outcome.advance(EventState.EVALUATED)

        if evaluation.severity == Severity.NONE:
            return outcome.advance(EventState.DONE)
        if evaluation.severity == Severity.ADVISORY and not self._config.advisory_alerts_enabled:
            self._stats.incr("advisory_skipped")
            return outcome.advance(EventState.DONE)

        if not self._cache.should_attempt(reading.device_id, reading.parameter, now):
            self._stats.incr("alerts", "suppressed")
            ALERTS_TOTAL.labels(result="suppressed").inc()
            outcome.advance(EventState.DEDUPLICATED)
            return outcome.advance(EventState.DONE)

        alert_id = new_alert_id()
        try:
            record, created = self._guard_retry.execute(
                self._guard.ensure_active_alert,
                reading.device_id,
                reading.parameter,
                evaluation.severity,
                reading.value,
                evaluation.threshold_value,
                now,
                alert_id=alert_id,
            )
        except StoreUnavailable as e:
            self._stats.incr("alerts", "dropped")
            ALERTS_TOTAL.labels(result="dropped").inc()
            logger.error(
                "[PIPELINE] alert dropped device=%s param=%s severity=%s: %s",
                reading.device_id, reading.parameter.value, evaluation.severity.value, e,
            )
            return outcome.advance(EventState.DROPPED, str(e))

        outcome.advance(EventState.GUARD_CHECKED)
        outcome.alert_id = record.alert_id
        outcome.alert_created = created
        self._cache.record_attempt(reading.device_id, reading.parameter, now)

        result_label = "created" if created else "reinforced"
        self._stats.incr("alerts", result_label)
        ALERTS_TOTAL.labels(result=result_label).inc()

        if created:
            recipients = self._recipients.resolve(record, now) if self._recipients is not None else []
            if self._recipients is not None and len(self._recipients) and not recipients:
                logger.info("[PIPELINE] alert=%s has no matching recipients", record.alert_id)
            else:
                self._dispatcher.enqueue(record.alert_id, recipients, record.to_payload())
                outcome.advance(EventState.DISPATCHED)

        return outcome.advance(EventState.DONE)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def submit(self, event: InboundEvent) -> bool:
        """Encola un evento. False si la cola del worker está llena o se está apagando."""
        if not self._accepting:
            self._stats.incr("submit", "rejected_stopped")
            return False

        idx = shard_index(event_device_id(event) or "", len(self._queues))
        try:
            self._queues[idx].put_nowait(event)
        except queue.Full:
            self._stats.incr("submit", "rejected_full")
            logger.warning("[PIPELINE] worker %d queue full, rejected device=%s", idx, event_device_id(event))
            return False

        self._stats.incr("submit", "accepted")
        INGEST_QUEUE_DEPTH.set(self.queue_depth)
        return True

    def start(self) -> None:
        if self._workers:
            return
        self._stop_event.clear()
        self._accepting = True
        self._dispatcher.start()
        for i in range(len(self._queues)):
            t = threading.Thread(target=self._worker_loop, args=(i,), daemon=True, name=f"ingest-worker-{i}")
            t.start()
            self._workers.append(t)
        logger.info(
            "[PIPELINE] Started workers=%d queue_max=%d advisory_alerts=%s",
            len(self._queues), self._config.queue_size, self._config.advisory_alerts_enabled,
        )

    def _worker_loop(self, worker_id: int) -> None:
        q = self._queues[worker_id]
        while not self._stop_event.is_set():
            try:
                event = q.get(timeout=0.5)
            except queue.Empty:
                continue

            try:
                self.process(event)
            except Exception as e:
                self._stats.incr("worker_errors")
                logger.exception("[PIPELINE] Worker %d error: %s", worker_id, e)
            finally:
                q.task_done()

    def stop(self, grace_seconds: Optional[float] = None) -> dict:
        """Apagado ordenado.

        1. Deja de aceptar eventos.
        2. Cada worker termina el evento en curso.
        3. Lo que quedó en cola se descarta (contado).
        4. Drena el dispatcher con periodo de gracia.
        """
        self._accepting = False
        self._stop_event.set()
        for t in self._workers:
            t.join(timeout=30.0)
        self._workers.clear()

        discarded = 0
        for q in self._queues:
            while True:
                try:
                    q.get_nowait()
                except queue.Empty:
                    break
                q.task_done()
                discarded += 1
        if discarded:
            self._stats.incr("outcomes", "Discarded", discarded)
            READINGS_TOTAL.labels(outcome="discarded").inc(discarded)
            logger.warning("[PIPELINE] shutdown discarded %d queued events", discarded)
        INGEST_QUEUE_DEPTH.set(0)

        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        abandoned = self._dispatcher.shutdown(grace)
        logger.info("[PIPELINE] Stopped. discarded=%d abandoned_notifications=%d", discarded, abandoned)
        return {"discarded_events": discarded, "abandoned_notifications": abandoned}

    @property
    def queue_depth(self) -> int:
        return sum(q.qsize() for q in self._queues)

    @property
    def stats(self) -> dict:
        return {
            "accepting": self._accepting,
            "workers": len(self._workers),
            "queue_depth": self.queue_depth,
            "counters": self._stats.snapshot(),
            "guard_retry": self._guard_retry.stats,
            "alerts": self._guard.stats,
            "devices": self._tracker.stats,
            "dedup_cache": getattr(self._cache, "stats", {}),
            "notifications": self._dispatcher.stats,
        }
