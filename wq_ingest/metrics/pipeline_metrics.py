"""Métricas del pipeline.

Dos vistas del mismo conteo:
- Counters/Gauges Prometheus (proceso completo, expuestos en /metrics).
- PipelineStats: contadores en memoria por instancia de coordinador,
  para /health/pipeline y tests.
"""

from __future__ import annotations

import threading
from collections import defaultdict

from prometheus_client import Counter, Gauge

READINGS_TOTAL = Counter(
    "wq_readings_total",
    "Inbound events by terminal outcome",
    ["outcome"],  # done, rejected, dropped, discarded, unknown
)
REJECTIONS_TOTAL = Counter(
    "wq_rejections_total",
    "Readings rejected by validation",
    ["reason"],
)
ALERTS_TOTAL = Counter(
    "wq_alerts_total",
    "Alert guard results",
    ["result"],  # created, reinforced, suppressed, dropped
)
NOTIFICATIONS_TOTAL = Counter(
    "wq_notifications_total",
    "Notification delivery results",
    ["result"],  # delivered, retried, abandoned, discarded_open, dropped_full
)
CIRCUIT_OPEN_TOTAL = Counter(
    "wq_circuit_open_total",
    "Times the notification circuit breaker opened",
)
NOTIFICATION_QUEUE_DEPTH = Gauge(
    "wq_notification_queue_depth",
    "Pending notification tasks",
)
INGEST_QUEUE_DEPTH = Gauge(
    "wq_ingest_queue_depth",
    "Events waiting in ingestion worker queues",
)


class PipelineStats:
    """Contadores thread-safe agrupados por nombre y etiqueta."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def incr(self, name: str, label: str = "total", amount: int = 1) -> None:
        with self._lock:
            self._counts[name][label] += amount

    def get(self, name: str, label: str = "total") -> int:
        with self._lock:
            return self._counts.get(name, {}).get(label, 0)

    def snapshot(self) -> dict:
        with self._lock:
            return {name: dict(labels) for name, labels in self._counts.items()}
