"""Métricas Prometheus y contadores en memoria del pipeline."""

from .pipeline_metrics import (
    ALERTS_TOTAL,
    CIRCUIT_OPEN_TOTAL,
    INGEST_QUEUE_DEPTH,
    NOTIFICATION_QUEUE_DEPTH,
    NOTIFICATIONS_TOTAL,
    READINGS_TOTAL,
    REJECTIONS_TOTAL,
    PipelineStats,
)

__all__ = [
    "ALERTS_TOTAL",
    "CIRCUIT_OPEN_TOTAL",
    "INGEST_QUEUE_DEPTH",
    "NOTIFICATION_QUEUE_DEPTH",
    "NOTIFICATIONS_TOTAL",
    "READINGS_TOTAL",
    "REJECTIONS_TOTAL",
    "PipelineStats",
]
