"""Health, estado del pipeline y métricas Prometheus."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..service import PipelineService
from .deps import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/health/pipeline")
def pipeline_health(pipeline: PipelineService = Depends(get_pipeline)):
    """Estado del pipeline: colas, breaker, store y chequeo de alertas duplicadas.

    ISO 27001: no expone detalles de error al cliente.
    """
    stats = pipeline.coordinator.stats
    store = pipeline.store_health()

    try:
        duplicates = len(pipeline.alert_store.find_duplicate_active())
    except Exception as e:
        logger.warning("[HEALTH] duplicate check failed: %s", type(e).__name__)
        duplicates = None

    degraded = (
        not stats["accepting"]
        or store["status"] == "error"
        or stats["notifications"]["breaker"] != "closed"
        or bool(duplicates)
    )
    return {
        "status": "degraded" if degraded else "ok",
        "store": store,
        "duplicate_active_alerts": duplicates,
        "pipeline": stats,
    }


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
