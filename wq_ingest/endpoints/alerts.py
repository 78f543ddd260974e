"""API de administración de alertas (listar, acknowledge, resolve)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException

from ..domain.alert import AlertStatus
from ..resilience.errors import StoreUnavailable
from ..resilience.timeouts import TRANSIENT_ERRORS
from ..service import PipelineService
from .deps import get_pipeline, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_api_key)])

T = TypeVar("T")

# Store caído: 503 en vez de 500.
_STORE_DOWN_ERRORS = (StoreUnavailable,) + TRANSIENT_ERRORS


def _store_call(func: Callable[..., T], *args) -> T:
    try:
        return func(*args)
    except _STORE_DOWN_ERRORS as e:
        logger.warning("[ALERTS_API] alert store unavailable: %s", type(e).__name__)
        raise HTTPException(status_code=503, detail="alert store unavailable") from e


@router.get("")
def list_active_alerts(device_id: Optional[str] = None, pipeline: PipelineService = Depends(get_pipeline)):
    records = _store_call(pipeline.alert_store.list_active, device_id)
    return {"alerts": [r.to_payload() for r in records]}


def _set_status(pipeline: PipelineService, alert_id: str, status: AlertStatus) -> dict:
    record = _store_call(pipeline.alert_store.set_status, alert_id, status, datetime.now(timezone.utc))
    if record is None:
        raise HTTPException(status_code=404, detail="alert not found")
    return record.to_payload()


@router.post("/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: str, pipeline: PipelineService = Depends(get_pipeline)):
    return _set_status(pipeline, alert_id, AlertStatus.ACKNOWLEDGED)


@router.post("/{alert_id}/resolve")
def resolve_alert(alert_id: str, pipeline: PipelineService = Depends(get_pipeline)):
    return _set_status(pipeline, alert_id, AlertStatus.RESOLVED)
