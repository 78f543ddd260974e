"""Transporte HTTP: mismo formato que los topics MQTT devices/{id}/{kind}.

202 aceptado, 422 payload no decodificable, 503 cola llena o apagando.
"""

from __future__ import annotations

import logging

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..domain.events import UnknownEvent
from ..service import PipelineService
from ..transports.decoder import decode_device_payload
from .deps import get_pipeline, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"], dependencies=[Depends(require_api_key)])

SUPPORTED_KINDS = ("data", "register", "presence", "status")


@router.post("/devices/{device_id}/{kind}", status_code=202)
async def ingest_device_message(
    device_id: str,
    kind: str,
    request: Request,
    pipeline: PipelineService = Depends(get_pipeline),
):
    if kind not in SUPPORTED_KINDS:
        raise HTTPException(status_code=404, detail=f"unsupported message kind {kind!r}")

    try:
        data = orjson.loads(await request.body())
    except orjson.JSONDecodeError:
        raise HTTPException(status_code=422, detail="invalid JSON")

    events = decode_device_payload(device_id, kind, data, source=f"http:{device_id}/{kind}")
    unknown = [e for e in events if isinstance(e, UnknownEvent)]
    if unknown or not events:
        reason = unknown[0].reason if unknown else "empty payload"
        raise HTTPException(status_code=422, detail=reason)

    accepted = 0
    for event in events:
        if not pipeline.coordinator.submit(event):
            logger.warning("[HTTP_INGEST] rejected device=%s kind=%s (queue full or stopping)", device_id, kind)
            return JSONResponse(
                status_code=503,
                content={"detail": "ingestion queue full", "accepted": accepted, "total": len(events)},
            )
        accepted += 1

    return {"accepted": accepted}
