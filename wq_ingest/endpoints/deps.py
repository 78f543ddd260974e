"""Dependencias compartidas de los routers."""

from __future__ import annotations

import os
from typing import Optional

from fastapi import Header, HTTPException, Request

from ..service import PipelineService


def get_pipeline(request: Request) -> PipelineService:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="pipeline not initialized")
    return pipeline


def require_api_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
    # Sin INGEST_API_KEY se aceptan requests (modo dev).
    expected = os.getenv("INGEST_API_KEY")
    if not expected:
        return

    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")
