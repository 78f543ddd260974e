"""App FastAPI del servicio de ingesta de calidad de agua."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from . import __version__
from .endpoints import alerts_router, health_router, ingest_router
from .service import PipelineService

logger = logging.getLogger(__name__)


def create_app(pipeline: Optional[PipelineService] = None, manage_lifecycle: bool = False) -> FastAPI:
    """Crea la app.

    Con manage_lifecycle=True el lifespan arranca el pipeline al iniciar y
    hace el apagado ordenado al terminar (uvicorn recibe SIGINT/SIGTERM).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle and pipeline is not None:
            pipeline.start()
        try:
            yield
        finally:
            if manage_lifecycle and pipeline is not None:
                logger.info("[APP] shutting down pipeline")
                pipeline.stop()

    app = FastAPI(title="Water Quality Ingest Service", version=__version__, lifespan=lifespan)
    app.state.pipeline = pipeline

    app.include_router(health_router)
    app.include_router(ingest_router)
    app.include_router(alerts_router)
    return app
