"""Entry point: python -m wq_ingest

Arma el pipeline desde variables de entorno (.env opcional), arranca
workers, sweeper y receptor MQTT, y sirve la API con uvicorn. uvicorn
captura SIGINT/SIGTERM y el lifespan de la app hace el apagado ordenado.
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from common.config import get_settings

from .app import create_app
from .service import build_pipeline
from .thresholds.models import ThresholdConfigError
from .notifications.recipients import RecipientConfigError


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("wq_ingest")

    try:
        pipeline = build_pipeline(settings)
    except (ThresholdConfigError, RecipientConfigError) as e:
        logger.error("[STARTUP] invalid configuration: %s", e)
        return 2

    app = create_app(pipeline, manage_lifecycle=True)
    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
