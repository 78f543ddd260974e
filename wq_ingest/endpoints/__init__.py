from .alerts import router as alerts_router
from .device_ingest import router as ingest_router
from .health import router as health_router

__all__ = ["alerts_router", "ingest_router", "health_router"]
