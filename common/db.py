from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Crea un engine SQLAlchemy para la URL dada.

    SQLite en memoria usa StaticPool para que todos los hilos compartan
    la misma conexión (y por lo tanto la misma base).
    """
    kwargs: dict = {"pool_pre_ping": True}

    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 3}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_recycle"] = 300

    # Log básico de conexión (sin credenciales)
    logger.info("[DB] Creating engine url=%s", database_url.split("@")[-1])
    return create_engine(database_url, **kwargs)
