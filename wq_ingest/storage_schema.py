"""Esquema SQL de dispositivos y alertas.

La unicidad de alerta Active por (device_id, parameter) la garantiza el
índice único parcial ux_alerts_active; el AlertGuard se apoya en él para
cerrar la carrera entre workers.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

devices = Table(
    "devices",
    metadata,
    Column("device_id", String(128), primary_key=True),
    Column("status", String(16), nullable=False),
    Column("last_seen", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

alerts = Table(
    "alerts",
    metadata,
    Column("alert_id", String(36), primary_key=True),
    Column("device_id", String(128), nullable=False),
    Column("parameter", String(32), nullable=False),
    Column("severity", String(16), nullable=False),
    Column("status", String(16), nullable=False),
    Column("current_value", Float, nullable=False),
    Column("threshold_value", Float, nullable=True),
    Column("message", Text, nullable=False, default=""),
    Column("occurrence_count", Integer, nullable=False, default=1),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

Index(
    "ux_alerts_active",
    alerts.c.device_id,
    alerts.c.parameter,
    unique=True,
    sqlite_where=text("status = 'Active'"),
    postgresql_where=text("status = 'Active'"),
)

Index("ix_alerts_device_status", alerts.c.device_id, alerts.c.status)


def ensure_schema(engine: Engine) -> None:
    """Crea tablas e índices si no existen. Idempotente."""
    logger.info("[DB] Ensuring schema exists")
    metadata.create_all(engine)
