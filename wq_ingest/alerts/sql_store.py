"""AlertStore sobre SQLAlchemy Core.

Atomicidad de find_or_create_active:
- Una transacción por llamada (SELECT ... FOR UPDATE en PostgreSQL).
- Índice único parcial ux_alerts_active sobre (device_id, parameter)
  WHERE status = 'Active'. Si dos workers insertan a la vez, uno recibe
  IntegrityError y se re-ejecuta la rama de refuerzo en una transacción
  nueva, que ya encuentra la alerta ganadora.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from ..domain.alert import AlertRecord, AlertStatus, Severity
from ..domain.events import Parameter
from ..storage_schema import alerts
from .store import AlertStore, new_alert_id, reinforce

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 2


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_record(row) -> AlertRecord:
    return AlertRecord(
        alert_id=row.alert_id,
        device_id=row.device_id,
        parameter=Parameter(row.parameter),
        severity=Severity(row.severity),
        status=AlertStatus(row.status),
        current_value=row.current_value,
        threshold_value=row.threshold_value,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
        occurrence_count=row.occurrence_count,
        message=row.message or "",
    )


class SqlAlertStore(AlertStore):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def find_or_create_active(self, device_id, parameter, severity, value, threshold, message, now, alert_id=None):
        alert_id = alert_id or new_alert_id()
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                with self._engine.begin() as conn:
                    return self._find_or_create(
                        conn, device_id, parameter, severity, value, threshold, message, now, alert_id
                    )
            except IntegrityError:
                if attempt == MAX_CONFLICT_RETRIES:
                    raise
                logger.info(
                    "[ALERT_STORE] concurrent insert device=%s param=%s, reinforcing winner",
                    device_id, parameter.value,
                )
        raise RuntimeError("find_or_create_active loop completed without result")

    def _find_active(self, conn: Connection, device_id: str, parameter: Parameter) -> Optional[AlertRecord]:
        stmt = (
            select(alerts)
            .where(
                and_(
                    alerts.c.device_id == device_id,
                    alerts.c.parameter == parameter.value,
                    alerts.c.status == AlertStatus.ACTIVE.value,
                )
            )
            .with_for_update()
        )
        row = conn.execute(stmt).first()
        return _row_to_record(row) if row else None

    def _find_or_create(self, conn, device_id, parameter, severity, value, threshold, message, now, alert_id):
        existing = self._find_active(conn, device_id, parameter)
        if existing is not None and existing.alert_id == alert_id:
            return existing, True
        if existing is not None:
            reinforce(existing, severity, value, threshold, message, now)
            conn.execute(
                update(alerts)
                .where(alerts.c.alert_id == existing.alert_id)
                .values(
                    occurrence_count=alerts.c.occurrence_count + 1,
                    current_value=existing.current_value,
                    severity=existing.severity.value,
                    threshold_value=existing.threshold_value,
                    message=existing.message,
                    updated_at=now,
                )
            )
            return existing, False

        record = AlertRecord(
            alert_id=alert_id,
            device_id=device_id,
            parameter=parameter,
            severity=severity,
            status=AlertStatus.ACTIVE,
            current_value=value,
            threshold_value=threshold,
            created_at=now,
            updated_at=now,
            message=message,
        )
        conn.execute(
            insert(alerts).values(
                alert_id=record.alert_id,
                device_id=device_id,
                parameter=parameter.value,
                severity=severity.value,
                status=record.status.value,
                current_value=value,
                threshold_value=threshold,
                message=message,
                occurrence_count=1,
                created_at=now,
                updated_at=now,
            )
        )
        return record, True

    def get(self, alert_id: str) -> Optional[AlertRecord]:
        with self._engine.connect() as conn:
            row = conn.execute(select(alerts).where(alerts.c.alert_id == alert_id)).first()
        return _row_to_record(row) if row else None

    def list_active(self, device_id: Optional[str] = None) -> list[AlertRecord]:
        stmt = select(alerts).where(alerts.c.status == AlertStatus.ACTIVE.value)
        if device_id is not None:
            stmt = stmt.where(alerts.c.device_id == device_id)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt.order_by(alerts.c.created_at)).fetchall()
        return [_row_to_record(r) for r in rows]

    def set_status(self, alert_id: str, status: AlertStatus, now: datetime) -> Optional[AlertRecord]:
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(alerts)
                    .where(alerts.c.alert_id == alert_id)
                    .values(status=status.value, updated_at=now)
                )
                if not result.rowcount:
                    return None
                row = conn.execute(select(alerts).where(alerts.c.alert_id == alert_id)).first()
        except IntegrityError as e:
            raise ValueError(f"another Active alert exists for alert {alert_id}") from e
        return _row_to_record(row)

    def find_duplicate_active(self) -> list[tuple[str, Parameter, int]]:
        stmt = (
            select(alerts.c.device_id, alerts.c.parameter, func.count().label("n"))
            .where(alerts.c.status == AlertStatus.ACTIVE.value)
            .group_by(alerts.c.device_id, alerts.c.parameter)
            .having(func.count() > 1)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [(r.device_id, Parameter(r.parameter), r.n) for r in rows]
