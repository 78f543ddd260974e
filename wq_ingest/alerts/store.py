"""Contrato del AlertStore y store en memoria.

find_or_create_active es la ÚNICA operación que crea alertas y debe ser
atómica: para una clave (device_id, parameter) nunca pueden coexistir
dos alertas Active.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ..domain.alert import AlertRecord, AlertStatus, Severity
from ..domain.events import Parameter


def new_alert_id() -> str:
    return str(uuid.uuid4())


def reinforce(record: AlertRecord, severity: Severity, value: float, threshold: Optional[float],
              message: str, now: datetime) -> None:
    """Refuerza una alerta Active existente (escala severidad, nunca baja)."""
    record.occurrence_count += 1
    record.current_value = value
    record.updated_at = now
    if severity.rank > record.severity.rank:
        record.severity = severity
        record.threshold_value = threshold
        record.message = message


class AlertStore(ABC):
    @abstractmethod
    def find_or_create_active(
        self,
        device_id: str,
        parameter: Parameter,
        severity: Severity,
        value: float,
        threshold: Optional[float],
        message: str,
        now: datetime,
        alert_id: Optional[str] = None,
    ) -> tuple[AlertRecord, bool]:
        """Busca la alerta Active de la clave; la refuerza o crea una nueva.

        `alert_id` es el id que tendrá la alerta si se crea. Si la Active
        existente ya tiene ese id, la llamada es un reintento de una
        creación que llegó a confirmarse: se devuelve created=True sin
        reforzar.

        Returns:
            (alerta, created)
        """

    @abstractmethod
    def get(self, alert_id: str) -> Optional[AlertRecord]:
        ...

    @abstractmethod
    def list_active(self, device_id: Optional[str] = None) -> list[AlertRecord]:
        ...

    @abstractmethod
    def set_status(self, alert_id: str, status: AlertStatus, now: datetime) -> Optional[AlertRecord]:
        """Acknowledge/resolve desde la API de administración."""

    @abstractmethod
    def find_duplicate_active(self) -> list[tuple[str, Parameter, int]]:
        """Claves con más de una alerta Active. Debe estar siempre vacía."""


class InMemoryAlertStore(AlertStore):
    """Store en memoria: un lock alrededor de find-and-insert."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._alerts: dict[str, AlertRecord] = {}
        self._active: dict[tuple[str, Parameter], str] = {}

    def find_or_create_active(self, device_id, parameter, severity, value, threshold, message, now, alert_id=None):
        key = (device_id, parameter)
        with self._lock:
            active_id = self._active.get(key)
            if active_id is not None:
                record = self._alerts[active_id]
                if active_id == alert_id:
                    return replace(record), True
                reinforce(record, severity, value, threshold, message, now)
                return replace(record), False

            record = AlertRecord(
                alert_id=alert_id or new_alert_id(),
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
            self._alerts[record.alert_id] = record
            self._active[key] = record.alert_id
            return replace(record), True

    def get(self, alert_id: str) -> Optional[AlertRecord]:
        with self._lock:
            record = self._alerts.get(alert_id)
            return replace(record) if record else None

    def list_active(self, device_id: Optional[str] = None) -> list[AlertRecord]:
        with self._lock:
            return [
                replace(r)
                for r in self._alerts.values()
                if r.is_active and (device_id is None or r.device_id == device_id)
            ]

    def set_status(self, alert_id: str, status: AlertStatus, now: datetime) -> Optional[AlertRecord]:
        with self._lock:
            record = self._alerts.get(alert_id)
            if record is None:
                return None
            key = (record.device_id, record.parameter)
            if record.is_active and status != AlertStatus.ACTIVE:
                self._active.pop(key, None)
            elif status == AlertStatus.ACTIVE and not record.is_active:
                if key in self._active:
                    raise ValueError(f"another Active alert exists for {key}")
                self._active[key] = alert_id
            record.status = status
            record.updated_at = now
            return replace(record)

    def find_duplicate_active(self) -> list[tuple[str, Parameter, int]]:
        counts: dict[tuple[str, Parameter], int] = {}
        with self._lock:
            for r in self._alerts.values():
                if r.is_active:
                    counts[(r.device_id, r.parameter)] = counts.get((r.device_id, r.parameter), 0) + 1
        return [(d, p, n) for (d, p), n in counts.items() if n > 1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
