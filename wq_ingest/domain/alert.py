"""Modelos de alerta."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .events import Parameter


class Severity(str, Enum):
    """Severidad de una evaluación de umbral.

    NONE nunca se persiste: el coordinador corta el flujo antes del guard.
    """

    NONE = "None"
    ADVISORY = "Advisory"
    WARNING = "Warning"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def is_violation(self) -> bool:
        return self is not Severity.NONE


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.ADVISORY: 1,
    Severity.WARNING: 2,
    Severity.CRITICAL: 3,
}


class AlertStatus(str, Enum):
    ACTIVE = "Active"
    ACKNOWLEDGED = "Acknowledged"
    RESOLVED = "Resolved"


@dataclass
class AlertRecord:
    """Una alerta persistida.

    occurrence_count cuenta las lecturas que reforzaron la alerta mientras
    estuvo Active (la que la creó incluida).
    """

    alert_id: str
    device_id: str
    parameter: Parameter
    severity: Severity
    status: AlertStatus
    current_value: float
    threshold_value: Optional[float]
    created_at: datetime
    updated_at: datetime
    occurrence_count: int = 1
    message: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def to_payload(self) -> dict:
        """Payload de notificación (independiente del canal)."""
        return {
            "alertId": self.alert_id,
            "deviceId": self.device_id,
            "parameter": self.parameter.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "currentValue": self.current_value,
            "thresholdValue": self.threshold_value,
            "message": self.message,
            "createdAt": self.created_at.isoformat(),
            "occurrenceCount": self.occurrence_count,
        }
