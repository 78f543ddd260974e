"""Texto de alerta legible para notificaciones y UI."""

from __future__ import annotations

from typing import Optional

from ..domain.alert import Severity
from ..domain.events import Parameter

UNITS = {
    Parameter.PH: "",
    Parameter.TURBIDITY: " NTU",
    Parameter.TDS: " ppm",
    Parameter.TEMPERATURE: " °C",
}


def build_alert_message(
    parameter: Parameter,
    severity: Severity,
    value: float,
    threshold: Optional[float],
) -> str:
    """Ej: "Critical: Turbidity exceeds threshold. Current: 12.40 NTU, Threshold: 10 NTU"."""
    unit = UNITS.get(parameter, "")
    # pH es de banda doble; en el resto "exceeds" solo si se pasó por arriba.
    if parameter is Parameter.PH or threshold is None or value < threshold:
        condition = "outside safe range"
    else:
        condition = "exceeds threshold"

    message = f"{severity.value}: {parameter.value} {condition}. Current: {value:.2f}{unit}"
    if threshold is not None:
        message += f", Threshold: {threshold:g}{unit}"
    return message
