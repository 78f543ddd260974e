"""Modelos de umbrales por parámetro."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..domain.alert import Severity


class ThresholdConfigError(ValueError):
    """Configuración de umbrales inconsistente. Fatal al cargar."""


@dataclass(frozen=True)
class ThresholdBand:
    """Bandas WARNING/CRITICAL de un parámetro.

    Cualquier lado puede faltar (TDS y turbidez sólo tienen máximo).
    Los valores presentes deben cumplir:
        critical_min <= warning_min <= warning_max <= critical_max
    """

    warning_min: Optional[float] = None
    warning_max: Optional[float] = None
    critical_min: Optional[float] = None
    critical_max: Optional[float] = None

    def check_consistency(self, name: str = "band") -> None:
        ordered = [
            ("critical_min", self.critical_min),
            ("warning_min", self.warning_min),
            ("warning_max", self.warning_max),
            ("critical_max", self.critical_max),
        ]
        present = [(label, v) for label, v in ordered if v is not None]
        if not present:
            raise ThresholdConfigError(f"{name}: no bounds configured")

        for label, v in present:
            if v != v or v in (float("inf"), float("-inf")):
                raise ThresholdConfigError(f"{name}: {label} must be finite, got {v}")

        for (label_a, a), (label_b, b) in zip(present, present[1:]):
            if a > b:
                raise ThresholdConfigError(
                    f"{name}: {label_a}={a} must be <= {label_b}={b}"
                )


@dataclass(frozen=True)
class Evaluation:
    """Resultado de evaluar un valor contra su banda."""

    severity: Severity
    threshold_value: Optional[float] = None

    @property
    def is_violation(self) -> bool:
        return self.severity.is_violation()


NORMAL = Evaluation(Severity.NONE)
