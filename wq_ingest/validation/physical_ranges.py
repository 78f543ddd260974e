"""Rangos físicos por parámetro (hard limits del sensor)."""

from __future__ import annotations

from dataclasses import dataclass

from ..domain.events import Parameter


@dataclass(frozen=True)
class PhysicalRange:
    """Rango físico del sensor, inclusivo en ambos extremos."""

    min_value: float
    max_value: float
    unit: str = ""

    def contains(self, value: float) -> bool:
        return self.min_value <= value <= self.max_value


PHYSICAL_RANGES: dict[Parameter, PhysicalRange] = {
    Parameter.PH: PhysicalRange(0.0, 14.0),
    Parameter.TURBIDITY: PhysicalRange(0.0, 1000.0, "NTU"),
    Parameter.TDS: PhysicalRange(0.0, 2000.0, "ppm"),
    # DS18B20 sumergible
    Parameter.TEMPERATURE: PhysicalRange(-55.0, 125.0, "°C"),
}
