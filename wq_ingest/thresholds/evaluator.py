"""Evaluador de umbrales.

Función pura y determinista: mismo (parámetro, valor, bandas) → misma
severidad. El dedup y el guard dependen de esto para razonar sobre "la
misma violación".

Comparaciones inclusivas:
- CRITICAL si value <= critical_min o value >= critical_max
- WARNING  si value <= warning_min  o value >= warning_max
- ADVISORY si value está a menos de advisory_margin * ancho_de_banda
  de un límite WARNING (margin=0 desactiva ADVISORY)
- NONE en otro caso
"""

from __future__ import annotations

from typing import Mapping, Optional

from ..domain.alert import Severity
from ..domain.events import Parameter
from .models import NORMAL, Evaluation, ThresholdBand

DEFAULT_ADVISORY_MARGIN = 0.10


def _band_width(band: ThresholdBand) -> Optional[float]:
    if band.warning_min is not None and band.warning_max is not None:
        return band.warning_max - band.warning_min
    single = band.warning_max if band.warning_max is not None else band.warning_min
    if single is None:
        return None
    return abs(single)


def evaluate_band(
    value: float,
    band: ThresholdBand,
    advisory_margin: float = DEFAULT_ADVISORY_MARGIN,
) -> Evaluation:
    if band.critical_min is not None and value <= band.critical_min:
        return Evaluation(Severity.CRITICAL, band.critical_min)
    if band.critical_max is not None and value >= band.critical_max:
        return Evaluation(Severity.CRITICAL, band.critical_max)

    if band.warning_min is not None and value <= band.warning_min:
        return Evaluation(Severity.WARNING, band.warning_min)
    if band.warning_max is not None and value >= band.warning_max:
        return Evaluation(Severity.WARNING, band.warning_max)

    if advisory_margin > 0:
        width = _band_width(band)
        if width:
            margin = width * advisory_margin
            if band.warning_min is not None and value - band.warning_min <= margin:
                return Evaluation(Severity.ADVISORY, band.warning_min)
            if band.warning_max is not None and band.warning_max - value <= margin:
                return Evaluation(Severity.ADVISORY, band.warning_max)

    return NORMAL


def evaluate(
    parameter: Parameter,
    value: float,
    bands: Mapping[Parameter, ThresholdBand],
    advisory_margin: float = DEFAULT_ADVISORY_MARGIN,
) -> Evaluation:
    """Clasifica una lectura validada. Sin banda configurada → NONE."""
    band = bands.get(parameter)
    if band is None:
        return NORMAL
    return evaluate_band(value, band, advisory_margin)


class ThresholdEvaluator:
    """Envoltorio con estado de configuración sobre evaluate().

    Las bandas se reemplazan atómicamente (swap de referencia), así un
    cambio aplica desde la siguiente evaluación.
    """

    def __init__(
        self,
        bands: Mapping[Parameter, ThresholdBand],
        advisory_margin: float = DEFAULT_ADVISORY_MARGIN,
    ) -> None:
        for parameter, band in bands.items():
            band.check_consistency(parameter.value)
        self._bands = dict(bands)
        self._advisory_margin = advisory_margin

    @property
    def bands(self) -> dict[Parameter, ThresholdBand]:
        return dict(self._bands)

    def replace_bands(self, bands: Mapping[Parameter, ThresholdBand]) -> None:
        for parameter, band in bands.items():
            band.check_consistency(parameter.value)
        self._bands = dict(bands)

    def evaluate(self, parameter: Parameter, value: float) -> Evaluation:
        return evaluate(parameter, value, self._bands, self._advisory_margin)
