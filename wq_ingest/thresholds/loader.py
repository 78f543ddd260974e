"""Carga de umbrales desde configuración externa.

Formato JSON (camelCase o snake_case):

    {
        "advisoryMargin": 0.1,
        "bands": {
            "pH": {"warningMin": 6.5, "warningMax": 8.5,
                   "criticalMin": 6.0, "criticalMax": 9.0},
            "TDS": {"warningMax": 500, "criticalMax": 1000}
        }
    }

Cualquier inconsistencia aborta la carga con ThresholdConfigError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import orjson

from ..domain.events import Parameter
from .evaluator import DEFAULT_ADVISORY_MARGIN
from .models import ThresholdBand, ThresholdConfigError

logger = logging.getLogger(__name__)


DEFAULT_BANDS: dict[Parameter, ThresholdBand] = {
    Parameter.PH: ThresholdBand(warning_min=6.5, warning_max=8.5, critical_min=6.0, critical_max=9.0),
    Parameter.TURBIDITY: ThresholdBand(warning_max=5.0, critical_max=10.0),
    Parameter.TDS: ThresholdBand(warning_max=500.0, critical_max=1000.0),
    Parameter.TEMPERATURE: ThresholdBand(warning_min=10.0, warning_max=30.0, critical_min=5.0, critical_max=35.0),
}

_FIELD_ALIASES = {
    "warningMin": "warning_min",
    "warningMax": "warning_max",
    "criticalMin": "critical_min",
    "criticalMax": "critical_max",
}


@dataclass(frozen=True)
class ThresholdSettings:
    bands: dict[Parameter, ThresholdBand]
    advisory_margin: float = DEFAULT_ADVISORY_MARGIN


def _to_float(name: str, field: str, raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ThresholdConfigError(f"{name}: {field} must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ThresholdConfigError(f"{name}: {field} must be a number, got {raw!r}") from None


def parse_band(name: str, raw: Mapping[str, Any]) -> ThresholdBand:
    if not isinstance(raw, Mapping):
        raise ThresholdConfigError(f"{name}: band must be an object")

    values: dict[str, Optional[float]] = {}
    for key, raw_value in raw.items():
        field = _FIELD_ALIASES.get(key, key)
        if field not in ("warning_min", "warning_max", "critical_min", "critical_max"):
            raise ThresholdConfigError(f"{name}: unknown field {key!r}")
        values[field] = _to_float(name, field, raw_value)

    band = ThresholdBand(**values)
    band.check_consistency(name)
    return band


def parse_threshold_config(data: Mapping[str, Any]) -> ThresholdSettings:
    """Construye ThresholdSettings desde un dict ya decodificado.

    Los parámetros no mencionados conservan su banda por defecto.
    """
    bands = dict(DEFAULT_BANDS)

    raw_bands = data.get("bands", {})
    if not isinstance(raw_bands, Mapping):
        raise ThresholdConfigError("bands must be an object")

    for raw_name, raw_band in raw_bands.items():
        parameter = Parameter.parse(raw_name)
        if parameter is None:
            raise ThresholdConfigError(f"unknown parameter {raw_name!r}")
        bands[parameter] = parse_band(parameter.value, raw_band)

    margin_raw = data.get("advisoryMargin", data.get("advisory_margin", DEFAULT_ADVISORY_MARGIN))
    margin = _to_float("advisoryMargin", "value", margin_raw)
    if margin is None or not (0.0 <= margin < 1.0):
        raise ThresholdConfigError(f"advisoryMargin must be in [0, 1), got {margin_raw!r}")

    return ThresholdSettings(bands=bands, advisory_margin=margin)


def load_thresholds(path: Optional[str]) -> ThresholdSettings:
    """Carga umbrales desde archivo JSON o devuelve los valores por defecto."""
    if not path:
        logger.info("[THRESHOLDS] No thresholds file configured, using defaults")
        return ThresholdSettings(bands=dict(DEFAULT_BANDS))

    file_path = Path(path)
    if not file_path.exists():
        raise ThresholdConfigError(f"thresholds file not found: {path}")

    try:
        data = orjson.loads(file_path.read_bytes())
    except orjson.JSONDecodeError as e:
        raise ThresholdConfigError(f"thresholds file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ThresholdConfigError(f"thresholds file {path} must contain an object")

    settings = parse_threshold_config(data)
    logger.info(
        "[THRESHOLDS] Loaded %d bands from %s advisory_margin=%.2f",
        len(settings.bands),
        path,
        settings.advisory_margin,
    )
    return settings
