"""Umbrales y evaluación de severidad.

- models.py: ThresholdBand, Evaluation, ThresholdConfigError
- evaluator.py: evaluate() puro + ThresholdEvaluator
- loader.py: carga desde JSON con bandas por defecto
"""

from .models import Evaluation, ThresholdBand, ThresholdConfigError
from .evaluator import DEFAULT_ADVISORY_MARGIN, ThresholdEvaluator, evaluate, evaluate_band
from .loader import DEFAULT_BANDS, ThresholdSettings, load_thresholds, parse_threshold_config

__all__ = [
    "Evaluation",
    "ThresholdBand",
    "ThresholdConfigError",
    "DEFAULT_ADVISORY_MARGIN",
    "ThresholdEvaluator",
    "evaluate",
    "evaluate_band",
    "DEFAULT_BANDS",
    "ThresholdSettings",
    "load_thresholds",
    "parse_threshold_config",
]
