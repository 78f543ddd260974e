"""Coordinación del pipeline de ingesta."""

from .coordinator import CoordinatorConfig, IngestionCoordinator
from .outcome import EventState, ProcessingOutcome

__all__ = [
    "CoordinatorConfig",
    "IngestionCoordinator",
    "EventState",
    "ProcessingOutcome",
]
