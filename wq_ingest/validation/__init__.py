from .physical_ranges import PHYSICAL_RANGES, PhysicalRange
from .validator import (
    EPOCH_FLOOR,
    ReadingValidator,
    Rejection,
    RejectionReason,
    ValidatorConfig,
    ValidReading,
    ValidationResult,
)

__all__ = [
    "PHYSICAL_RANGES",
    "PhysicalRange",
    "EPOCH_FLOOR",
    "ReadingValidator",
    "Rejection",
    "RejectionReason",
    "ValidatorConfig",
    "ValidReading",
    "ValidationResult",
]
