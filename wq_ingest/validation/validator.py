"""Validador de lecturas.

La validación es una función pura: nunca lanza por datos malos. Devuelve
ValidReading o Rejection y el llamador decide cómo contar/loguear.
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping, Optional, Union

from ..domain.events import Parameter, Reading
from .physical_ranges import PHYSICAL_RANGES, PhysicalRange

# Relojes de dispositivo sin sincronizar NTP arrancan en 1970/2000.
EPOCH_FLOOR = datetime.fromtimestamp(1609459200, tz=timezone.utc)

DEVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class RejectionReason(str, Enum):
    INVALID_DEVICE_ID = "invalid_device_id"
    NON_FINITE_VALUE = "non_finite_value"
    SENSOR_INVALID = "sensor_invalid"
    TIMESTAMP_TOO_OLD = "timestamp_too_old"
    TIMESTAMP_IN_FUTURE = "timestamp_in_future"
    OUT_OF_RANGE = "out_of_range"


@dataclass(frozen=True)
class ValidReading:
    reading: Reading


@dataclass(frozen=True)
class Rejection:
    reason: RejectionReason
    detail: str


ValidationResult = Union[ValidReading, Rejection]


@dataclass
class ValidatorConfig:
    max_clock_skew_seconds: float = 300.0

    @classmethod
    def from_env(cls) -> "ValidatorConfig":
        return cls(
            max_clock_skew_seconds=float(os.getenv("VALIDATOR_MAX_CLOCK_SKEW", "300")),
        )


class ReadingValidator:
    """Valida lecturas antes de evaluarlas.

    Orden de chequeos:
    1. device_id (charset y largo)
    2. valor finito
    3. validity flag reportado por el sensor
    4. timestamp (piso de época y skew hacia el futuro)
    5. rango físico del parámetro (se rechaza, nunca se recorta)
    """

    def __init__(
        self,
        config: Optional[ValidatorConfig] = None,
        physical_ranges: Optional[Mapping[Parameter, PhysicalRange]] = None,
    ) -> None:
        self._config = config or ValidatorConfig()
        self._ranges = dict(physical_ranges or PHYSICAL_RANGES)
        self._max_skew = timedelta(seconds=self._config.max_clock_skew_seconds)

    def validate(self, reading: Reading, now: datetime) -> ValidationResult:
        device_id = reading.device_id
        if not device_id or not DEVICE_ID_PATTERN.match(device_id):
            return Rejection(
                RejectionReason.INVALID_DEVICE_ID,
                f"device_id {device_id!r} must be 1-128 chars of [A-Za-z0-9_-]",
            )

        value = reading.value
        if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
            return Rejection(RejectionReason.NON_FINITE_VALUE, f"value {value!r} is not a finite number")

        if not reading.validity_flag:
            return Rejection(
                RejectionReason.SENSOR_INVALID,
                f"{reading.parameter.value} sensor reported invalid data",
            )

        ts = reading.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        if ts < EPOCH_FLOOR:
            return Rejection(
                RejectionReason.TIMESTAMP_TOO_OLD,
                f"timestamp {ts.isoformat()} is before {EPOCH_FLOOR.date().isoformat()}",
            )
        if ts > now + self._max_skew:
            ahead = (ts - now).total_seconds()
            return Rejection(
                RejectionReason.TIMESTAMP_IN_FUTURE,
                f"timestamp {ts.isoformat()} is {ahead:.0f}s ahead of server",
            )

        physical = self._ranges.get(reading.parameter)
        if physical is not None and not physical.contains(value):
            return Rejection(
                RejectionReason.OUT_OF_RANGE,
                f"{reading.parameter.value}: {value} (valid range: "
                f"{physical.min_value:g}-{physical.max_value:g}{' ' + physical.unit if physical.unit else ''})",
            )

        return ValidReading(reading)
