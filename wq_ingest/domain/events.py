"""Eventos de entrada del pipeline.

Todo mensaje que llega desde un transporte (MQTT, HTTP) se resuelve una
sola vez en la frontera a uno de estos tipos. El resto del pipeline trabaja
contra esta unión cerrada:

    InboundEvent = Reading | DeviceRegistration | DeviceHeartbeat
                   | DeviceStatusReport | UnknownEvent
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class Parameter(str, Enum):
    """Parámetros de calidad de agua soportados."""

    PH = "pH"
    TDS = "TDS"
    TURBIDITY = "Turbidity"
    TEMPERATURE = "Temperature"

    @classmethod
    def parse(cls, raw: str) -> Optional["Parameter"]:
        """Acepta el nombre canónico o el alias en minúsculas del firmware."""
        if raw is None:
            return None
        key = str(raw).strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None


@dataclass(frozen=True)
class Reading:
    """Una muestra de sensor. Inmutable una vez ingerida."""

    device_id: str
    parameter: Parameter
    value: float
    validity_flag: bool
    timestamp: datetime


@dataclass(frozen=True)
class DeviceRegistration:
    device_id: str
    timestamp: datetime
    name: Optional[str] = None
    device_type: Optional[str] = None
    firmware_version: Optional[str] = None
    sensors: tuple[str, ...] = ()
    location: Optional[str] = None


@dataclass(frozen=True)
class DeviceHeartbeat:
    """Mensaje de presencia (devices/{id}/presence)."""

    device_id: str
    timestamp: datetime


@dataclass(frozen=True)
class DeviceStatusReport:
    """Last-will / estado explícito publicado por el dispositivo."""

    device_id: str
    online: bool
    timestamp: datetime


@dataclass(frozen=True)
class UnknownEvent:
    """Mensaje que no se pudo resolver a un tipo conocido."""

    source: str
    reason: str
    raw: Any = field(default=None, compare=False)


InboundEvent = Union[Reading, DeviceRegistration, DeviceHeartbeat, DeviceStatusReport, UnknownEvent]


def event_device_id(event: InboundEvent) -> Optional[str]:
    """device_id del evento, o None para UnknownEvent."""
    if isinstance(event, UnknownEvent):
        return None
    return event.device_id
