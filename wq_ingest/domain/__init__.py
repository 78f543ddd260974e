"""Modelos de dominio del pipeline de calidad de agua."""

from .events import (
    DeviceHeartbeat,
    DeviceRegistration,
    DeviceStatusReport,
    InboundEvent,
    Parameter,
    Reading,
    UnknownEvent,
    event_device_id,
)
from .alert import AlertRecord, AlertStatus, Severity
from .device import DeviceState, DeviceStatus

__all__ = [
    "InboundEvent",
    "Reading",
    "DeviceRegistration",
    "DeviceHeartbeat",
    "DeviceStatusReport",
    "UnknownEvent",
    "Parameter",
    "event_device_id",
    "AlertRecord",
    "AlertStatus",
    "Severity",
    "DeviceState",
    "DeviceStatus",
]
