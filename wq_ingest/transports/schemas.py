"""Schemas de payloads de dispositivo.

Formato de datos del firmware (devices/{id}/data):

    {
        "pH": 7.12, "tds": 310.5, "turbidity": 1.8, "temperature": 24.1,
        "pH_valid": true, "tds_valid": true, "turbidity_valid": true,
        "timestamp": 1767225600
    }

También se acepta una lectura de un solo parámetro
({"parameter": "pH", "value": 7.1, "valid": true, "timestamp": ...}) y
un lote {"readings": [...]} de cualquiera de las dos formas.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _to_epoch_seconds(v: Any) -> Optional[float]:
    """Acepta epoch en segundos (o milisegundos) o ISO-8601."""
    if v is None:
        return None
    if isinstance(v, bool):
        raise ValueError("timestamp must be a number or ISO-8601 string")
    if isinstance(v, (int, float)):
        ts = float(v)
        if not math.isfinite(ts):
            raise ValueError("timestamp is not finite")
        # Algunos firmwares envían millis.
        if ts > 1e11:
            ts /= 1000.0
        return ts
    if isinstance(v, str):
        try:
            dt = datetime.fromisoformat(v.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid timestamp format: {v!r}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    raise ValueError("timestamp must be a number or ISO-8601 string")


class _DevicePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timestamp: Optional[float] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        return _to_epoch_seconds(v)

    def timestamp_or(self, now: datetime) -> datetime:
        if self.timestamp is None:
            return now
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


class SensorDataPayload(_DevicePayload):
    ph: Optional[float] = Field(default=None, alias="pH")
    tds: Optional[float] = None
    turbidity: Optional[float] = None
    temperature: Optional[float] = None
    ph_valid: bool = Field(default=True, alias="pH_valid")
    tds_valid: bool = True
    turbidity_valid: bool = True
    temperature_valid: bool = True
    device_name: Optional[str] = Field(default=None, alias="deviceName")

    def has_any_value(self) -> bool:
        return any(v is not None for v in (self.ph, self.tds, self.turbidity, self.temperature))


class SingleReadingPayload(_DevicePayload):
    parameter: str
    value: float
    valid: bool = True


class BatchPayload(BaseModel):
    readings: list[dict[str, Any]] = Field(default_factory=list)


class RegistrationPayload(_DevicePayload):
    name: Optional[str] = None
    device_type: Optional[str] = Field(default=None, alias="type")
    firmware_version: Optional[str] = Field(default=None, alias="firmwareVersion")
    sensors: list[str] = Field(default_factory=list)
    location: Optional[Union[str, dict[str, Any]]] = None

    def location_text(self) -> Optional[str]:
        if self.location is None or isinstance(self.location, str):
            return self.location
        return ", ".join(str(v) for v in self.location.values() if v)


class PresencePayload(_DevicePayload):
    pass


class StatusPayload(_DevicePayload):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("online", "offline"):
            raise ValueError("status must be 'online' or 'offline'")
        return v
