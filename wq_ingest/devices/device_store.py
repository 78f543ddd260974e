"""Persistencia del estado de dispositivos.

El tracker llama upsert_status como máximo una vez por ventana de
throttle por dispositivo (y sin throttle para transiciones a Offline).
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..domain.device import DeviceStatus
from ..storage_schema import devices

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DeviceStore(ABC):
    @abstractmethod
    def upsert_status(self, device_id: str, status: DeviceStatus, last_seen: datetime) -> None:
        """Persiste status y last_seen del dispositivo."""

    def get_status(self, device_id: str) -> Optional[tuple[DeviceStatus, datetime]]:
        return None


class InMemoryDeviceStore(DeviceStore):
    """Store en memoria. Cuenta escrituras para verificar el throttle."""

    def __init__(self) -> None:
        self._rows: dict[str, tuple[DeviceStatus, datetime]] = {}
        self._lock = threading.Lock()
        self.writes: list[tuple[str, DeviceStatus, datetime]] = []

    def upsert_status(self, device_id: str, status: DeviceStatus, last_seen: datetime) -> None:
        with self._lock:
            self._rows[device_id] = (status, last_seen)
            self.writes.append((device_id, status, last_seen))

    def get_status(self, device_id: str) -> Optional[tuple[DeviceStatus, datetime]]:
        with self._lock:
            return self._rows.get(device_id)

    def writes_for(self, device_id: str) -> list[tuple[str, DeviceStatus, datetime]]:
        with self._lock:
            return [w for w in self.writes if w[0] == device_id]


class SqlDeviceStore(DeviceStore):
    """Store SQL (tabla devices)."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def upsert_status(self, device_id: str, status: DeviceStatus, last_seen: datetime) -> None:
        now = datetime.now(timezone.utc)
        values = {"status": status.value, "last_seen": last_seen, "updated_at": now}

        # UPDATE primero: el dispositivo casi siempre existe.
        with self._engine.begin() as conn:
            result = conn.execute(
                update(devices).where(devices.c.device_id == device_id).values(**values)
            )
            if result.rowcount:
                return

        try:
            with self._engine.begin() as conn:
                conn.execute(insert(devices).values(device_id=device_id, **values))
        except IntegrityError:
            # Otro worker lo insertó entre el UPDATE y el INSERT.
            with self._engine.begin() as conn:
                conn.execute(
                    update(devices).where(devices.c.device_id == device_id).values(**values)
                )

    def get_status(self, device_id: str) -> Optional[tuple[DeviceStatus, datetime]]:
        with self._engine.connect() as conn:
            row = conn.execute(
                select(devices.c.status, devices.c.last_seen).where(devices.c.device_id == device_id)
            ).first()
        if row is None:
            return None
        return DeviceStatus(row.status), _as_utc(row.last_seen)
