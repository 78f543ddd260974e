"""Estado de dispositivo."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class DeviceStatus(str, Enum):
    ONLINE = "Online"
    OFFLINE = "Offline"


@dataclass
class DeviceState:
    """Estado en memoria de un dispositivo.

    last_persisted_at es None hasta la primera escritura exitosa al store.
    """

    device_id: str
    status: DeviceStatus
    last_seen: datetime
    last_persisted_at: Optional[datetime] = None

    def snapshot(self) -> "DeviceState":
        return DeviceState(
            device_id=self.device_id,
            status=self.status,
            last_seen=self.last_seen,
            last_persisted_at=self.last_persisted_at,
        )
