"""Estado Online/Offline de dispositivos."""

from .device_store import DeviceStore, InMemoryDeviceStore, SqlDeviceStore
from .offline_sweeper import OfflineSweeper
from .state_tracker import DeviceStateTracker, DeviceTrackerConfig

__all__ = [
    "DeviceStore",
    "InMemoryDeviceStore",
    "SqlDeviceStore",
    "OfflineSweeper",
    "DeviceStateTracker",
    "DeviceTrackerConfig",
]
