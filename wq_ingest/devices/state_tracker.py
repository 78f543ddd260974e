"""Tracker de estado Online/Offline de dispositivos.

FUENTE ÚNICA DE VERDAD en memoria para last_seen y status.

Reglas:
- record_seen actualiza last_seen siempre (en memoria) y persiste como
  máximo una vez por ventana de throttle. Las lecturas llegan cada pocos
  segundos; sin throttle el store no aguanta la carga.
- La transición a Offline la hace sweep_offline (periódico), nunca el
  camino de ingesta, y se persiste de inmediato sin throttle.
- El estado está particionado en shards con lock propio; las llamadas al
  store se hacen fuera del lock, con reintentos acotados.
- Dos escrituras fuera del lock pueden aterrizar en orden inverso. Tras
  cada escritura se compara con memoria y, si el status ya cambió, se
  re-escribe el estado actual: el store no se queda con un status viejo.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from ..domain.device import DeviceState, DeviceStatus
from ..resilience.errors import StoreUnavailable
from ..resilience.retry import RetryConfig, RetryExecutor
from ..resilience.timeouts import StoreCallRunner
from ..sharding import DEFAULT_SHARDS, ShardedLocks
from .device_store import DeviceStore

logger = logging.getLogger(__name__)

# Máximo de re-escrituras si el status cambia mientras se persiste.
MAX_RECONCILE_WRITES = 2


def _persist_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        base_delay=0.2,
        max_delay=2.0,
        retryable_exceptions=(StoreUnavailable,),
    )


@dataclass
class DeviceTrackerConfig:
    throttle_window_seconds: float = 300.0
    offline_timeout_seconds: float = 600.0
    shards: int = DEFAULT_SHARDS
    persist_retry: RetryConfig = field(default_factory=_persist_retry_config)

    @classmethod
    def from_env(cls) -> "DeviceTrackerConfig":
        retry = RetryConfig.from_env(prefix="DEVICE_RETRY")
        retry.retryable_exceptions = (StoreUnavailable,)
        return cls(
            throttle_window_seconds=float(os.getenv("DEVICE_PERSIST_THROTTLE_SECONDS", "300")),
            offline_timeout_seconds=float(os.getenv("DEVICE_OFFLINE_TIMEOUT_SECONDS", "600")),
            shards=int(os.getenv("DEVICE_STATE_SHARDS", str(DEFAULT_SHARDS))),
            persist_retry=retry,
        )


StatusTransition = Tuple[Optional[DeviceStatus], DeviceStatus]


class DeviceStateTracker:
    def __init__(
        self,
        store: DeviceStore,
        config: Optional[DeviceTrackerConfig] = None,
        store_runner: Optional[StoreCallRunner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._config = config or DeviceTrackerConfig()
        self._runner = store_runner
        self._retry = RetryExecutor(self._config.persist_retry, sleep=sleep, name="device_store")
        self._throttle = timedelta(seconds=self._config.throttle_window_seconds)
        self._offline_timeout = timedelta(seconds=self._config.offline_timeout_seconds)

        self._locks = ShardedLocks(self._config.shards)
        self._shards: list[dict[str, DeviceState]] = [{} for _ in range(len(self._locks))]

        self._stats_lock = threading.Lock()
        self._persist_writes = 0
        self._persist_failures = 0
        self._offline_transitions = 0

    @property
    def config(self) -> DeviceTrackerConfig:
        return self._config

    # ------------------------------------------------------------------
    # Ingesta
    # ------------------------------------------------------------------

    def record_seen(self, device_id: str, timestamp: datetime) -> StatusTransition:
        """Registra actividad del dispositivo.

        Returns:
            (previous_status, current_status). previous_status es None si
            el dispositivo no se conocía.
        """
        return self._touch(device_id, timestamp, force_persist=False)

    def register(self, device_id: str, timestamp: datetime) -> StatusTransition:
        """Registro explícito: crea/refresca el estado y persiste ya."""
        return self._touch(device_id, timestamp, force_persist=True)

    def apply_status_report(self, device_id: str, online: bool, timestamp: datetime) -> StatusTransition:
        """Estado explícito publicado por el dispositivo (last-will).

        Offline reportado se persiste de inmediato, igual que en el sweep.
        """
        if online:
            return self._touch(device_id, timestamp, force_persist=True)

        idx = self._locks.index(device_id)
        with self._locks.for_key(device_id):
            shard = self._shards[idx]
            state = shard.get(device_id)
            previous = state.status if state else None
            if state is None:
                state = DeviceState(device_id=device_id, status=DeviceStatus.OFFLINE, last_seen=timestamp)
                shard[device_id] = state
            else:
                state.status = DeviceStatus.OFFLINE
                if timestamp > state.last_seen:
                    state.last_seen = timestamp
            last_seen = state.last_seen

        if self._persist(idx, device_id, DeviceStatus.OFFLINE, last_seen):
            with self._locks.for_key(device_id):
                state = self._shards[idx][device_id]
                if state.status == DeviceStatus.OFFLINE:
                    state.last_persisted_at = timestamp
        if previous != DeviceStatus.OFFLINE:
            logger.warning("[DEVICE_STATE] device=%s went OFFLINE (status report)", device_id)
        return previous, DeviceStatus.OFFLINE

    def _touch(self, device_id: str, timestamp: datetime, force_persist: bool) -> StatusTransition:
        idx = self._locks.index(device_id)
        with self._locks.for_key(device_id):
            shard = self._shards[idx]
            state = shard.get(device_id)
            previous = state.status if state else None

            if state is None:
                state = DeviceState(device_id=device_id, status=DeviceStatus.ONLINE, last_seen=timestamp)
                shard[device_id] = state
            else:
                state.status = DeviceStatus.ONLINE
                if timestamp > state.last_seen:
                    state.last_seen = timestamp

            should_persist = (
                force_persist
                or previous != DeviceStatus.ONLINE
                or state.last_persisted_at is None
                or timestamp - state.last_persisted_at >= self._throttle
            )
            reserved_from = state.last_persisted_at
            if should_persist:
                # Reserva la ventana antes de salir del lock: un segundo
                # hilo no duplica la escritura.
                state.last_persisted_at = timestamp
            last_seen = state.last_seen

        if should_persist and not self._persist(idx, device_id, DeviceStatus.ONLINE, last_seen):
            with self._locks.for_key(device_id):
                current = self._shards[idx].get(device_id)
                if current is not None and current.last_persisted_at == timestamp:
                    current.last_persisted_at = reserved_from

        if previous != DeviceStatus.ONLINE:
            logger.info(
                "[DEVICE_STATE] device=%s %s -> Online",
                device_id,
                previous.value if previous else "unknown",
            )
        return previous, DeviceStatus.ONLINE

    # ------------------------------------------------------------------
    # Sweep periódico
    # ------------------------------------------------------------------

    def sweep_offline(self, now: datetime) -> list[str]:
        """Pasa a Offline los dispositivos sin actividad dentro del timeout.

        Returns:
            device_ids que transicionaron (y se persistieron) en este sweep.
        """
        candidates: list[tuple[int, str, datetime]] = []
        for idx, shard in enumerate(self._shards):
            with self._locks.at(idx):
                for device_id, state in shard.items():
                    if state.status == DeviceStatus.ONLINE and now - state.last_seen > self._offline_timeout:
                        state.status = DeviceStatus.OFFLINE
                        candidates.append((idx, device_id, state.last_seen))

        transitioned: list[str] = []
        for idx, device_id, last_seen in candidates:
            if self._persist(idx, device_id, DeviceStatus.OFFLINE, last_seen):
                with self._locks.at(idx):
                    state = self._shards[idx][device_id]
                    if state.status == DeviceStatus.OFFLINE:
                        state.last_persisted_at = now
                transitioned.append(device_id)
                logger.warning(
                    "[DEVICE_STATE] device=%s Online -> Offline (last_seen=%s)",
                    device_id,
                    last_seen.isoformat(),
                )
            else:
                # Se reintenta en el próximo sweep.
                with self._locks.at(idx):
                    state = self._shards[idx][device_id]
                    if state.status == DeviceStatus.OFFLINE and state.last_seen == last_seen:
                        state.status = DeviceStatus.ONLINE

        if transitioned:
            with self._stats_lock:
                self._offline_transitions += len(transitioned)
        return transitioned

    # ------------------------------------------------------------------

    def _persist(self, idx: int, device_id: str, status: DeviceStatus, last_seen: datetime) -> bool:
        """Escribe el status y lo reconcilia con memoria.

        Returns:
            True si la escritura propia se confirmó.
        """
        if not self._write(device_id, status, last_seen):
            return False

        for _ in range(MAX_RECONCILE_WRITES):
            with self._locks.at(idx):
                current = self._shards[idx].get(device_id)
                if current is None or current.status == status:
                    return True
                status, last_seen = current.status, current.last_seen

            logger.info("[DEVICE_STATE] device=%s changed while persisting, rewriting %s", device_id, status.value)
            if not self._write(device_id, status, last_seen):
                # Sin throttle en la próxima lectura: el store puede tener un status viejo.
                with self._locks.at(idx):
                    current = self._shards[idx].get(device_id)
                    if current is not None:
                        current.last_persisted_at = None
                return True
        return True

    def _write(self, device_id: str, status: DeviceStatus, last_seen: datetime) -> bool:
        call: Callable[[], None] = lambda: self._store.upsert_status(device_id, status, last_seen)
        try:
            if self._runner is not None:
                self._retry.execute(self._runner.call, call)
            else:
                self._retry.execute(call)
        except StoreUnavailable as e:
            with self._stats_lock:
                self._persist_failures += 1
            logger.warning("[DEVICE_STATE] persist failed device=%s status=%s err=%s", device_id, status.value, e)
            return False
        except Exception as e:
            with self._stats_lock:
                self._persist_failures += 1
            logger.error(
                "[DEVICE_STATE] persist error device=%s status=%s err=%s",
                device_id, status.value, e,
            )
            return False

        with self._stats_lock:
            self._persist_writes += 1
        return True

    def get(self, device_id: str) -> Optional[DeviceState]:
        idx = self._locks.index(device_id)
        with self._locks.for_key(device_id):
            state = self._shards[idx].get(device_id)
            return state.snapshot() if state else None

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)

    @property
    def stats(self) -> dict:
        online = 0
        total = 0
        for idx, shard in enumerate(self._shards):
            with self._locks.at(idx):
                total += len(shard)
                online += sum(1 for s in shard.values() if s.status == DeviceStatus.ONLINE)
        with self._stats_lock:
            return {
                "devices": total,
                "online": online,
                "offline": total - online,
                "persist_writes": self._persist_writes,
                "persist_failures": self._persist_failures,
                "offline_transitions": self._offline_transitions,
                "persist_retry": self._retry.stats,
            }
