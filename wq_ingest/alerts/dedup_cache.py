"""Cache de cooldown por (device_id, parameter).

Es solo un atajo: evita ir al AlertStore por cada lectura fuera de rango
de un sensor que ya tiene alerta. La corrección (una sola alerta Active
por clave) la garantiza el AlertGuard; con el cache deshabilitado o caído
el pipeline produce las mismas alertas.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

import redis

from ..domain.events import Parameter
from ..sharding import DEFAULT_SHARDS, ShardedLocks

logger = logging.getLogger(__name__)


class CooldownCache(Protocol):
    def should_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> bool: ...

    def record_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> None: ...


@dataclass
class DedupCacheConfig:
    cooldown_seconds: float = 300.0
    max_entries: int = 1000
    shards: int = DEFAULT_SHARDS

    @classmethod
    def from_env(cls) -> "DedupCacheConfig":
        return cls(
            cooldown_seconds=float(os.getenv("ALERT_COOLDOWN_SECONDS", "300")),
            max_entries=int(os.getenv("ALERT_DEDUP_MAX_ENTRIES", "1000")),
            shards=int(os.getenv("ALERT_DEDUP_SHARDS", str(DEFAULT_SHARDS))),
        )


def _key(device_id: str, parameter: Parameter) -> str:
    return f"{device_id}:{parameter.value}"


class AlertDedupCache:
    """Mapa acotado con TTL por entrada, particionado en shards.

    max_entries se reparte entre shards: el tope global es aproximado
    (cada shard desaloja su entrada más antigua al llenarse).
    """

    def __init__(self, config: Optional[DedupCacheConfig] = None):
        self._config = config or DedupCacheConfig()
        self._ttl = timedelta(seconds=self._config.cooldown_seconds)
        self._locks = ShardedLocks(self._config.shards)
        self._per_shard = max(1, self._config.max_entries // len(self._locks))
        self._shards: list[OrderedDict[str, datetime]] = [OrderedDict() for _ in range(len(self._locks))]

        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def config(self) -> DedupCacheConfig:
        return self._config

    def should_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> bool:
        """True si no hay intento vigente (o expiró) para la clave."""
        key = _key(device_id, parameter)
        idx = self._locks.index(key)
        with self._locks.at(idx):
            shard = self._shards[idx]
            expires_at = shard.get(key)
            if expires_at is not None and now >= expires_at:
                del shard[key]
                expires_at = None

        with self._stats_lock:
            if expires_at is None:
                self._misses += 1
            else:
                self._hits += 1
        return expires_at is None

    def record_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> None:
        key = _key(device_id, parameter)
        idx = self._locks.index(key)
        evicted = 0
        with self._locks.at(idx):
            shard = self._shards[idx]
            shard[key] = now + self._ttl
            shard.move_to_end(key)
            while len(shard) > self._per_shard:
                shard.popitem(last=False)
                evicted += 1

        if evicted:
            with self._stats_lock:
                self._evictions += evicted

    def __len__(self) -> int:
        return sum(len(s) for s in self._shards)

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            return {
                "entries": len(self),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "cooldown_seconds": self._config.cooldown_seconds,
            }


class RedisAlertDedupCache:
    """Variante compartida entre procesos (SET key ts EX ttl).

    Si Redis falla se permite el intento (fail open): el guard sigue
    impidiendo duplicados.
    """

    KEY_PREFIX = "wq:alert-cooldown:"

    def __init__(self, redis_client: "redis.Redis", cooldown_seconds: int = 300):
        self._redis = redis_client
        self._ttl = int(cooldown_seconds)
        self._stats_lock = threading.Lock()
        self._total_checked = 0
        self._suppressed = 0
        self._errors = 0

    @classmethod
    def from_url(cls, url: str, cooldown_seconds: int = 300) -> "RedisAlertDedupCache":
        client = redis.Redis.from_url(url, socket_timeout=1.0, socket_connect_timeout=1.0)
        return cls(client, cooldown_seconds=cooldown_seconds)

    def should_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> bool:
        with self._stats_lock:
            self._total_checked += 1
        try:
            exists = self._redis.exists(f"{self.KEY_PREFIX}{_key(device_id, parameter)}")
        except redis.RedisError as e:
            with self._stats_lock:
                self._errors += 1
            logger.warning("[ALERT_DEDUP] redis_error device=%s param=%s err=%s", device_id, parameter.value, e)
            return True
        if exists:
            with self._stats_lock:
                self._suppressed += 1
            return False
        return True

    def record_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> None:
        try:
            self._redis.set(
                f"{self.KEY_PREFIX}{_key(device_id, parameter)}",
                str(now.timestamp()),
                ex=self._ttl,
            )
        except redis.RedisError as e:
            with self._stats_lock:
                self._errors += 1
            logger.warning("[ALERT_DEDUP] redis_error on record device=%s err=%s", device_id, e)

    @property
    def stats(self) -> dict:
        with self._stats_lock:
            return {
                "backend": "redis",
                "total_checked": self._total_checked,
                "suppressed": self._suppressed,
                "errors": self._errors,
                "cooldown_seconds": self._ttl,
            }


class DisabledDedupCache:
    """Sin cache: cada violación llega al guard."""

    def should_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> bool:
        return True

    def record_attempt(self, device_id: str, parameter: Parameter, now: datetime) -> None:
        return None

    @property
    def stats(self) -> dict:
        return {"backend": "disabled"}
