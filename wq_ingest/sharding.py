"""Particionado por clave para estructuras compartidas del hot path.

Un solo mutex global se vuelve cuello de botella con flotas de cientos de
dispositivos; cada shard tiene su propio lock.
"""

from __future__ import annotations

import threading
import zlib

DEFAULT_SHARDS = 16


def shard_index(key: str, shards: int) -> int:
    """Índice estable entre procesos (hash() de str está salteado)."""
    return zlib.crc32(key.encode("utf-8")) % shards


class ShardedLocks:
    def __init__(self, shards: int = DEFAULT_SHARDS):
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._locks = [threading.Lock() for _ in range(shards)]

    def __len__(self) -> int:
        return len(self._locks)

    def index(self, key: str) -> int:
        return shard_index(key, len(self._locks))

    def for_key(self, key: str) -> threading.Lock:
        return self._locks[self.index(key)]

    def at(self, index: int) -> threading.Lock:
        return self._locks[index]
