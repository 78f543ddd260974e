"""Llamadas a stores con timeout.

Cada llamada corre en un pool acotado y se espera como máximo
`timeout_seconds`. Un timeout o error de conexión se traduce a
StoreUnavailable. El hilo que quedó colgado no se cancela (no hay forma
segura en Python), pero el worker de ingesta ya no lo espera.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeout

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT = 3.0
DEFAULT_POOL_SIZE = 8

# Errores de infraestructura que se consideran "store caído".
TRANSIENT_ERRORS = (OperationalError, PoolTimeout, ConnectionError, TimeoutError, OSError)


class StoreCallRunner:
    """Ejecuta llamadas bloqueantes a un store con timeout acotado."""

    def __init__(
        self,
        store_name: str,
        timeout_seconds: float = DEFAULT_STORE_TIMEOUT,
        max_workers: int = DEFAULT_POOL_SIZE,
    ):
        self._store_name = store_name
        self._timeout = timeout_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"{store_name}-call",
        )

    @classmethod
    def from_env(cls, store_name: str) -> "StoreCallRunner":
        return cls(
            store_name=store_name,
            timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", str(DEFAULT_STORE_TIMEOUT))),
            max_workers=int(os.getenv("STORE_CALL_POOL_SIZE", str(DEFAULT_POOL_SIZE))),
        )

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def call(self, func: Callable[[], T], timeout: Optional[float] = None) -> T:
        limit = self._timeout if timeout is None else timeout
        future = self._pool.submit(func)
        try:
            return future.result(timeout=limit)
        except FutureTimeout:
            future.cancel()
            raise StoreUnavailable(self._store_name, f"timeout after {limit:.1f}s") from None
        except StoreUnavailable:
            raise
        except DBAPIError as e:
            if e.connection_invalidated or isinstance(e, OperationalError):
                raise StoreUnavailable(self._store_name, str(e.orig)[:200]) from e
            raise
        except TRANSIENT_ERRORS as e:
            raise StoreUnavailable(self._store_name, str(e)[:200]) from e

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
