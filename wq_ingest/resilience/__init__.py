"""Módulo de resiliencia.

Contiene:
- StoreUnavailable: fallo transitorio de un store
- RetryConfig / RetryExecutor: retry con backoff exponencial acotado
- StoreCallRunner: llamadas a store con timeout
"""

from .errors import StoreUnavailable
from .retry import RetryConfig, RetryExecutor
from .timeouts import DEFAULT_STORE_TIMEOUT, StoreCallRunner

__all__ = [
    "StoreUnavailable",
    "RetryConfig",
    "RetryExecutor",
    "DEFAULT_STORE_TIMEOUT",
    "StoreCallRunner",
]
