"""Entrega de notificaciones de alertas."""

from .backends import HttpPushBackend, LoggingBackend, NotificationBackend
from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpen, CircuitState
from .dispatcher import DispatcherConfig, NotificationDispatcher, NotificationTask
from .recipients import (
    RecipientConfigError,
    RecipientPreference,
    RecipientResolver,
    load_recipients,
)

__all__ = [
    "HttpPushBackend",
    "LoggingBackend",
    "NotificationBackend",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpen",
    "CircuitState",
    "DispatcherConfig",
    "NotificationDispatcher",
    "NotificationTask",
    "RecipientConfigError",
    "RecipientPreference",
    "RecipientResolver",
    "load_recipients",
]
