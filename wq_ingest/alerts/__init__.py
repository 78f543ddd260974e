"""Alertas: cache de cooldown, guard atómico y stores."""

from .dedup_cache import (
    AlertDedupCache,
    CooldownCache,
    DedupCacheConfig,
    DisabledDedupCache,
    RedisAlertDedupCache,
)
from .guard import AlertGuard
from .messages import build_alert_message
from .sql_store import SqlAlertStore
from .store import AlertStore, InMemoryAlertStore

__all__ = [
    "AlertDedupCache",
    "CooldownCache",
    "DedupCacheConfig",
    "DisabledDedupCache",
    "RedisAlertDedupCache",
    "AlertGuard",
    "build_alert_message",
    "SqlAlertStore",
    "AlertStore",
    "InMemoryAlertStore",
]
