"""Cableado del servicio a partir de Settings.

build_pipeline() arma todos los componentes (stores, tracker, cache,
guard, dispatcher, coordinador, sweeper, receptor MQTT) y devuelve un
PipelineService con start/stop. No hay singletons en el hot path: cada
componente recibe sus dependencias.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import text
from sqlalchemy.engine import Engine

from common.config import Settings, get_settings
from common.db import build_engine

from .alerts.dedup_cache import AlertDedupCache, CooldownCache, DedupCacheConfig, RedisAlertDedupCache
from .alerts.guard import AlertGuard
from .alerts.sql_store import SqlAlertStore
from .alerts.store import AlertStore
from .devices.device_store import DeviceStore, SqlDeviceStore
from .devices.offline_sweeper import OfflineSweeper
from .devices.state_tracker import DeviceStateTracker, DeviceTrackerConfig
from .notifications.backends import HttpPushBackend, LoggingBackend, NotificationBackend
from .notifications.dispatcher import DispatcherConfig, NotificationDispatcher
from .notifications.recipients import RecipientResolver, load_recipients
from .pipeline.coordinator import CoordinatorConfig, IngestionCoordinator
from .resilience.timeouts import StoreCallRunner
from .storage_schema import ensure_schema
from .thresholds.evaluator import ThresholdEvaluator
from .thresholds.loader import load_thresholds
from .transports.mqtt_receiver import MQTTDeviceReceiver
from .validation.validator import ReadingValidator, ValidatorConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineService:
    coordinator: IngestionCoordinator
    alert_store: AlertStore
    device_store: DeviceStore
    sweeper: OfflineSweeper
    engine: Optional[Engine] = None
    mqtt_receiver: Optional[MQTTDeviceReceiver] = None
    runners: list[StoreCallRunner] = field(default_factory=list)
    started: bool = False

    def start(self) -> None:
        if self.started:
            return
        self.coordinator.start()
        self.sweeper.start()
        if self.mqtt_receiver is not None and not self.mqtt_receiver.start():
            logger.warning("[SERVICE] MQTT receiver not connected yet; HTTP ingest still available")
        self.started = True
        logger.info("[SERVICE] pipeline started")

    def stop(self) -> dict:
        if not self.started:
            return {}
        if self.mqtt_receiver is not None:
            self.mqtt_receiver.stop()
        self.sweeper.stop()
        summary = self.coordinator.stop()
        for runner in self.runners:
            runner.shutdown()
        self.started = False
        logger.info("[SERVICE] pipeline stopped %s", summary)
        return summary

    def store_health(self) -> dict:
        if self.engine is None:
            return {"status": "in-memory"}
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("[SERVICE] store health check failed: %s", type(e).__name__)
            return {"status": "error"}
        return {"status": "ok"}


def _build_dedup_cache(settings: Settings) -> CooldownCache:
    config = DedupCacheConfig.from_env()
    if settings.redis_url:
        logger.info("[SERVICE] alert cooldown cache backed by Redis")
        return RedisAlertDedupCache.from_url(settings.redis_url, cooldown_seconds=int(config.cooldown_seconds))
    return AlertDedupCache(config)


def _quiet_hours_tz() -> tzinfo:
    name = os.getenv("WQ_QUIET_HOURS_TZ", "UTC").strip()
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _build_backend() -> NotificationBackend:
    backend = HttpPushBackend.from_env()
    if backend is None:
        logger.info("[SERVICE] using logging notification backend")
        return LoggingBackend()
    return backend


def build_pipeline(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    backend: Optional[NotificationBackend] = None,
) -> PipelineService:
    """Arma el pipeline completo. Errores de configuración abortan aquí."""
    settings = settings or get_settings()

    thresholds = load_thresholds(settings.thresholds_file)
    evaluator = ThresholdEvaluator(thresholds.bands, thresholds.advisory_margin)

    preferences = load_recipients(settings.recipients_file)
    resolver = RecipientResolver(preferences, tz=_quiet_hours_tz())

    engine = engine or build_engine(settings.database_url)
    ensure_schema(engine)

    alert_runner = StoreCallRunner.from_env("alert_store")
    device_runner = StoreCallRunner.from_env("device_store")

    alert_store = SqlAlertStore(engine)
    device_store = SqlDeviceStore(engine)

    tracker = DeviceStateTracker(device_store, DeviceTrackerConfig.from_env(), store_runner=device_runner)
    guard = AlertGuard(alert_store, store_runner=alert_runner)
    dispatcher = NotificationDispatcher(backend or _build_backend(), DispatcherConfig.from_env())

    coordinator_config = CoordinatorConfig.from_env()
    coordinator_config.num_workers = settings.ingest_workers
    coordinator_config.queue_size = settings.ingest_queue_size
    coordinator_config.advisory_alerts_enabled = settings.advisory_alerts_enabled

    coordinator = IngestionCoordinator(
        validator=ReadingValidator(ValidatorConfig.from_env()),
        tracker=tracker,
        evaluator=evaluator,
        dedup_cache=_build_dedup_cache(settings),
        guard=guard,
        dispatcher=dispatcher,
        recipients=resolver,
        config=coordinator_config,
    )

    mqtt_receiver = None
    if settings.mqtt_broker_host:
        mqtt_receiver = MQTTDeviceReceiver(
            coordinator.submit,
            broker_host=settings.mqtt_broker_host,
            broker_port=settings.mqtt_broker_port,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
        )

    logger.info(
        "[SERVICE] pipeline built workers=%d queue=%d bands=%s recipients=%d mqtt=%s",
        settings.ingest_workers,
        settings.ingest_queue_size,
        ",".join(p.value for p in thresholds.bands),
        len(preferences),
        settings.mqtt_broker_host or "disabled",
    )

    return PipelineService(
        coordinator=coordinator,
        alert_store=alert_store,
        device_store=device_store,
        sweeper=OfflineSweeper.from_env(tracker),
        engine=engine,
        mqtt_receiver=mqtt_receiver,
        runners=[alert_runner, device_runner],
    )
