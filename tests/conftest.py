"""Fixtures compartidas."""

from datetime import datetime, timezone

import pytest

from wq_ingest.alerts.dedup_cache import AlertDedupCache, DedupCacheConfig
from wq_ingest.alerts.guard import AlertGuard
from wq_ingest.alerts.store import InMemoryAlertStore
from wq_ingest.devices.device_store import InMemoryDeviceStore
from wq_ingest.devices.state_tracker import DeviceStateTracker, DeviceTrackerConfig
from wq_ingest.domain.events import Parameter, Reading
from wq_ingest.notifications.backends import LoggingBackend
from wq_ingest.notifications.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from wq_ingest.notifications.dispatcher import DispatcherConfig, NotificationDispatcher
from wq_ingest.pipeline.coordinator import CoordinatorConfig, IngestionCoordinator
from wq_ingest.resilience.errors import StoreUnavailable
from wq_ingest.resilience.retry import RetryConfig
from wq_ingest.thresholds.evaluator import ThresholdEvaluator
from wq_ingest.thresholds.loader import DEFAULT_BANDS
from wq_ingest.validation.validator import ReadingValidator

NOW = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeMonotonic:
    """Reloj monotónico controlado por el test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_reading(device_id="WQ-001", parameter=Parameter.PH, value=7.0, valid=True, timestamp=NOW):
    return Reading(
        device_id=device_id,
        parameter=parameter,
        value=value,
        validity_flag=valid,
        timestamp=timestamp,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def device_store() -> InMemoryDeviceStore:
    return InMemoryDeviceStore()


@pytest.fixture
def tracker(device_store) -> DeviceStateTracker:
    return DeviceStateTracker(device_store, DeviceTrackerConfig(shards=4))


@pytest.fixture
def dedup_cache() -> AlertDedupCache:
    return AlertDedupCache(DedupCacheConfig(cooldown_seconds=300, max_entries=1000, shards=4))


@pytest.fixture
def backend() -> LoggingBackend:
    return LoggingBackend()


@pytest.fixture
def dispatcher(backend, monotonic) -> NotificationDispatcher:
    breaker = CircuitBreaker("test-notify", CircuitBreakerConfig(), clock=monotonic)
    return NotificationDispatcher(backend, DispatcherConfig(num_workers=1), breaker=breaker, clock=monotonic)


@pytest.fixture
def coordinator_factory(alert_store, tracker, dedup_cache, dispatcher):
    """Construye un coordinador; los argumentos reemplazan componentes."""

    def _build(**overrides) -> IngestionCoordinator:
        config = overrides.pop("config", None) or CoordinatorConfig(
            num_workers=2,
            queue_size=100,
            guard_retry=RetryConfig(
                max_attempts=3, base_delay=0.01, jitter=False, retryable_exceptions=(StoreUnavailable,)
            ),
            shutdown_grace_seconds=1.0,
        )
        components = dict(
            validator=ReadingValidator(),
            tracker=tracker,
            evaluator=ThresholdEvaluator(DEFAULT_BANDS),
            dedup_cache=dedup_cache,
            guard=AlertGuard(alert_store),
            dispatcher=dispatcher,
            config=config,
            clock=lambda: NOW,
            sleep=lambda _s: None,
        )
        components.update(overrides)
        return IngestionCoordinator(**components)

    return _build


@pytest.fixture
def coordinator(coordinator_factory) -> IngestionCoordinator:
    return coordinator_factory()
