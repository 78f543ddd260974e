"""Tests del coordinador de ingesta: flujo completo de una lectura."""

import time
from datetime import timedelta
from unittest.mock import MagicMock

from conftest import NOW, make_reading
from wq_ingest.alerts.dedup_cache import DisabledDedupCache
from wq_ingest.alerts.guard import AlertGuard
from wq_ingest.domain.alert import Severity
from wq_ingest.domain.device import DeviceStatus
from wq_ingest.domain.events import (
    DeviceHeartbeat,
    DeviceRegistration,
    DeviceStatusReport,
    Parameter,
    UnknownEvent,
)
from wq_ingest.notifications.recipients import RecipientResolver, parse_recipient
from wq_ingest.pipeline.coordinator import CoordinatorConfig
from wq_ingest.pipeline.outcome import EventState
from wq_ingest.resilience.errors import StoreUnavailable
from wq_ingest.resilience.retry import RetryConfig
from wq_ingest.resilience.timeouts import StoreCallRunner


def _config(**overrides):
    values = dict(
        num_workers=2,
        queue_size=100,
        guard_retry=RetryConfig(max_attempts=3, base_delay=0.01, jitter=False, retryable_exceptions=(StoreUnavailable,)),
        shutdown_grace_seconds=1.0,
    )
    values.update(overrides)
    return CoordinatorConfig(**values)


# =============================================================================
# ESCENARIOS DE ALERTA
# =============================================================================

class TestAlertFlow:

    def test_new_violation_creates_alert_and_notifies(self, coordinator, alert_store, dispatcher):
        outcome = coordinator.process(make_reading(value=9.2), now=NOW)

        assert outcome.state == EventState.DONE
        assert outcome.path == [
            EventState.RECEIVED,
            EventState.VALIDATED,
            EventState.EVALUATED,
            EventState.GUARD_CHECKED,
            EventState.DISPATCHED,
            EventState.DONE,
        ]
        assert outcome.severity == Severity.CRITICAL
        assert outcome.alert_created is True

        active = alert_store.list_active("WQ-001")
        assert len(active) == 1
        assert active[0].severity == Severity.CRITICAL
        assert dispatcher.queue_depth == 1

    def test_repeat_within_cooldown_is_suppressed(self, coordinator, alert_store, dispatcher):
        coordinator.process(make_reading(value=9.2), now=NOW)

        later = NOW + timedelta(seconds=10)
        outcome = coordinator.process(make_reading(value=9.3, timestamp=later), now=later)

        assert EventState.DEDUPLICATED in outcome.path
        assert EventState.GUARD_CHECKED not in outcome.path
        assert outcome.state == EventState.DONE
        assert alert_store.list_active("WQ-001")[0].occurrence_count == 1
        assert dispatcher.queue_depth == 1

    def test_after_cooldown_reinforces_without_notifying(self, coordinator, alert_store, dispatcher):
        first = coordinator.process(make_reading(value=9.2), now=NOW)
        coordinator.process(make_reading(value=9.3, timestamp=NOW + timedelta(seconds=10)), now=NOW + timedelta(seconds=10))

        later = NOW + timedelta(minutes=6)
        outcome = coordinator.process(make_reading(value=9.1, timestamp=later), now=later)

        assert outcome.alert_created is False
        assert outcome.alert_id == first.alert_id
        assert EventState.DISPATCHED not in outcome.path

        alert = alert_store.get(first.alert_id)
        assert alert.occurrence_count == 2
        assert alert.current_value == 9.1
        assert dispatcher.queue_depth == 1

    def test_disabled_cache_gives_same_alert_state(self, coordinator_factory, alert_store, dispatcher):
        coordinator = coordinator_factory(dedup_cache=DisabledDedupCache())

        for offset, value in [(0, 9.2), (10, 9.3), (360, 9.1)]:
            at = NOW + timedelta(seconds=offset)
            coordinator.process(make_reading(value=value, timestamp=at), now=at)

        active = alert_store.list_active("WQ-001")
        assert len(active) == 1
        assert active[0].occurrence_count == 3
        assert dispatcher.queue_depth == 1

    def test_normal_reading_is_done_without_alert(self, coordinator, alert_store):
        outcome = coordinator.process(make_reading(value=7.2), now=NOW)

        assert outcome.path == [EventState.RECEIVED, EventState.VALIDATED, EventState.EVALUATED, EventState.DONE]
        assert alert_store.list_active() == []

    def test_parameters_are_independent(self, coordinator, alert_store):
        coordinator.process(make_reading(value=9.2), now=NOW)
        coordinator.process(make_reading(parameter=Parameter.TURBIDITY, value=12.0), now=NOW)

        assert {a.parameter for a in alert_store.list_active("WQ-001")} == {Parameter.PH, Parameter.TURBIDITY}


# =============================================================================
# ADVISORY
# =============================================================================

class TestAdvisory:

    def test_advisory_skipped_by_default(self, coordinator, alert_store):
        outcome = coordinator.process(make_reading(value=8.4), now=NOW)

        assert outcome.severity == Severity.ADVISORY
        assert outcome.state == EventState.DONE
        assert alert_store.list_active() == []

    def test_advisory_alerts_when_enabled(self, coordinator_factory, alert_store):
        coordinator = coordinator_factory(config=_config(advisory_alerts_enabled=True))

        outcome = coordinator.process(make_reading(value=8.4), now=NOW)

        assert outcome.alert_created is True
        assert alert_store.list_active()[0].severity == Severity.ADVISORY


# =============================================================================
# RECHAZOS Y STORE CAÍDO
# =============================================================================

class TestRejectAndDrop:

    def test_out_of_range_rejected_before_liveness(self, coordinator, tracker):
        outcome = coordinator.process(make_reading(value=15.0), now=NOW)

        assert outcome.path == [EventState.RECEIVED, EventState.REJECTED]
        assert "valid range" in outcome.detail
        assert tracker.get("WQ-001") is None
        assert coordinator.stats["counters"]["rejections"]["out_of_range"] == 1

    def test_sensor_invalid_flag_rejected(self, coordinator):
        outcome = coordinator.process(make_reading(value=9.5, valid=False), now=NOW)

        assert outcome.state == EventState.REJECTED

    def test_store_unavailable_drops_after_bounded_retries(self, coordinator_factory, dedup_cache, tracker):
        store = MagicMock()
        store.find_or_create_active.side_effect = StoreUnavailable("alert_store", "connection refused")
        coordinator = coordinator_factory(guard=AlertGuard(store))

        outcome = coordinator.process(make_reading(value=9.2), now=NOW)

        assert outcome.state == EventState.DROPPED
        assert store.find_or_create_active.call_count == 3
        # sin registro en cache: el siguiente intento no queda suprimido
        assert dedup_cache.should_attempt("WQ-001", Parameter.PH, NOW) is True
        assert tracker.get("WQ-001") is not None
        assert coordinator.stats["guard_retry"]["total_failures"] == 1

    def test_transient_store_error_recovers(self, coordinator_factory, alert_store):
        failures = [StoreUnavailable("alert_store", "timeout")]

        def flaky(*args, **kwargs):
            if failures:
                raise failures.pop()
            return alert_store.find_or_create_active(*args, **kwargs)

        store = MagicMock()
        store.find_or_create_active.side_effect = flaky
        coordinator = coordinator_factory(guard=AlertGuard(store))

        outcome = coordinator.process(make_reading(value=9.2), now=NOW)

        assert outcome.state == EventState.DONE
        assert outcome.alert_created is True
        assert store.find_or_create_active.call_count == 2

    def test_timed_out_create_that_committed_still_notifies(self, coordinator_factory, alert_store, dispatcher):
        calls = {"n": 0}

        def commit_then_hang(*args, **kwargs):
            calls["n"] += 1
            result = alert_store.find_or_create_active(*args, **kwargs)
            if calls["n"] == 1:
                time.sleep(0.2)
            return result

        store = MagicMock()
        store.find_or_create_active.side_effect = commit_then_hang
        runner = StoreCallRunner("alert_store", timeout_seconds=0.05, max_workers=2)
        coordinator = coordinator_factory(guard=AlertGuard(store, store_runner=runner))

        try:
            outcome = coordinator.process(make_reading(value=9.2), now=NOW)
        finally:
            runner.shutdown()

        assert outcome.alert_created is True
        assert EventState.DISPATCHED in outcome.path
        assert dispatcher.queue_depth == 1
        active = alert_store.list_active("WQ-001")
        assert len(active) == 1
        assert active[0].alert_id == outcome.alert_id
        assert active[0].occurrence_count == 1

    def test_unknown_event_rejected(self, coordinator):
        outcome = coordinator.process(UnknownEvent(source="mqtt", reason="invalid JSON"), now=NOW)

        assert outcome.state == EventState.REJECTED
        assert outcome.device_id is None
        assert coordinator.stats["counters"]["unknown"]["total"] == 1


# =============================================================================
# DESTINATARIOS
# =============================================================================

class TestRecipients:

    def test_no_matching_recipient_skips_dispatch(self, coordinator_factory, dispatcher, alert_store):
        resolver = RecipientResolver([parse_recipient({"email": "crit@example.org", "alertSeverities": ["Critical"]})])
        coordinator = coordinator_factory(recipients=resolver)

        outcome = coordinator.process(make_reading(value=8.7), now=NOW)

        assert outcome.alert_created is True
        assert EventState.DISPATCHED not in outcome.path
        assert dispatcher.queue_depth == 0
        assert len(alert_store.list_active()) == 1

    def test_matching_recipients_travel_with_task(self, coordinator_factory, dispatcher, backend):
        resolver = RecipientResolver([parse_recipient({"email": "crit@example.org"})])
        coordinator = coordinator_factory(recipients=resolver)

        coordinator.process(make_reading(value=9.2), now=NOW)
        dispatcher.drain()

        recipients, payload = backend.sent[0]
        assert recipients == ("crit@example.org",)
        assert payload["severity"] == "Critical"
        assert payload["deviceId"] == "WQ-001"


# =============================================================================
# EVENTOS DE DISPOSITIVO
# =============================================================================

class TestDeviceEvents:

    def test_liveness_uses_server_time(self, coordinator, tracker):
        coordinator.process(make_reading(value=7.0, timestamp=NOW - timedelta(hours=1)), now=NOW)

        assert tracker.get("WQ-001").last_seen == NOW

    def test_registration(self, coordinator, tracker, device_store):
        event = DeviceRegistration(device_id="WQ-007", timestamp=NOW, name="Tank 7", firmware_version="1.2.0")

        outcome = coordinator.process(event, now=NOW)

        assert outcome.state == EventState.DONE
        assert device_store.get_status("WQ-007") == (DeviceStatus.ONLINE, NOW)

    def test_status_report_offline(self, coordinator, tracker):
        coordinator.process(DeviceHeartbeat(device_id="WQ-001", timestamp=NOW), now=NOW)
        coordinator.process(DeviceStatusReport(device_id="WQ-001", online=False, timestamp=NOW), now=NOW)

        assert tracker.get("WQ-001").status == DeviceStatus.OFFLINE

    def test_invalid_device_id_rejected(self, coordinator, tracker):
        outcome = coordinator.process(DeviceHeartbeat(device_id="bad id!", timestamp=NOW), now=NOW)

        assert outcome.state == EventState.REJECTED
        assert len(tracker) == 0


# =============================================================================
# WORKERS Y APAGADO
# =============================================================================

class TestWorkers:

    def test_submit_rejected_when_queue_full(self, coordinator_factory):
        coordinator = coordinator_factory(config=_config(num_workers=1, queue_size=2))

        assert coordinator.submit(make_reading()) is True
        assert coordinator.submit(make_reading()) is True
        assert coordinator.submit(make_reading()) is False
        assert coordinator.stats["counters"]["submit"]["rejected_full"] == 1

    def test_stop_discards_queued_events(self, coordinator):
        coordinator.submit(make_reading(device_id="WQ-001"))
        coordinator.submit(make_reading(device_id="WQ-002"))

        result = coordinator.stop(grace_seconds=0)

        assert result == {"discarded_events": 2, "abandoned_notifications": 0}
        assert coordinator.queue_depth == 0
        assert coordinator.submit(make_reading()) is False

    def test_workers_process_submitted_events(self, coordinator, alert_store, backend):
        coordinator.start()
        try:
            for i in range(10):
                assert coordinator.submit(make_reading(device_id=f"WQ-{i:03d}", value=9.2)) is True

            deadline = time.monotonic() + 5
            while time.monotonic() < deadline:
                done = coordinator.stats["counters"].get("outcomes", {}).get("Done", 0)
                if done == 10 and len(backend.sent) == 10:
                    break
                time.sleep(0.01)
        finally:
            result = coordinator.stop(grace_seconds=2)

        assert len(alert_store.list_active()) == 10
        assert len(backend.sent) == 10
        assert result["discarded_events"] == 0
        assert coordinator.accepting is False
