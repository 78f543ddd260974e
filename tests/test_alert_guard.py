"""Tests del AlertGuard y los AlertStore.

Invariante central: para cada (device_id, parameter) existe como máximo
una alerta Active, incluso con workers concurrentes.
"""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from common.db import build_engine
from conftest import NOW
from wq_ingest.alerts.guard import AlertGuard
from wq_ingest.alerts.sql_store import SqlAlertStore
from wq_ingest.alerts.store import InMemoryAlertStore
from wq_ingest.domain.alert import AlertStatus, Severity
from wq_ingest.domain.events import Parameter
from wq_ingest.resilience.errors import StoreUnavailable
from wq_ingest.resilience.timeouts import StoreCallRunner
from wq_ingest.storage_schema import ensure_schema


@pytest.fixture
def sql_store(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'alerts.db'}")
    ensure_schema(engine)
    yield SqlAlertStore(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, sql_store):
    if request.param == "memory":
        return InMemoryAlertStore()
    return sql_store


# =============================================================================
# IDEMPOTENCIA Y REFUERZO
# =============================================================================

class TestEnsureActiveAlert:

    def test_creates_then_reinforces(self, store):
        guard = AlertGuard(store)

        first, created_first = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
        second, created_second = guard.ensure_active_alert(
            "WQ-001", Parameter.PH, Severity.CRITICAL, 9.1, 9.0, NOW + timedelta(minutes=6)
        )

        assert created_first is True
        assert created_second is False
        assert second.alert_id == first.alert_id
        assert second.occurrence_count == 2
        assert second.current_value == 9.1

        stored = store.get(first.alert_id)
        assert stored.occurrence_count == 2
        assert stored.current_value == 9.1
        assert stored.status == AlertStatus.ACTIVE
        assert len(store.list_active("WQ-001")) == 1

    def test_severity_escalates(self, store):
        guard = AlertGuard(store)
        guard.ensure_active_alert("WQ-001", Parameter.TDS, Severity.WARNING, 600.0, 500.0, NOW)
        record, created = guard.ensure_active_alert("WQ-001", Parameter.TDS, Severity.CRITICAL, 1200.0, 1000.0, NOW)

        assert created is False
        assert record.severity == Severity.CRITICAL
        assert record.threshold_value == 1000.0
        assert record.message.startswith("Critical: TDS exceeds threshold")

    def test_severity_never_downgrades(self, store):
        guard = AlertGuard(store)
        guard.ensure_active_alert("WQ-001", Parameter.TDS, Severity.CRITICAL, 1200.0, 1000.0, NOW)
        record, _ = guard.ensure_active_alert("WQ-001", Parameter.TDS, Severity.WARNING, 600.0, 500.0, NOW)

        assert record.severity == Severity.CRITICAL
        assert record.threshold_value == 1000.0
        assert record.current_value == 600.0

    def test_message_text(self, store):
        guard = AlertGuard(store)
        record, _ = guard.ensure_active_alert("WQ-001", Parameter.TURBIDITY, Severity.CRITICAL, 12.4, 10.0, NOW)

        assert record.message == "Critical: Turbidity exceeds threshold. Current: 12.40 NTU, Threshold: 10 NTU"

    def test_ph_message_says_outside_safe_range(self, store):
        guard = AlertGuard(store)
        record, _ = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.WARNING, 6.2, 6.5, NOW)

        assert record.message == "Warning: pH outside safe range. Current: 6.20, Threshold: 6.5"

    def test_resolved_alert_then_new_violation_creates_new_record(self, store):
        guard = AlertGuard(store)
        first, _ = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
        store.set_status(first.alert_id, AlertStatus.RESOLVED, NOW)

        second, created = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.3, 9.0, NOW)

        assert created is True
        assert second.alert_id != first.alert_id
        assert store.get(first.alert_id).status == AlertStatus.RESOLVED
        assert [a.alert_id for a in store.list_active()] == [second.alert_id]

    def test_acknowledged_alert_is_not_active(self, store):
        guard = AlertGuard(store)
        first, _ = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
        store.set_status(first.alert_id, AlertStatus.ACKNOWLEDGED, NOW)

        assert store.list_active("WQ-001") == []

    def test_set_status_unknown_alert(self, store):
        assert store.set_status("does-not-exist", AlertStatus.RESOLVED, NOW) is None

    def test_none_severity_rejected(self, store):
        guard = AlertGuard(store)
        with pytest.raises(ValueError):
            guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.NONE, 7.0, None, NOW)


# =============================================================================
# CONCURRENCIA
# =============================================================================

class TestSingleActiveInvariant:

    def test_concurrent_workers_create_exactly_one_alert(self, store):
        guard = AlertGuard(store)
        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        errors = []

        def worker():
            barrier.wait()
            try:
                results.append(
                    guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
                )
            except Exception as e:  # pragma: no cover - se reporta abajo
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert sum(1 for _, created in results if created) == 1
        assert len({record.alert_id for record, _ in results}) == 1

        active = store.list_active("WQ-001")
        assert len(active) == 1
        assert active[0].occurrence_count == workers
        assert store.find_duplicate_active() == []

    def test_sql_insert_conflict_reinforces_winner(self, sql_store):
        guard = AlertGuard(sql_store)
        winner, _ = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)

        # Simula que otro worker insertó entre el SELECT y el INSERT.
        real_find = sql_store._find_active
        calls = {"n": 0}

        def racing_find(conn, device_id, parameter):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_find(conn, device_id, parameter)

        sql_store._find_active = racing_find
        record, created = guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.4, 9.0, NOW)

        assert created is False
        assert record.alert_id == winner.alert_id
        assert record.occurrence_count == 2
        assert calls["n"] == 2
        assert len(sql_store.list_active()) == 1

    def test_retry_with_same_alert_id_still_reports_created(self, store):
        guard = AlertGuard(store)
        first, created_first = guard.ensure_active_alert(
            "WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW, alert_id="alert-token-1"
        )
        again, created_again = guard.ensure_active_alert(
            "WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW, alert_id="alert-token-1"
        )

        assert created_first is True
        assert created_again is True
        assert again.alert_id == first.alert_id == "alert-token-1"
        # el reintento no cuenta como ocurrencia nueva
        assert store.get("alert-token-1").occurrence_count == 1
        assert len(store.list_active("WQ-001")) == 1


# =============================================================================
# STORE CAÍDO
# =============================================================================

class TestStoreUnavailable:

    def test_timeout_raises_store_unavailable(self):
        slow_store = MagicMock()
        slow_store.find_or_create_active.side_effect = lambda *a, **kw: time.sleep(0.5)
        runner = StoreCallRunner("alert_store", timeout_seconds=0.05, max_workers=1)
        guard = AlertGuard(slow_store, store_runner=runner)

        try:
            with pytest.raises(StoreUnavailable, match="timeout"):
                guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
        finally:
            runner.shutdown()

    def test_connection_error_raises_store_unavailable(self):
        broken_store = MagicMock()
        broken_store.find_or_create_active.side_effect = ConnectionRefusedError("db down")
        runner = StoreCallRunner("alert_store", timeout_seconds=1.0, max_workers=1)
        guard = AlertGuard(broken_store, store_runner=runner)

        try:
            with pytest.raises(StoreUnavailable) as exc_info:
                guard.ensure_active_alert("WQ-001", Parameter.PH, Severity.CRITICAL, 9.2, 9.0, NOW)
        finally:
            runner.shutdown()

        assert exc_info.value.store == "alert_store"
