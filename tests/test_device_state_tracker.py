"""Tests del tracker Online/Offline, el throttle de escrituras y el sweeper."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

from conftest import NOW
from wq_ingest.devices.device_store import InMemoryDeviceStore
from wq_ingest.devices.offline_sweeper import OfflineSweeper
from wq_ingest.devices.state_tracker import DeviceStateTracker, DeviceTrackerConfig
from wq_ingest.domain.device import DeviceStatus
from wq_ingest.resilience.errors import StoreUnavailable


class FlakyDeviceStore(InMemoryDeviceStore):
    """Falla mientras `down` sea True, o las próximas `failures` llamadas."""

    def __init__(self):
        super().__init__()
        self.down = False
        self.failures = 0

    def upsert_status(self, device_id, status, last_seen):
        if self.failures:
            self.failures -= 1
            raise StoreUnavailable("device_store", "timeout")
        if self.down:
            raise StoreUnavailable("device_store", "connection refused")
        super().upsert_status(device_id, status, last_seen)


class BlockingDeviceStore(InMemoryDeviceStore):
    """Con `armed`, retiene la próxima escritura de `block_status` hasta `release`."""

    def __init__(self, block_status):
        super().__init__()
        self.block_status = block_status
        self.armed = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def upsert_status(self, device_id, status, last_seen):
        if self.armed and status == self.block_status:
            self.armed = False
            self.entered.set()
            assert self.release.wait(timeout=5)
        super().upsert_status(device_id, status, last_seen)


# =============================================================================
# THROTTLE DE PERSISTENCIA
# =============================================================================

class TestRecordSeen:

    def test_first_sighting_is_online_and_persisted(self, tracker, device_store):
        previous, current = tracker.record_seen("WQ-001", NOW)

        assert previous is None
        assert current == DeviceStatus.ONLINE
        assert device_store.get_status("WQ-001") == (DeviceStatus.ONLINE, NOW)

    def test_hundred_readings_in_window_write_once(self, tracker, device_store):
        for i in range(100):
            tracker.record_seen("WQ-001", NOW + timedelta(seconds=i))

        assert len(device_store.writes_for("WQ-001")) == 1
        # last_seen en memoria sí avanza
        assert tracker.get("WQ-001").last_seen == NOW + timedelta(seconds=99)

    def test_writes_again_after_window(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)
        tracker.record_seen("WQ-001", NOW + timedelta(seconds=299))
        tracker.record_seen("WQ-001", NOW + timedelta(seconds=300))

        writes = device_store.writes_for("WQ-001")
        assert len(writes) == 2
        assert writes[-1][2] == NOW + timedelta(seconds=300)

    def test_concurrent_sightings_write_once(self, tracker, device_store):
        barrier = threading.Barrier(8)

        def worker(offset):
            barrier.wait()
            for i in range(20):
                tracker.record_seen("WQ-001", NOW + timedelta(seconds=offset + i))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(device_store.writes_for("WQ-001")) == 1

    def test_failed_persist_keeps_previous_persisted_at(self):
        store = FlakyDeviceStore()
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2), sleep=lambda _s: None)
        tracker.record_seen("WQ-001", NOW)

        store.down = True
        later = NOW + timedelta(seconds=400)
        previous, current = tracker.record_seen("WQ-001", later)

        state = tracker.get("WQ-001")
        assert current == DeviceStatus.ONLINE
        assert state.last_seen == later
        assert state.last_persisted_at == NOW
        assert tracker.stats["persist_failures"] == 1

        # la siguiente lectura reintenta la escritura
        store.down = False
        tracker.record_seen("WQ-001", later + timedelta(seconds=1))
        assert tracker.get("WQ-001").last_persisted_at == later + timedelta(seconds=1)

    def test_unexpected_store_error_does_not_propagate(self):
        store = MagicMock()
        store.upsert_status.side_effect = RuntimeError("boom")
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=1))

        assert tracker.record_seen("WQ-001", NOW) == (None, DeviceStatus.ONLINE)
        assert tracker.get("WQ-001").last_persisted_at is None

    def test_out_of_order_timestamp_does_not_move_last_seen_back(self, tracker):
        tracker.record_seen("WQ-001", NOW)
        tracker.record_seen("WQ-001", NOW - timedelta(seconds=30))

        assert tracker.get("WQ-001").last_seen == NOW


# =============================================================================
# SWEEP OFFLINE
# =============================================================================

class TestSweepOffline:

    def test_silent_device_goes_offline_and_persists_immediately(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)

        moved = tracker.sweep_offline(NOW + timedelta(minutes=11))

        assert moved == ["WQ-001"]
        assert tracker.get("WQ-001").status == DeviceStatus.OFFLINE
        assert device_store.get_status("WQ-001") == (DeviceStatus.OFFLINE, NOW)
        assert tracker.stats["offline_transitions"] == 1

    def test_exactly_at_timeout_stays_online(self, tracker):
        tracker.record_seen("WQ-001", NOW)

        assert tracker.sweep_offline(NOW + timedelta(seconds=600)) == []
        assert tracker.get("WQ-001").status == DeviceStatus.ONLINE

    def test_active_device_stays_online(self, tracker):
        tracker.record_seen("WQ-001", NOW)
        tracker.record_seen("WQ-002", NOW)
        tracker.record_seen("WQ-002", NOW + timedelta(minutes=9))

        moved = tracker.sweep_offline(NOW + timedelta(minutes=11))

        assert moved == ["WQ-001"]
        assert tracker.get("WQ-002").status == DeviceStatus.ONLINE

    def test_offline_device_not_swept_twice(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)
        tracker.sweep_offline(NOW + timedelta(minutes=11))

        assert tracker.sweep_offline(NOW + timedelta(minutes=20)) == []
        assert len(device_store.writes_for("WQ-001")) == 2

    def test_reading_after_offline_persists_online_without_throttle(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)
        tracker.sweep_offline(NOW + timedelta(minutes=11))

        previous, current = tracker.record_seen("WQ-001", NOW + timedelta(minutes=12))

        assert previous == DeviceStatus.OFFLINE
        assert current == DeviceStatus.ONLINE
        assert device_store.get_status("WQ-001")[0] == DeviceStatus.ONLINE

    def test_failed_offline_persist_keeps_device_online(self):
        store = FlakyDeviceStore()
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2), sleep=lambda _s: None)
        tracker.record_seen("WQ-001", NOW)

        store.down = True
        assert tracker.sweep_offline(NOW + timedelta(minutes=11)) == []
        assert tracker.get("WQ-001").status == DeviceStatus.ONLINE

        store.down = False
        assert tracker.sweep_offline(NOW + timedelta(minutes=12)) == ["WQ-001"]
        assert store.get_status("WQ-001")[0] == DeviceStatus.OFFLINE

    def test_offline_persist_retries_within_one_sweep(self):
        store = FlakyDeviceStore()
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2), sleep=lambda _s: None)
        tracker.record_seen("WQ-001", NOW)

        store.failures = 2
        assert tracker.sweep_offline(NOW + timedelta(minutes=11)) == ["WQ-001"]

        assert store.get_status("WQ-001") == (DeviceStatus.OFFLINE, NOW)
        assert tracker.stats["persist_failures"] == 0
        assert tracker.stats["persist_retry"]["total_retries"] == 2

    def test_offline_status_report_retries(self):
        store = FlakyDeviceStore()
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2), sleep=lambda _s: None)
        tracker.record_seen("WQ-001", NOW)

        store.failures = 2
        tracker.apply_status_report("WQ-001", False, NOW + timedelta(seconds=10))

        assert store.get_status("WQ-001") == (DeviceStatus.OFFLINE, NOW + timedelta(seconds=10))
        assert tracker.get("WQ-001").last_persisted_at == NOW + timedelta(seconds=10)

    def test_retry_config_from_env(self, monkeypatch):
        monkeypatch.setenv("DEVICE_RETRY_MAX_ATTEMPTS", "5")
        config = DeviceTrackerConfig.from_env()

        assert config.persist_retry.max_attempts == 5
        assert config.persist_retry.retryable_exceptions == (StoreUnavailable,)


# =============================================================================
# ORDEN DE ESCRITURAS CONCURRENTES
# =============================================================================

class TestPersistOrdering:

    def test_reading_during_offline_write_leaves_store_online(self):
        store = BlockingDeviceStore(DeviceStatus.OFFLINE)
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2))
        tracker.record_seen("WQ-001", NOW)
        swept_at = NOW + timedelta(minutes=11)

        store.armed = True
        sweeper = threading.Thread(target=tracker.sweep_offline, args=(swept_at,))
        sweeper.start()
        assert store.entered.wait(timeout=5)

        # lectura mientras la escritura Offline sigue en vuelo
        tracker.record_seen("WQ-001", swept_at)
        store.release.set()
        sweeper.join(timeout=5)

        for i in range(1, 60):
            tracker.record_seen("WQ-001", swept_at + timedelta(seconds=i))

        assert tracker.get("WQ-001").status == DeviceStatus.ONLINE
        assert store.get_status("WQ-001")[0] == DeviceStatus.ONLINE
        assert store.writes_for("WQ-001")[-1][1] == DeviceStatus.ONLINE

    def test_offline_report_during_online_write_leaves_store_offline(self):
        store = BlockingDeviceStore(DeviceStatus.ONLINE)
        tracker = DeviceStateTracker(store, DeviceTrackerConfig(shards=2))
        tracker.record_seen("WQ-001", NOW)

        store.armed = True
        registering = threading.Thread(target=tracker.register, args=("WQ-001", NOW + timedelta(seconds=5)))
        registering.start()
        assert store.entered.wait(timeout=5)

        tracker.apply_status_report("WQ-001", False, NOW + timedelta(seconds=6))
        store.release.set()
        registering.join(timeout=5)

        assert tracker.get("WQ-001").status == DeviceStatus.OFFLINE
        assert store.get_status("WQ-001") == (DeviceStatus.OFFLINE, NOW + timedelta(seconds=6))


# =============================================================================
# REGISTRO Y STATUS EXPLÍCITO
# =============================================================================

class TestExplicitEvents:

    def test_register_always_persists(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)
        tracker.register("WQ-001", NOW + timedelta(seconds=5))

        assert len(device_store.writes_for("WQ-001")) == 2

    def test_offline_status_report(self, tracker, device_store):
        tracker.record_seen("WQ-001", NOW)

        previous, current = tracker.apply_status_report("WQ-001", False, NOW + timedelta(seconds=10))

        assert previous == DeviceStatus.ONLINE
        assert current == DeviceStatus.OFFLINE
        assert device_store.get_status("WQ-001") == (DeviceStatus.OFFLINE, NOW + timedelta(seconds=10))

    def test_offline_report_for_unknown_device(self, tracker):
        previous, current = tracker.apply_status_report("WQ-009", False, NOW)

        assert previous is None
        assert current == DeviceStatus.OFFLINE
        assert tracker.stats["offline"] == 1

    def test_online_status_report(self, tracker, device_store):
        tracker.apply_status_report("WQ-001", False, NOW)
        previous, current = tracker.apply_status_report("WQ-001", True, NOW + timedelta(seconds=1))

        assert previous == DeviceStatus.OFFLINE
        assert current == DeviceStatus.ONLINE
        assert device_store.get_status("WQ-001")[0] == DeviceStatus.ONLINE

    def test_stats(self, tracker):
        tracker.record_seen("WQ-001", NOW)
        tracker.record_seen("WQ-002", NOW)
        tracker.apply_status_report("WQ-003", False, NOW)

        stats = tracker.stats
        assert stats["devices"] == 3
        assert stats["online"] == 2
        assert stats["offline"] == 1
        assert len(tracker) == 3


# =============================================================================
# SWEEPER
# =============================================================================

class TestOfflineSweeper:

    def test_run_once_uses_clock(self, tracker):
        tracker.record_seen("WQ-001", NOW)
        sweeper = OfflineSweeper(tracker, interval=60, clock=lambda: NOW + timedelta(minutes=11))

        assert sweeper.run_once() == ["WQ-001"]

    def test_thread_sweeps_and_stops(self, tracker):
        tracker.record_seen("WQ-001", NOW)
        swept = threading.Event()

        def clock():
            swept.set()
            return NOW + timedelta(minutes=11)

        sweeper = OfflineSweeper(tracker, interval=0.01, clock=clock)
        sweeper.start()
        try:
            assert swept.wait(timeout=2)
        finally:
            sweeper.stop(timeout=2)

        assert tracker.get("WQ-001").status == DeviceStatus.OFFLINE

    def test_from_env(self, tracker, monkeypatch):
        monkeypatch.setenv("DEVICE_SWEEP_INTERVAL_SECONDS", "15")
        sweeper = OfflineSweeper.from_env(tracker)

        assert sweeper._interval == 15.0
