"""Tests for RefreshCoordinator"""

import asyncio

import pytest

from vbus_pulse.cache import FetchOutcome, MemoryCacheStore
from vbus_pulse.connectivity import ConnectivityProbe
from vbus_pulse.coordinator import NotificationKind, RefreshCoordinator, RefreshReason
from vbus_pulse.errors import CacheStoreError, MalformedSnapshotError
from vbus_pulse.models import Snapshot
from vbus_pulse.preferences import Preferences
from vbus_pulse.schedule import PendingTrigger, RefreshScheduler, SchedulerState, TriggerJournal
from vbus_pulse.sensors import extract
from tests.mock_datasource import (
    DEFAULT_FIELDS,
    FakeConnectivity,
    MockSnapshotSource,
    RecordingConsumer,
    make_snapshot,
)

NOW = 1_000_000.0


class BrokenDiskStore(MemoryCacheStore):
    """Memory store whose writes (and optionally reads) fail like a full disk"""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.fail_reads = False

    async def snapshot(self):
        if self.fail_reads:
            raise CacheStoreError("cache unreadable")
        return await super().snapshot()

    async def _commit(self, entry):
        if self.fail_writes:
            raise CacheStoreError("disk full")
        await super()._commit(entry)


class BrokenProbe(ConnectivityProbe):
    async def current(self):
        raise OSError("no interfaces")


@pytest.fixture
def source():
    return MockSnapshotSource()


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def preferences():
    return Preferences()


@pytest.fixture
def connectivity():
    return FakeConnectivity(connected=True, wifi=True)


@pytest.fixture
async def coordinator(source, store, preferences, connectivity):
    c = RefreshCoordinator(
        source,
        store,
        preferences,
        connectivity,
        scheduler=RefreshScheduler(clock=lambda: NOW),
        clock=lambda: NOW,
    )
    yield c
    await c.shutdown()


class TestRefresh:
    """Test the fetch -> cache -> notify pipeline"""

    async def test_successful_refresh(self, coordinator, source, store):
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.FRESH
        assert notification.stale is False
        assert notification.reason is RefreshReason.USER
        assert notification.values["ECS"] == "42.0°C"
        assert consumer.notifications == [notification]
        assert source.fetch_count == 1
        assert await store.get_last_outcome() == (NOW, FetchOutcome.SUCCESS)

    async def test_fetch_failure_falls_back_to_cache(self, coordinator, source, store):
        await store.put(extract(make_snapshot({4: "42.0"})), fetched_at=NOW - 600)
        source.fail_on_fetch = True

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert notification.stale is True
        assert notification.values["ECS"] == "42.0°C"
        assert notification.entry.last_error == "Mock fetch failure"
        assert await store.get_last_outcome() == (NOW, FetchOutcome.FAILURE)

    async def test_failure_with_empty_cache(self, coordinator, source):
        source.fail_on_fetch = True

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert notification.values == {}

    async def test_missing_packet_is_a_failure(self, coordinator, source, store):
        await store.put(extract(make_snapshot(DEFAULT_FIELDS)), fetched_at=NOW - 600)
        source.snapshot = Snapshot()

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert notification.values["Piscine"] == "26.0°C"

    async def test_unexpected_error_is_contained(self, coordinator, source):
        source.fail_with = RuntimeError("surprise")

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert "surprise" in notification.entry.last_error

    async def test_malformed_snapshot(self, coordinator, source):
        source.fail_with = MalformedSnapshotError("bad shape")

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert notification.entry.last_error == "bad shape"

    async def test_consumer_error_does_not_affect_others(self, coordinator):
        broken = RecordingConsumer(fail=True)
        healthy = RecordingConsumer()
        await coordinator.attach(broken, refresh=False)
        await coordinator.attach(healthy, refresh=False)

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert healthy.notifications == [notification]
        assert coordinator.latest is notification


class TestCoalescing:
    """Concurrent requests share one fetch"""

    async def test_concurrent_requests_share_fetch(self, coordinator, source):
        source.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.request_refresh(RefreshReason.USER))
        second = asyncio.create_task(coordinator.request_refresh(RefreshReason.SCHEDULED))
        await asyncio.sleep(0.01)
        assert coordinator.refresh_in_progress

        source.gate.set()
        a, b = await asyncio.gather(first, second)

        assert source.fetch_count == 1
        assert a is b
        assert coordinator.coalesced_count == 1
        assert not coordinator.refresh_in_progress

    async def test_sequential_requests_fetch_again(self, coordinator, source):
        await coordinator.request_refresh(RefreshReason.USER)
        await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 2


class TestNetworkPolicy:
    """WiFi-only preference gates the fetch"""

    async def test_wifi_only_on_cellular(self, coordinator, source, preferences, connectivity):
        await preferences.update(wifi_only=True)
        connectivity.state = FakeConnectivity(connected=True, wifi=False).state
        source.fetch_count = 0

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 0
        assert notification.kind is NotificationKind.NO_NETWORK
        assert notification.stale is True

    async def test_wifi_only_on_wifi(self, coordinator, source, preferences):
        await preferences.update(wifi_only=True)
        source.fetch_count = 0

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 1
        assert notification.kind is NotificationKind.FRESH

    async def test_cellular_allowed_without_wifi_only(self, coordinator, source, connectivity):
        connectivity.state = FakeConnectivity(connected=True, wifi=False).state

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 1
        assert notification.kind is NotificationKind.FRESH

    async def test_offline(self, coordinator, source, store, connectivity):
        await store.put(extract(make_snapshot({4: "42.0"})), fetched_at=NOW - 600)
        connectivity.state = FakeConnectivity(connected=False, wifi=False).state

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 0
        assert notification.kind is NotificationKind.NO_NETWORK
        assert notification.values["ECS"] == "42.0°C"
        # A skipped fetch is not a failed one
        assert (await store.snapshot()).last_outcome is FetchOutcome.SUCCESS


class TestScheduling:
    """Refresh re-arms the trigger while consumers are attached"""

    async def test_attach_refreshes_and_arms(self, coordinator, source):
        notification = await coordinator.attach(RecordingConsumer())

        assert notification.reason is RefreshReason.CONSUMER_ATTACHED
        assert source.fetch_count == 1
        assert coordinator.scheduler.state is SchedulerState.ARMED
        assert coordinator.scheduler.interval_minutes == 10

    async def test_no_consumers_no_rearm(self, coordinator):
        await coordinator.request_refresh(RefreshReason.USER)

        assert coordinator.scheduler.state is SchedulerState.IDLE

    async def test_failure_still_rearms(self, coordinator, source):
        source.fail_on_fetch = True
        await coordinator.attach(RecordingConsumer())

        assert coordinator.scheduler.state is SchedulerState.ARMED

    async def test_refresh_rate_change_reschedules(self, coordinator, preferences, source):
        await coordinator.attach(RecordingConsumer())
        assert coordinator.scheduler.interval_minutes == 10

        changed = await preferences.update(refresh_rate="1")

        assert changed == ["refresh_rate"]
        assert coordinator.scheduler.state is SchedulerState.ARMED
        assert coordinator.scheduler.interval_minutes == 1
        assert coordinator.scheduler.pending.fire_at == NOW + 60
        assert coordinator.latest.reason is RefreshReason.PREFERENCE_CHANGED
        assert source.fetch_count == 2

    async def test_invalid_refresh_rate_uses_default(self, coordinator, preferences):
        await coordinator.attach(RecordingConsumer())
        await preferences.update(refresh_rate="soon")

        assert coordinator.scheduler.interval_minutes == 10

    async def test_detach_last_consumer_disarms(self, coordinator):
        first = RecordingConsumer()
        second = RecordingConsumer()
        await coordinator.attach(first)
        await coordinator.attach(second, refresh=False)

        coordinator.detach(first)
        assert coordinator.scheduler.state is SchedulerState.ARMED

        coordinator.detach(second)
        assert coordinator.scheduler.state is SchedulerState.IDLE
        assert coordinator.consumers == []

    async def test_scheduled_trigger_refreshes(self, source, store, preferences, connectivity):
        scheduler = RefreshScheduler()
        coordinator = RefreshCoordinator(source, store, preferences, connectivity, scheduler)
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        scheduler.arm(0)
        await asyncio.sleep(0.05)

        assert source.fetch_count == 1
        assert consumer.notifications[0].reason is RefreshReason.SCHEDULED
        # Handler re-armed the next trigger
        assert scheduler.state is SchedulerState.ARMED
        assert scheduler.interval_minutes == 10
        await coordinator.shutdown()


class TestBoot:
    """Resuming after a process start"""

    async def test_boot_without_journal_refreshes(self, coordinator, source):
        await coordinator.attach(RecordingConsumer(), refresh=False)

        notification = await coordinator.boot()

        assert notification.reason is RefreshReason.BOOT
        assert notification.kind is NotificationKind.FRESH
        assert source.fetch_count == 1

    async def test_boot_resumes_future_trigger(
        self, tmp_path, source, store, preferences, connectivity
    ):
        journal = TriggerJournal(tmp_path / "trigger.json")
        journal.save(PendingTrigger(NOW + 120, 10))
        await store.put(extract(make_snapshot({4: "42.0"})), fetched_at=NOW - 480)

        scheduler = RefreshScheduler(journal=journal, clock=lambda: NOW)
        coordinator = RefreshCoordinator(
            source, store, preferences, connectivity, scheduler, clock=lambda: NOW
        )
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        notification = await coordinator.boot()

        assert source.fetch_count == 0
        assert notification.kind is NotificationKind.CACHED
        assert notification.values["ECS"] == "42.0°C"
        assert scheduler.state is SchedulerState.ARMED
        assert scheduler.pending.fire_at == NOW + 120
        assert consumer.notifications == [notification]
        await coordinator.shutdown()

    async def test_boot_with_overdue_trigger_refreshes(
        self, tmp_path, source, store, preferences, connectivity
    ):
        journal = TriggerJournal(tmp_path / "trigger.json")
        journal.save(PendingTrigger(NOW - 5, 10))

        scheduler = RefreshScheduler(journal=journal, clock=lambda: NOW)
        coordinator = RefreshCoordinator(
            source, store, preferences, connectivity, scheduler, clock=lambda: NOW
        )
        await coordinator.attach(RecordingConsumer(), refresh=False)

        notification = await coordinator.boot()

        assert source.fetch_count == 1
        assert notification.kind is NotificationKind.FRESH
        await coordinator.shutdown()


async def test_shutdown_abandons_inflight_fetch(coordinator, source):
    source.gate = asyncio.Event()
    task = asyncio.create_task(coordinator.request_refresh(RefreshReason.USER))
    await asyncio.sleep(0.01)

    await coordinator.shutdown()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not coordinator.refresh_in_progress


class TestInfrastructureFailures:
    """Cache and probe errors end in cached data and a re-armed trigger"""

    async def test_cache_write_failure_notifies_stale(self, source, preferences, connectivity):
        store = BrokenDiskStore()
        await store.put(extract(make_snapshot({4: "41.5"})), fetched_at=NOW - 600)
        store.fail_writes = True
        coordinator = RefreshCoordinator(
            source, store, preferences, connectivity, RefreshScheduler(clock=lambda: NOW)
        )
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 1
        assert notification.kind is NotificationKind.STALE
        assert notification.values["ECS"] == "41.5°C"
        assert consumer.notifications == [notification]
        assert coordinator.scheduler.state is SchedulerState.ARMED
        await coordinator.shutdown()

    async def test_scheduled_refresh_survives_cache_failure(self, preferences, connectivity):
        store = BrokenDiskStore()
        store.fail_writes = True
        source = MockSnapshotSource(fail_on_fetch=True)
        scheduler = RefreshScheduler()
        coordinator = RefreshCoordinator(source, store, preferences, connectivity, scheduler)
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        scheduler.arm(0)
        await asyncio.sleep(0.05)

        assert len(consumer.notifications) == 1
        assert consumer.notifications[0].kind is NotificationKind.STALE
        # Cadence continues
        assert scheduler.state is SchedulerState.ARMED
        assert scheduler.interval_minutes == 10
        await coordinator.shutdown()

    async def test_unreadable_cache_uses_last_notification(self, source, preferences, connectivity):
        store = BrokenDiskStore()
        coordinator = RefreshCoordinator(
            source, store, preferences, connectivity, RefreshScheduler(clock=lambda: NOW)
        )
        first = await coordinator.request_refresh(RefreshReason.USER)
        store.fail_writes = True
        store.fail_reads = True
        source.fail_on_fetch = True

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert notification.kind is NotificationKind.STALE
        assert notification.values == first.values
        await coordinator.shutdown()

    async def test_probe_failure_counts_as_offline(self, source, store, preferences):
        coordinator = RefreshCoordinator(
            source, store, preferences, BrokenProbe(), RefreshScheduler(clock=lambda: NOW)
        )
        consumer = RecordingConsumer()
        await coordinator.attach(consumer, refresh=False)

        notification = await coordinator.request_refresh(RefreshReason.USER)

        assert source.fetch_count == 0
        assert notification.kind is NotificationKind.NO_NETWORK
        assert consumer.notifications == [notification]
        assert coordinator.scheduler.state is SchedulerState.ARMED
        await coordinator.shutdown()


async def test_one_update_changing_both_preferences_fetches_once(
    coordinator, source, preferences
):
    await coordinator.attach(RecordingConsumer())
    assert source.fetch_count == 1

    await preferences.update(refresh_rate="5", wifi_only=True)

    assert source.fetch_count == 2
    assert coordinator.scheduler.interval_minutes == 5
    assert coordinator.latest.reason is RefreshReason.PREFERENCE_CHANGED
