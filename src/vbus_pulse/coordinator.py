"""
Refresh coordinator.

Single entry point for every refresh request in the process. It decides
whether a network call is allowed, performs at most one fetch at a time,
writes the extracted readings to the cache and pushes the resulting cache
state to every attached consumer. Failures never propagate: consumers get
the last cached values tagged as stale and the next trigger tries again.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from .cache import CacheEntry, CacheStore
from .connectivity import ConnectivityProbe, NetworkState, should_fetch
from .datasources.base import SnapshotSource
from .errors import CacheStoreError, FetchError, MalformedSnapshotError
from .log_handler import get_structured_logger
from .preferences import REFRESH_RATE, WIFI_ONLY, Preferences
from .schedule import RefreshScheduler
from .sensors import DEFAULT_SENSOR_TABLE, SensorSpec, extract

logger = get_structured_logger(__name__, component="coordinator")


class RefreshReason(str, Enum):
    SCHEDULED = "scheduled"
    USER = "user-initiated"
    PREFERENCE_CHANGED = "preference-changed"
    CONSUMER_ATTACHED = "consumer-attached"
    BOOT = "boot"


class NotificationKind(str, Enum):
    FRESH = "fresh"  # Fetch succeeded, values just written
    STALE = "stale"  # Fetch failed, values are the last known good ones
    NO_NETWORK = "no-network"  # Fetch skipped by the network policy
    CACHED = "cached"  # Restored from cache at boot, next trigger still pending


@dataclass(frozen=True)
class Notification:
    """
    What consumers receive after every refresh attempt.

    Attributes:
        kind: How the payload was obtained
        reason: What requested the refresh
        entry: Complete cache state after the attempt
        created_at: When the notification was built
    """

    kind: NotificationKind
    reason: RefreshReason
    entry: CacheEntry
    created_at: float = field(default_factory=time.time)

    @property
    def stale(self) -> bool:
        return self.kind is not NotificationKind.FRESH

    @property
    def values(self) -> dict[str, str]:
        """Sensor name -> formatted value."""
        return self.entry.formatted()

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.kind.value,
            "reason": self.reason.value,
            "stale": self.stale,
            "created_at": self.created_at,
            "sensors": {
                name: {
                    "key": value.key,
                    "value": value.formatted,
                    "numeric": value.numeric,
                    "timestamp": value.timestamp,
                }
                for name, value in self.entry.values.items()
            },
            "last_fetch_at": self.entry.last_fetch_at,
            "last_outcome": self.entry.last_outcome.value if self.entry.last_outcome else None,
            "last_success_at": self.entry.last_success_at,
            "last_error": self.entry.last_error,
        }


class Consumer(Protocol):
    """A presentation surface fed by the coordinator."""

    async def on_refresh(self, notification: Notification) -> None: ...


class RefreshCoordinator:
    """
    Orchestrates trigger -> gated fetch -> extract -> cache -> notify.

    Concurrent refresh requests are coalesced onto the fetch already in
    flight and all callers receive the same Notification.
    """

    def __init__(
        self,
        source: SnapshotSource,
        store: CacheStore,
        preferences: Preferences,
        connectivity: ConnectivityProbe,
        scheduler: Optional[RefreshScheduler] = None,
        sensor_table: tuple[SensorSpec, ...] = DEFAULT_SENSOR_TABLE,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self._store = store
        self._preferences = preferences
        self._connectivity = connectivity
        self._sensor_table = sensor_table
        self._clock = clock

        self.scheduler = scheduler or RefreshScheduler()
        self.scheduler.on_trigger = self._on_scheduled_trigger

        self._consumers: list[Consumer] = []
        self._inflight: Optional[asyncio.Task] = None
        self._latest: Optional[Notification] = None
        self.fetch_count = 0
        self.coalesced_count = 0

        preferences.add_listener(self._on_preference_changed)

    # =========================================================================
    # Consumers
    # =========================================================================

    @property
    def consumers(self) -> list[Consumer]:
        return list(self._consumers)

    @property
    def sensor_table(self) -> tuple[SensorSpec, ...]:
        return self._sensor_table

    @property
    def latest(self) -> Optional[Notification]:
        """Last notification sent to consumers."""
        return self._latest

    @property
    def refresh_in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def attach(self, consumer: Consumer, refresh: bool = True) -> Optional[Notification]:
        """
        Attach a consumer.

        Args:
            consumer: Consumer to attach
            refresh: Request a consumer-attached refresh right away

        Returns:
            The notification of that refresh, or None when not requested
        """
        if consumer not in self._consumers:
            self._consumers.append(consumer)
            logger.info("Consumer attached", consumers=len(self._consumers))
        if refresh:
            return await self.request_refresh(RefreshReason.CONSUMER_ATTACHED)
        return None

    def detach(self, consumer: Consumer) -> None:
        """Detach a consumer; the last one leaving disarms the scheduler."""
        if consumer in self._consumers:
            self._consumers.remove(consumer)
            logger.info("Consumer detached", consumers=len(self._consumers))
        if not self._consumers:
            self.scheduler.disarm()

    # =========================================================================
    # Refresh
    # =========================================================================

    async def request_refresh(self, reason: RefreshReason) -> Notification:
        """
        Refresh the cache and notify consumers.

        If a fetch is already in flight the request is coalesced onto it.
        """
        if self._inflight is not None and not self._inflight.done():
            self.coalesced_count += 1
            logger.debug("Refresh coalesced", reason=reason.value)
            return await asyncio.shield(self._inflight)

        task = asyncio.create_task(self._refresh(reason), name=f"refresh-{reason.value}")
        self._inflight = task
        task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh(self, reason: RefreshReason) -> Notification:
        logger.info("Refresh requested", reason=reason.value)

        cancelled = False
        try:
            network = await self._network_state()
            if not should_fetch(network, self._preferences.wifi_only):
                logger.info(
                    "Fetch skipped by network policy",
                    wifi_only=self._preferences.wifi_only,
                    connected=network.connected,
                    wifi=network.wifi,
                )
                entry = await self._cached_entry()
                notification = Notification(
                    NotificationKind.NO_NETWORK, reason, entry, self._clock()
                )
            else:
                notification = await self._fetch_and_store(reason)

            await self._notify(notification)
            return notification
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            # Every attempt schedules the next one, whatever happened above
            if not cancelled:
                self._rearm()

    async def _network_state(self) -> NetworkState:
        try:
            return await self._connectivity.current()
        except Exception as e:
            logger.warning("Network probe failed, treating as offline", error=str(e))
            return NetworkState.offline()

    async def _cached_entry(self) -> CacheEntry:
        """Best available cache state; the last notified one if the store is unreadable."""
        try:
            return await self._store.snapshot()
        except CacheStoreError as e:
            logger.error("Cannot read cache, using last notified values", error=str(e))
            return self._latest.entry if self._latest is not None else CacheEntry()

    async def _fetch_and_store(self, reason: RefreshReason) -> Notification:
        self.fetch_count += 1
        try:
            snapshot = await self._source.fetch_snapshot()
            readings = extract(snapshot, self._sensor_table)
            if not readings:
                raise MalformedSnapshotError("Designated packet missing from snapshot")
        except FetchError as e:
            logger.warning("Fetch failed, using cached values", reason=reason.value, error=str(e))
            return await self._stale(reason, str(e))
        except Exception as e:
            logger.exception("Unexpected error during fetch, using cached values")
            return await self._stale(reason, repr(e))

        try:
            entry = await self._store.put(readings, self._clock())
        except CacheStoreError as e:
            logger.error("Cannot store fetched values, using cached values", error=str(e))
            entry = await self._cached_entry()
            return Notification(NotificationKind.STALE, reason, entry, self._clock())
        logger.info("Refresh complete", reason=reason.value, sensors=len(readings))
        return Notification(NotificationKind.FRESH, reason, entry, self._clock())

    async def _stale(self, reason: RefreshReason, error: str) -> Notification:
        try:
            entry = await self._store.record_failure(self._clock(), error)
        except CacheStoreError as e:
            logger.error("Cannot record fetch failure in cache", error=str(e))
            entry = await self._cached_entry()
        return Notification(NotificationKind.STALE, reason, entry, self._clock())

    async def _notify(self, notification: Notification) -> None:
        self._latest = notification
        consumers = list(self._consumers)
        if not consumers:
            return
        results = await asyncio.gather(
            *(consumer.on_refresh(notification) for consumer in consumers),
            return_exceptions=True,
        )
        for consumer, result in zip(consumers, results):
            if isinstance(result, Exception):
                logger.error(
                    "Consumer failed to handle notification",
                    consumer=type(consumer).__name__,
                    error=str(result),
                )

    def _rearm(self) -> None:
        if self._consumers:
            self.scheduler.arm(self._preferences.refresh_minutes)
        else:
            logger.debug("No consumers attached, refresh trigger left disarmed")

    async def _on_scheduled_trigger(self) -> None:
        await self.request_refresh(RefreshReason.SCHEDULED)

    async def _on_preference_changed(self, changes: Mapping[str, Any]) -> None:
        if REFRESH_RATE in changes and self._consumers:
            # New cadence applies now, not after the old interval elapses
            self.scheduler.arm(self._preferences.refresh_minutes)
        if REFRESH_RATE in changes or WIFI_ONLY in changes:
            await self.request_refresh(RefreshReason.PREFERENCE_CHANGED)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def boot(self) -> Notification:
        """
        Resume after a process start.

        A journaled trigger still in the future is re-armed for the time left
        and consumers get the cached values. Otherwise refresh right away.
        """
        pending = await self.scheduler.resume()
        now = self._clock()
        if pending is not None and pending.fire_at > now and self._consumers:
            self.scheduler.arm_until(pending)
            entry = await self._cached_entry()
            notification = Notification(NotificationKind.CACHED, RefreshReason.BOOT, entry, now)
            logger.info("Resumed pending refresh trigger", delay=round(pending.fire_at - now, 1))
            await self._notify(notification)
            return notification
        return await self.request_refresh(RefreshReason.BOOT)

    async def shutdown(self) -> None:
        """Abandon any in-flight fetch and stop the timer."""
        self._preferences.remove_listener(self._on_preference_changed)
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.info("Abandoning in-flight refresh")
            inflight.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await inflight
        await self.scheduler.shutdown()
