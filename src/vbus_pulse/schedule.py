"""
Refresh trigger scheduling.

The scheduler holds at most one pending trigger. It is not a repeating
timer: whoever handles a trigger arms the next one when it is done, so a
slow refresh can never overlap the next firing.
"""

import asyncio
import contextlib
import json
import math
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .log_handler import get_structured_logger
from .utils.files import atomic_write_text

logger = get_structured_logger(__name__, component="scheduler")


class SchedulerState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FIRING = "firing"


class SchedulePrecision(str, Enum):
    EXACT = "exact"
    INEXACT = "inexact"


@dataclass(frozen=True)
class PendingTrigger:
    """
    A scheduled refresh.

    Attributes:
        fire_at: Wall-clock time (epoch seconds) the trigger fires at
        interval_minutes: Interval the trigger was armed with
        precision: Whether the platform honoured the exact time
    """

    fire_at: float
    interval_minutes: float
    precision: SchedulePrecision = SchedulePrecision.EXACT

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["precision"] = self.precision.value
        return data


class TriggerJournal:
    """Persists the pending trigger so it survives a process restart."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[PendingTrigger]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return PendingTrigger(
                fire_at=float(data["fire_at"]),
                interval_minutes=float(data["interval_minutes"]),
                precision=SchedulePrecision(data.get("precision", SchedulePrecision.EXACT.value)),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable trigger journal", path=str(self.path), error=str(e))
            return None

    def save(self, trigger: PendingTrigger) -> None:
        atomic_write_text(self.path, json.dumps(trigger.to_dict()))

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


TriggerHandler = Callable[[], Awaitable[Any]]


class RefreshScheduler:
    """
    Idle / Armed / Firing state machine around a single asyncio timer.

    Exact timers are used unless ``can_schedule_exact`` returns False or
    raises PermissionError; the trigger is then deferred to the next boundary
    of ``inexact_window`` seconds instead of failing.
    """

    def __init__(
        self,
        on_trigger: Optional[TriggerHandler] = None,
        *,
        journal: Optional[TriggerJournal] = None,
        can_schedule_exact: Optional[Callable[[], bool]] = None,
        inexact_window: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the scheduler.

        Args:
            on_trigger: Coroutine function invoked when a trigger fires
            journal: Optional journal persisting the pending trigger
            can_schedule_exact: Capability check for exact timers
            inexact_window: Batching window in seconds for inexact timers
            clock: Wall-clock source, injectable for tests
        """
        self.on_trigger = on_trigger
        self._journal = journal
        self._can_schedule_exact = can_schedule_exact
        self._inexact_window = inexact_window
        self._clock = clock

        self._state = SchedulerState.IDLE
        self._pending: Optional[PendingTrigger] = None
        self._timer: Optional[asyncio.Task] = None
        self._firing: Optional[asyncio.Task] = None
        self._journal_task: Optional[asyncio.Task] = None
        self._journal_target: Optional[PendingTrigger] = None
        self._journal_dirty = False
        self.fire_count = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def pending(self) -> Optional[PendingTrigger]:
        return self._pending

    @property
    def interval_minutes(self) -> Optional[float]:
        return self._pending.interval_minutes if self._pending else None

    def _resolve_precision(self) -> SchedulePrecision:
        if self._can_schedule_exact is None:
            return SchedulePrecision.EXACT
        try:
            allowed = self._can_schedule_exact()
        except PermissionError as e:
            logger.warning("Exact scheduling denied, using inexact timer", error=str(e))
            return SchedulePrecision.INEXACT
        if not allowed:
            logger.warning("Exact scheduling not permitted, using inexact timer")
            return SchedulePrecision.INEXACT
        return SchedulePrecision.EXACT

    def _fire_time(self, target: float, precision: SchedulePrecision) -> float:
        if precision is SchedulePrecision.INEXACT and self._inexact_window > 0:
            return math.ceil(target / self._inexact_window) * self._inexact_window
        return target

    def arm(self, interval_minutes: float) -> PendingTrigger:
        """Cancel any pending trigger and schedule one at now + interval."""
        precision = self._resolve_precision()
        fire_at = self._fire_time(self._clock() + interval_minutes * 60, precision)
        return self._schedule(PendingTrigger(fire_at, interval_minutes, precision))

    def arm_until(self, trigger: PendingTrigger) -> PendingTrigger:
        """Re-arm a journaled trigger for whatever delay is left on it."""
        return self._schedule(trigger)

    def _schedule(self, trigger: PendingTrigger) -> PendingTrigger:
        self._cancel_timer()
        delay = max(0.0, trigger.fire_at - self._clock())
        self._pending = trigger
        self._state = SchedulerState.ARMED
        self._timer = asyncio.create_task(self._run(delay), name="refresh-trigger")
        self._persist(trigger)
        logger.info(
            "Refresh trigger armed",
            interval_minutes=trigger.interval_minutes,
            delay=round(delay, 1),
            precision=trigger.precision.value,
        )
        return trigger

    def disarm(self, clear_journal: bool = True) -> None:
        """Cancel the pending trigger and go idle."""
        had_timer = self._cancel_timer()
        self._pending = None
        if self._state is SchedulerState.ARMED:
            self._state = SchedulerState.IDLE
        if clear_journal:
            self._persist(None)
        if had_timer:
            logger.info("Refresh trigger disarmed")

    async def resume(self) -> Optional[PendingTrigger]:
        """Return the trigger journaled by a previous process, if any."""
        if self._journal is None:
            return None
        return await asyncio.to_thread(self._journal.load)

    def _cancel_timer(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def _persist(self, trigger: Optional[PendingTrigger]) -> None:
        """Queue a journal write (None clears it). Only the latest state is written."""
        if self._journal is None:
            return
        self._journal_target = trigger
        self._journal_dirty = True
        if self._journal_task is None or self._journal_task.done():
            self._journal_task = asyncio.create_task(self._flush_journal(), name="trigger-journal")

    async def _flush_journal(self) -> None:
        while self._journal_dirty:
            self._journal_dirty = False
            trigger = self._journal_target
            try:
                if trigger is None:
                    await asyncio.to_thread(self._journal.clear)
                else:
                    await asyncio.to_thread(self._journal.save, trigger)
            except OSError as e:
                logger.warning("Cannot persist refresh trigger", error=str(e))

    async def flush_journal(self) -> None:
        """Wait until queued journal writes are on disk."""
        if self._journal_task is not None:
            await asyncio.shield(self._journal_task)

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)

        self._firing = self._timer
        self._timer = None
        self._pending = None
        self._state = SchedulerState.FIRING
        self.fire_count += 1
        logger.debug("Refresh trigger fired", fire_count=self.fire_count)

        try:
            if self.on_trigger is not None:
                await self.on_trigger()
        except Exception:
            logger.exception("Refresh trigger handler failed")
        finally:
            self._firing = None
            # Nothing re-armed during the handler
            if self._state is SchedulerState.FIRING:
                self._state = SchedulerState.IDLE
                self._persist(None)

    async def shutdown(self) -> None:
        """Cancel timers without forgetting the journaled trigger."""
        tasks = [task for task in (self._timer, self._firing) if task is not None]
        self.disarm(clear_journal=False)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.flush_journal()
