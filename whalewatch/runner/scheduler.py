"""Poll scheduler driving the snapshot refresh cycle."""

import asyncio
import inspect
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import structlog

from ..core.clock import AsyncioTimer, SystemClock
from ..core.interfaces import Clock, HolderSource, Timer, TimerHandle
from ..core.types import DeltaResult, EntityKey, PollOutcome, PollState
from ..engine.diff import compare
from ..persist.snapshots import SnapshotStore

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 6 * 60 * 60


class PollScheduler:
    """Refreshes the tracked token's holder snapshot on a fixed interval.

    States move IDLE -> FETCHING -> COOLING -> FETCHING ..., passing through
    FAILED when a cycle errors. A failed cycle still re-arms the countdown.
    Every cycle is tagged with a generation number; results of a cycle whose
    generation is no longer current (the tracked token changed, or the
    scheduler was stopped) are discarded.
    """

    def __init__(
        self,
        source: HolderSource,
        store: SnapshotStore,
        interval: float = DEFAULT_POLL_INTERVAL,
        timer: Timer | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize poll scheduler.

        Args:
            source: Holder source; its fetches go through the request queue
            store: Snapshot store receiving each capture
            interval: Seconds between polls
            timer: Deadline scheduler (defaults to the running event loop)
            clock: Time source used for the countdown
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.source = source
        self.store = store
        self.interval = interval
        self.timer = timer or AsyncioTimer()
        self.clock = clock or SystemClock()

        self.state = PollState.IDLE
        self.entity: EntityKey | None = None
        self.last_outcome: PollOutcome | None = None
        self.last_delta: DeltaResult | None = None
        self.last_error: Exception | None = None

        self._generation = 0
        self._countdown: TimerHandle | None = None
        self._deadline = None
        self._task: asyncio.Task | None = None
        self._listeners: list[Callable[[PollOutcome], Any]] = []
        self._listener_tasks: set[asyncio.Task] = set()

    def add_listener(self, listener: Callable[[PollOutcome], Any]) -> None:
        """Register a callback for poll outcomes.

        Coroutine results are scheduled as tasks on the running loop.
        """
        self._listeners.append(listener)

    def track(self, entity: EntityKey) -> asyncio.Task | None:
        """Start polling ``entity``, abandoning any previously tracked token.

        Returns:
            The task running the first cycle, or None if the entity is
            already tracked
        """
        if entity == self.entity and self.state != PollState.IDLE:
            return None

        previous = self.entity
        self._cancel_countdown()
        self._generation += 1
        self.entity = entity
        self.last_outcome = None
        self.last_delta = None
        self.last_error = None

        logger.info(
            "Tracking entity",
            entity=str(entity),
            previous=str(previous) if previous else None,
        )
        return self._start_cycle()

    def refresh(self) -> asyncio.Task | None:
        """Poll now instead of waiting for the countdown.

        A refresh while a cycle is in flight does not start another one; the
        in-flight cycle's task is returned instead.
        """
        if self.entity is None:
            logger.warning("Refresh requested with no tracked entity")
            return None

        if self.state == PollState.FETCHING:
            logger.debug("Refresh ignored, fetch in flight", entity=str(self.entity))
            return self._task

        logger.info("Manual refresh", entity=str(self.entity))
        return self._start_cycle()

    def stop(self) -> None:
        """Stop polling; in-flight results will be discarded."""
        self._cancel_countdown()
        self._generation += 1
        self.entity = None
        self.state = PollState.IDLE
        self._task = None
        logger.info("Poll scheduler stopped")

    def time_remaining(self) -> float | None:
        """Seconds until the next scheduled poll, None unless cooling."""
        if self.state != PollState.COOLING or self._deadline is None:
            return None
        return max(0.0, (self._deadline - self.clock.now()).total_seconds())

    def _start_cycle(self) -> asyncio.Task:
        self._cancel_countdown()
        self.state = PollState.FETCHING
        task = asyncio.get_running_loop().create_task(
            self._run_cycle(self.entity, self._generation)
        )
        self._task = task
        return task

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def _run_cycle(self, entity: EntityKey, generation: int) -> PollOutcome | None:
        try:
            raw_holders = await self.source.fetch_holders(entity)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._is_current(generation):
                logger.info("Discarding failure of abandoned poll", entity=str(entity))
                return None
            return self._fail(entity, generation, e)

        if not self._is_current(generation):
            logger.warning("Discarding stale poll result", entity=str(entity))
            return None

        try:
            history = self.store.save(entity, raw_holders)
            current = history[-1]
            previous = history[-2] if len(history) >= 2 else None
            delta = compare(current, previous)
        except Exception as e:
            return self._fail(entity, generation, e)

        outcome = PollOutcome(entity=entity, snapshot=current, previous=previous, delta=delta)
        self.last_outcome = outcome
        self.last_delta = delta
        self.last_error = None

        logger.info(
            "Poll cycle completed",
            entity=str(entity),
            holders=len(current.holders),
            entered=len(delta.entered),
            exited=len(delta.exited),
            changed=len(delta.changed),
        )

        self._enter_cooling(generation)
        self._publish(outcome)
        return outcome

    def _fail(self, entity: EntityKey, generation: int, error: Exception) -> PollOutcome:
        logger.error("Poll cycle failed", entity=str(entity), error=str(error))

        self.state = PollState.FAILED
        self.last_error = error
        outcome = PollOutcome(entity=entity, error=error)
        self._publish(outcome)

        if self._is_current(generation) and self.state == PollState.FAILED:
            self._enter_cooling(generation)
        return outcome

    def _enter_cooling(self, generation: int) -> None:
        self._cancel_countdown()
        self.state = PollState.COOLING
        self._deadline = self.clock.now() + timedelta(seconds=self.interval)
        self._countdown = self.timer.call_later(
            self.interval, lambda: self._on_countdown(generation)
        )
        logger.debug("Next poll scheduled", entity=str(self.entity), in_seconds=self.interval)

    def _on_countdown(self, generation: int) -> None:
        if not self._is_current(generation) or self.state != PollState.COOLING:
            return
        self._countdown = None
        self._start_cycle()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None
        self._deadline = None

    def _publish(self, outcome: PollOutcome) -> None:
        for listener in self._listeners:
            try:
                result = listener(outcome)
            except Exception as e:
                logger.error("Outcome listener failed", error=str(e))
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Outcome listener failed", error=str(task.exception()))
