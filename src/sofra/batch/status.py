"""
Sofra - Batch status tracker.

Lifecycle of a weekly generation job (pending → in_progress →
completed | failed), keyed by (user, Monday of the week). All mutations
go through this class. Counters never decrease and terminal states
never revert.

Observers either poll with get_status or subscribe_status, which polls
on an interval and is also woken by writes made in this process.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta

from sofra.core.result import Err, ErrorKind, Ok, Result
from sofra.db.adapter import StatusStore
from sofra.models.status import GenerationState, GenerationStatus, status_id

logger = logging.getLogger(__name__)

StatusCallback = Callable[[GenerationStatus], Awaitable[None] | None]

_ACTIVE = (GenerationState.PENDING, GenerationState.IN_PROGRESS)


class JobAlreadyRunning(Exception):
    """A weekly job for this user and week is still pending or in progress."""


def week_start_for(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


class StatusSubscription:
    """Handle for a running status subscription."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def wait(self) -> GenerationStatus | None:
        """Last status seen when the subscription stopped (None if cancelled or never found)."""
        try:
            return await self._task
        except asyncio.CancelledError:
            return None


class StatusTracker:
    """Owns every status mutation for weekly generation jobs."""

    def __init__(self, store: StatusStore, *, poll_interval: float = 5.0):
        self.store = store
        self.poll_interval = poll_interval
        self._locks: dict[str, asyncio.Lock] = {}
        self._watchers: dict[str, set[asyncio.Event]] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def _notify(self, key: str) -> None:
        for event in self._watchers.get(key, ()):
            event.set()

    async def get_status(self, user_id: str, week_start: date) -> GenerationStatus | None:
        return await self.store.get_status(user_id, week_start_for(week_start))

    async def begin(self, user_id: str, week_start: date, total_days: int = 7) -> GenerationStatus:
        """
        Start a job: write pending, then move to in_progress.

        An existing row is never overwritten. A finished week keeps its
        terminal row, which is returned as is; a week whose job is still
        pending or in progress raises JobAlreadyRunning.
        """
        week = week_start_for(week_start)
        key = status_id(user_id, week)
        now = datetime.now(UTC)

        async with self._lock(key):
            created = await self.store.create_status(
                GenerationStatus(
                    user_id=user_id,
                    week_start=week,
                    status=GenerationState.PENDING,
                    completed_days=0,
                    total_days=total_days,
                    created_at=now,
                    updated_at=now,
                )
            )
            if created is None:
                existing = await self.store.get_status(user_id, week)
                if existing is None:
                    raise RuntimeError(f"Status row {key} exists but could not be read")
                if not existing.is_terminal:
                    raise JobAlreadyRunning(f"Weekly job {key} is already {existing.status.value}")
                logger.info(f"Weekly job {key} already {existing.status.value}; keeping its status")
                return existing

            status = await self.store.transition(
                user_id, week, GenerationState.IN_PROGRESS, from_states=(GenerationState.PENDING,)
            )
            if status is not None and total_days == 0:
                status = await self.store.transition(
                    user_id, week, GenerationState.COMPLETED, from_states=_ACTIVE
                )

        self._notify(key)
        logger.info(f"Weekly job {key} started ({total_days} days)")
        if status is None:
            raise RuntimeError(f"Status row {key} vanished after creation")
        return status

    async def record_day_completed(
        self,
        user_id: str,
        week_start: date,
        completed_days: int | None = None,
    ) -> GenerationStatus | None:
        """
        Advance the counter (to completed_days, or by one). Completes the
        job when the counter reaches total_days. No-op on terminal jobs.
        """
        week = week_start_for(week_start)
        key = status_id(user_id, week)

        async with self._lock(key):
            current = await self.store.get_status(user_id, week)
            if current is None:
                logger.error(f"No status row for {key}; cannot record progress")
                return None
            if current.is_terminal:
                return current

            target = current.completed_days + 1 if completed_days is None else completed_days
            target = min(target, current.total_days)
            status = await self.store.advance(user_id, week, target)

            if status is not None and not status.is_terminal and status.completed_days >= status.total_days:
                status = await self.store.transition(
                    user_id, week, GenerationState.COMPLETED, from_states=_ACTIVE
                )
                logger.info(f"Weekly job {key} completed")

        self._notify(key)
        return status

    async def fail(self, user_id: str, week_start: date, error: str) -> GenerationStatus | None:
        """Mark the job failed. No-op on terminal jobs."""
        week = week_start_for(week_start)
        key = status_id(user_id, week)

        async with self._lock(key):
            status = await self.store.transition(
                user_id, week, GenerationState.FAILED, from_states=_ACTIVE, error=error
            )

        self._notify(key)
        logger.error(f"Weekly job {key} failed: {error}")
        return status

    def subscribe_status(
        self,
        user_id: str,
        week_start: date,
        callback: StatusCallback,
        *,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> StatusSubscription:
        """
        Call callback with every changed status until the job is terminal
        or timeout elapses. Returns a handle that can be cancelled.
        """
        task = asyncio.create_task(
            self._poll(user_id, week_start_for(week_start), callback, interval or self.poll_interval, timeout)
        )
        return StatusSubscription(task)

    async def _poll(
        self,
        user_id: str,
        week: date,
        callback: StatusCallback,
        interval: float,
        timeout: float | None,
    ) -> GenerationStatus | None:
        key = status_id(user_id, week)
        wakeup = asyncio.Event()
        self._watchers.setdefault(key, set()).add(wakeup)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        last: GenerationStatus | None = None

        try:
            while True:
                wakeup.clear()
                try:
                    status = await self.store.get_status(user_id, week)
                except Exception as e:
                    logger.warning(f"Status poll for {key} failed: {e}")
                    status = last

                if status is not None and status != last:
                    last = status
                    try:
                        outcome = callback(status)
                        if inspect.isawaitable(outcome):
                            await outcome
                    except Exception:
                        logger.exception(f"Status callback for {key} raised")

                if last is not None and last.is_terminal:
                    return last

                wait = interval
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return last
                    wait = min(wait, remaining)

                try:
                    await asyncio.wait_for(wakeup.wait(), wait)
                except TimeoutError:
                    pass
        finally:
            self._watchers.get(key, set()).discard(wakeup)

    async def wait_for_terminal(
        self,
        user_id: str,
        week_start: date,
        timeout: float | None = None,
    ) -> Result[GenerationStatus]:
        """Block until the job completes or fails; Err(TIMEOUT) if it does not in time."""
        subscription = self.subscribe_status(user_id, week_start, lambda status: None, timeout=timeout)
        final = await subscription.wait()
        if final is not None and final.is_terminal:
            return Ok(final)
        return Err(ErrorKind.TIMEOUT, f"status for week of {week_start_for(week_start)} not terminal after {timeout}s")
