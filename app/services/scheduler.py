"""Periodic full-batch refresh of every slot."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from .config_store import ConfigStore
from .selection import SelectionEngine, SelectionResult

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def next_fire_time(now: datetime, interval_hours: int) -> datetime:
    """Next top of an hour divisible by ``interval_hours``, counted from midnight.

    Mirrors the cron expression ``0 0 */N * * *``: intervals of a day or more
    only ever match midnight.
    """

    if interval_hours <= 0:
        raise ValueError("interval_hours must be positive")
    candidate = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    while candidate.hour % interval_hours != 0:
        candidate += timedelta(hours=1)
    return candidate


def _log_batch_failure(task: asyncio.Task[Any]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduled refresh failed: %s", exc, exc_info=exc)


class RefreshScheduler:
    """Owns the single background job that runs ``refresh_all_slots``.

    Rescheduling cancels the job and creates a new one; a batch that is already
    running is shielded from the cancellation and runs to completion.
    """

    def __init__(
        self,
        engine: SelectionEngine,
        store: ConfigStore,
        *,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._clock = clock or _local_now
        self._sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self._interval_hours = 0
        self._last_run_time: datetime | None = None
        self._next_run_time: datetime | None = None
        self._batch: asyncio.Task[list[SelectionResult]] | None = None

    @property
    def interval_hours(self) -> int:
        return self._interval_hours

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_run_time(self) -> datetime | None:
        return self._last_run_time

    @property
    def next_run_time(self) -> datetime | None:
        if not self.running:
            return None
        return self._next_run_time

    async def start(self) -> None:
        """Schedule the job using the persisted refresh interval."""

        hours = self._store.settings.refresh_interval_hours
        if hours <= 0:
            logger.info("Auto-refresh is disabled on startup")
        await self.update_schedule(hours)

    async def update_schedule(self, interval_hours: int) -> None:
        await self._cancel()
        self._interval_hours = max(interval_hours, 0)
        if self._interval_hours == 0:
            logger.info("Auto-refresh disabled")
            return
        logger.info(
            "Starting auto-refresh schedule: every %s hours (0 0 */%s * * *)",
            self._interval_hours,
            self._interval_hours,
        )
        self._next_run_time = next_fire_time(self._clock(), self._interval_hours)
        self._task = asyncio.create_task(self._run(self._interval_hours))

    async def stop(self) -> None:
        await self._cancel()

    async def _cancel(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._next_run_time = None
        logger.info("Existing auto-refresh schedule cancelled")

    async def run_once(self) -> list[SelectionResult]:
        """Refresh every slot now and record the completion time."""

        logger.info("Auto-refreshing all slots (interval: %sh)", self._interval_hours)
        results = await self._engine.refresh_all_slots()
        self._last_run_time = self._clock()
        return results

    async def _run(self, interval_hours: int) -> None:
        while True:
            now = self._clock()
            fire_at = next_fire_time(now, interval_hours)
            self._next_run_time = fire_at
            await self._sleep(max((fire_at - now).total_seconds(), 0.0))
            self._batch = asyncio.create_task(self.run_once())
            self._batch.add_done_callback(_log_batch_failure)
            # Failures are logged by the callback, also after a reschedule.
            with suppress(Exception):
                await asyncio.shield(self._batch)

    def to_payload(self) -> dict[str, Any]:
        return {
            "refreshIntervalHours": self._interval_hours,
            "lastRunTime": (
                self._last_run_time.isoformat() if self._last_run_time else None
            ),
            "nextRunTime": (
                self.next_run_time.isoformat() if self.next_run_time else None
            ),
        }
