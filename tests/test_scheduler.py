from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import cast

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.models import AppSettings, ConfigData
from app.services.config_store import ConfigStore
from app.services.scheduler import RefreshScheduler, next_fire_time
from app.services.selection import SelectionEngine, SelectionResult

NOW = datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)


class CountingEngine:
    """Selection engine stub counting batch refreshes."""

    def __init__(self, *, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def refresh_all_slots(self) -> list[SelectionResult]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("batch exploded")
        return [SelectionResult(slot_id="one", success=True, status="ok")]


def build_store(hours: int) -> ConfigStore:
    store = ConfigStore(async_sessionmaker())
    store._data = ConfigData(settings=AppSettings(refresh_interval_hours=hours))
    return store


@pytest.mark.parametrize(
    ("now", "hours", "expected"),
    [
        (NOW, 1, datetime(2024, 3, 1, 11, 0, tzinfo=timezone.utc)),
        (NOW, 4, datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)),
        (NOW, 6, datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)),
        (NOW, 24, datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)),
        (NOW, 48, datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc)),
        (
            datetime(2024, 3, 1, 22, 15, tzinfo=timezone.utc),
            5,
            datetime(2024, 3, 2, 0, 0, tzinfo=timezone.utc),
        ),
        (
            datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
            4,
            datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc),
        ),
    ],
)
def test_next_fire_time_matches_hourly_cron(now, hours, expected) -> None:
    assert next_fire_time(now, hours) == expected


def test_next_fire_time_rejects_disabled_interval() -> None:
    with pytest.raises(ValueError):
        next_fire_time(NOW, 0)


def test_scheduler_runs_batch_at_next_fire_time() -> None:
    async def runner() -> None:
        engine = CountingEngine()
        delays: list[float] = []
        second_wait = asyncio.Event()

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)
            if len(delays) > 1:
                second_wait.set()
                await asyncio.Event().wait()

        scheduler = RefreshScheduler(
            cast(SelectionEngine, engine),
            build_store(4),
            clock=lambda: NOW,
            sleep=fake_sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(second_wait.wait(), timeout=1)

        assert engine.calls == 1
        assert delays[0] == 90 * 60
        assert scheduler.last_run_time == NOW
        assert scheduler.next_run_time == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        payload = scheduler.to_payload()
        assert payload["refreshIntervalHours"] == 4
        assert payload["lastRunTime"] == NOW.isoformat()

        await scheduler.stop()
        assert scheduler.running is False
        assert scheduler.next_run_time is None

    asyncio.run(runner())


def test_scheduler_survives_failed_batches() -> None:
    async def runner() -> None:
        engine = CountingEngine(fail=True)
        waits = 0
        third_wait = asyncio.Event()

        async def fake_sleep(delay: float) -> None:
            nonlocal waits
            waits += 1
            if waits > 2:
                third_wait.set()
                await asyncio.Event().wait()

        scheduler = RefreshScheduler(
            cast(SelectionEngine, engine),
            build_store(1),
            clock=lambda: NOW,
            sleep=fake_sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(third_wait.wait(), timeout=1)

        assert engine.calls == 2
        assert scheduler.last_run_time is None
        await scheduler.stop()

    asyncio.run(runner())


def test_batch_failing_after_reschedule_is_logged(caplog) -> None:
    class SlowFailingEngine:
        def __init__(self) -> None:
            self.started = asyncio.Event()
            self.release = asyncio.Event()

        async def refresh_all_slots(self) -> list[SelectionResult]:
            self.started.set()
            await self.release.wait()
            raise RuntimeError("upstream vanished")

    async def runner() -> None:
        engine = SlowFailingEngine()
        waits = 0

        async def fake_sleep(delay: float) -> None:
            nonlocal waits
            waits += 1
            if waits > 1:
                await asyncio.Event().wait()

        scheduler = RefreshScheduler(
            cast(SelectionEngine, engine),
            build_store(1),
            clock=lambda: NOW,
            sleep=fake_sleep,
        )
        await scheduler.start()
        await asyncio.wait_for(engine.started.wait(), timeout=1)
        batch = scheduler._batch

        await scheduler.update_schedule(0)
        assert batch is not None and not batch.done()

        engine.release.set()
        with pytest.raises(RuntimeError):
            await batch
        await asyncio.sleep(0)

    with caplog.at_level(logging.ERROR, logger="app.services.scheduler"):
        asyncio.run(runner())

    failures = [
        record for record in caplog.records if "Scheduled refresh failed" in record.getMessage()
    ]
    assert len(failures) == 1
    assert "upstream vanished" in failures[0].getMessage()


def test_disabled_interval_schedules_nothing() -> None:
    async def runner() -> None:
        scheduler = RefreshScheduler(
            cast(SelectionEngine, CountingEngine()), build_store(0), clock=lambda: NOW
        )

        await scheduler.start()

        assert scheduler.running is False
        assert scheduler.next_run_time is None
        assert scheduler.to_payload() == {
            "refreshIntervalHours": 0,
            "lastRunTime": None,
            "nextRunTime": None,
        }

    asyncio.run(runner())


def test_update_schedule_replaces_running_job() -> None:
    async def runner() -> None:
        async def never(delay: float) -> None:
            await asyncio.Event().wait()

        scheduler = RefreshScheduler(
            cast(SelectionEngine, CountingEngine()),
            build_store(4),
            clock=lambda: NOW,
            sleep=never,
        )
        await scheduler.start()
        first_task = scheduler._task

        await scheduler.update_schedule(6)

        assert first_task is not None and first_task.cancelled()
        assert scheduler.running is True
        assert scheduler.interval_hours == 6
        assert scheduler.next_run_time == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

        await scheduler.update_schedule(0)

        assert scheduler.running is False
        assert scheduler.next_run_time is None

    asyncio.run(runner())


def test_run_once_records_completion_time() -> None:
    async def runner() -> None:
        engine = CountingEngine()
        scheduler = RefreshScheduler(
            cast(SelectionEngine, engine), build_store(0), clock=lambda: NOW
        )

        results = await scheduler.run_once()

        assert [result.slot_id for result in results] == ["one"]
        assert scheduler.last_run_time == NOW

    asyncio.run(runner())
