import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from market_watcher.utils.config_loader import SchedulerConfig
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.scheduler import Scheduler


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_trigger_runs_job():
    job = AsyncMock()
    scheduler = Scheduler(job, SchedulerConfig())

    assert await scheduler.trigger() is True
    job.assert_awaited_once()
    assert scheduler.get_status()["runs_completed"] == 1


@pytest.mark.asyncio
async def test_overlapping_trigger_is_skipped():
    logger.info("\n--- Starting test_overlapping_trigger_is_skipped ---")
    release = asyncio.Event()
    calls = 0

    async def slow_job():
        nonlocal calls
        calls += 1
        await release.wait()

    scheduler = Scheduler(slow_job, SchedulerConfig())
    first = asyncio.create_task(scheduler.trigger())
    await settle()

    assert scheduler.get_status()["run_in_flight"] is True
    assert await scheduler.trigger() is False

    release.set()
    assert await first is True
    assert calls == 1
    assert scheduler.get_status()["runs_skipped"] == 1
    assert await scheduler.trigger() is True
    assert calls == 2


@pytest.mark.asyncio
async def test_job_failure_does_not_propagate():
    scheduler = Scheduler(AsyncMock(side_effect=RuntimeError("provider down")), SchedulerConfig())

    assert await scheduler.trigger() is True
    status = scheduler.get_status()
    assert status["runs_failed"] == 1
    assert status["run_in_flight"] is False


@pytest.mark.asyncio
async def test_start_runs_immediately_and_stops():
    job = AsyncMock()
    scheduler = Scheduler(job, SchedulerConfig(run_on_startup=True))

    await scheduler.start()
    await settle()
    assert scheduler.is_running()
    job.assert_awaited_once()

    await scheduler.stop()
    assert not scheduler.is_running()
    assert scheduler.get_status()["task_done"] is True


@pytest.mark.asyncio
async def test_start_without_startup_run():
    job = AsyncMock()
    scheduler = Scheduler(job, SchedulerConfig(run_on_startup=False))

    await scheduler.start()
    await settle()
    job.assert_not_awaited()
    assert scheduler.get_status()["next_fire_time"] is not None
    await scheduler.stop()


@pytest.mark.asyncio
async def test_cron_loop_fires_job():
    job = AsyncMock()
    scheduler = Scheduler(job, SchedulerConfig(run_on_startup=False))

    def next_fire(expression, current_time, tz=None):
        return datetime.now(tz) + timedelta(milliseconds=10)

    with patch("market_watcher.utils.scheduler.get_next_fire_time", side_effect=next_fire):
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

    assert job.await_count >= 2
    assert scheduler.get_status()["last_fire_time"] is not None


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_run():
    started = asyncio.Event()
    cancelled = False

    async def never_finishes():
        nonlocal cancelled
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled = True
            raise

    scheduler = Scheduler(never_finishes, SchedulerConfig(run_on_startup=True))
    await scheduler.start()
    await asyncio.wait_for(started.wait(), timeout=1)

    await scheduler.stop()

    assert cancelled is True
    assert scheduler.get_status()["run_in_flight"] is False


@pytest.mark.asyncio
async def test_double_start_is_ignored():
    scheduler = Scheduler(AsyncMock(), SchedulerConfig(run_on_startup=False))
    await scheduler.start()
    task = scheduler._scheduler_task
    await scheduler.start()
    assert scheduler._scheduler_task is task
    await scheduler.stop()
