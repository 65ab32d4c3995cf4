"""
Cron-driven asyncio scheduler for the market polling job.
Fires once at startup and then on every cron instant in the configured timezone.
At most one job run is in flight; triggers that arrive during a run are skipped.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, Callable, Optional

import pytz

from market_watcher.metrics import metrics_registry
from market_watcher.utils.config_loader import SchedulerConfig
from market_watcher.utils.logger import LOGGER as logger
from market_watcher.utils.time_helper import get_next_fire_time


class Scheduler:
    def __init__(
        self,
        job_callback: Callable[[], Awaitable[Any]],
        scheduler_config: SchedulerConfig,
    ):
        self.job_callback = job_callback
        self.cron_expression = scheduler_config.cron_expression
        self.tz = pytz.timezone(scheduler_config.timezone)
        self.run_on_startup = scheduler_config.run_on_startup

        # Loop and run bookkeeping
        self._scheduler_task: Optional[asyncio.Task[None]] = None
        self._run_tasks: set[asyncio.Task[bool]] = set()
        self._is_running = False
        self._lock = asyncio.Lock()
        self._run_lock = asyncio.Lock()

        # Statistics
        self._runs_completed = 0
        self._runs_failed = 0
        self._runs_skipped = 0
        self._last_fire_time: Optional[datetime] = None
        self._next_fire_time: Optional[datetime] = None

        logger.info(
            f"Scheduler initialized: cron '{self.cron_expression}' in {scheduler_config.timezone}, "
            f"run on startup: {'enabled' if self.run_on_startup else 'disabled'}"
        )

    async def trigger(self) -> bool:
        """
        Runs the job now unless a run is already in flight.
        Returns False if the trigger was skipped. Job failures are logged, never raised.
        """
        if self._run_lock.locked():
            self._runs_skipped += 1
            metrics_registry.record_skipped_trigger()
            logger.warning("Previous poll cycle still running. Skipping this trigger.")
            return False

        async with self._run_lock:
            try:
                await self.job_callback()
                self._runs_completed += 1
                logger.debug("Poll cycle completed")
            except asyncio.CancelledError:
                logger.info("Poll cycle cancelled")
                raise
            except Exception as e:
                self._runs_failed += 1
                logger.opt(exception=True).error(f"Poll cycle failed: {e}")
        return True

    def _spawn_run(self) -> None:
        task = asyncio.create_task(self.trigger())
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)

    def _compute_next_fire(self, now: datetime) -> datetime:
        # An early wake-up must not fire the same instant twice.
        base = now
        if self._last_fire_time is not None and self._last_fire_time >= now:
            base = self._last_fire_time
        return get_next_fire_time(self.cron_expression, base, self.tz)

    async def _run_scheduler(self) -> None:
        logger.info("Cron loop running")
        try:
            if self.run_on_startup:
                logger.info("Triggering startup poll cycle.")
                self._spawn_run()

            while self._is_running:
                now = datetime.now(self.tz)
                next_fire = self._compute_next_fire(now)
                self._next_fire_time = next_fire
                time_to_sleep = (next_fire - now).total_seconds()
                logger.debug(f"Sleeping {time_to_sleep:.2f}s until {next_fire.isoformat()}")
                await asyncio.sleep(max(0.0, time_to_sleep))

                self._last_fire_time = next_fire
                logger.info(f"Cron trigger at {next_fire.isoformat()}")
                self._spawn_run()

        except asyncio.CancelledError:
            logger.info("Cron loop cancelled")
            raise
        except Exception as e:
            logger.opt(exception=True).critical(f"Cron loop crashed: {e}")
            raise
        finally:
            logger.info("Cron loop exited")

    async def start(self) -> None:
        """Spawn the cron loop as a background task and return immediately."""
        async with self._lock:
            if self._is_running:
                logger.warning("start() ignored: poller already running")
                return

            if self._scheduler_task is not None and not self._scheduler_task.done():
                logger.warning("start() ignored: previous cron loop has not finished")
                return

            self._is_running = True
            self._scheduler_task = asyncio.create_task(self._run_scheduler())
            logger.info(f"Poller started on '{self.cron_expression}' ({self.tz.zone})")

    async def stop(self) -> None:
        """
        Stop the scheduler, cancelling any in-flight poll cycle.
        """
        async with self._lock:
            if not self._is_running:
                logger.warning("stop() ignored: poller is not running")
                return

            self._is_running = False

        tasks = [t for t in [self._scheduler_task, *self._run_tasks] if t is not None]
        if tasks:
            logger.info(f"Cancelling cron loop and {len(self._run_tasks)} in-flight run(s)")
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Task raised during shutdown: {result}")
            logger.info("Poller stopped")

        self._scheduler_task = None
        self._run_tasks.clear()

    def is_running(self) -> bool:
        return self._is_running

    def get_status(self) -> dict[str, Any]:
        """Snapshot of loop state and run counters, with ISO timestamps."""
        return {
            "is_running": self._is_running,
            "cron_expression": self.cron_expression,
            "timezone": self.tz.zone,
            "run_in_flight": self._run_lock.locked(),
            "runs_completed": self._runs_completed,
            "runs_failed": self._runs_failed,
            "runs_skipped": self._runs_skipped,
            "last_fire_time": self._last_fire_time.isoformat() if self._last_fire_time else None,
            "next_fire_time": self._next_fire_time.isoformat() if self._next_fire_time else None,
            "task_done": self._scheduler_task.done() if self._scheduler_task else True,
        }
