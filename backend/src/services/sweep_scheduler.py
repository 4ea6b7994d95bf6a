"""
Background scheduler for the reminder and no-show sweeps.

Both sweeps are synchronous (database + dispatcher I/O), so each job
offloads its work to a thread to keep the FastAPI event loop responsive.
The instance is created in the application lifespan and kept on
``app.state``; it can be stopped and started again.
"""

import asyncio
import logging
from datetime import timezone
from typing import Any, Callable, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore

from core.config import NO_SHOW_SWEEP_INTERVAL_SECONDS, REMINDER_SWEEP_INTERVAL_SECONDS
from core.constants import SWEEP_SCHEDULER_MAX_INSTANCES
from services.no_show_service import NoShowService
from services.reminder_service import ReminderService
from shared_types import SweepResult

logger = logging.getLogger(__name__)


class SweepScheduler:
    """
    Runs the reminder sweep and the no-show sweep at fixed intervals.

    On start the reminder catch-up runs immediately instead of waiting for
    the first tick, so reminders that fell due during downtime go out.
    """

    def __init__(
        self,
        reminder_service: ReminderService,
        no_show_service: Optional[NoShowService] = None,
        reminder_interval_seconds: int = REMINDER_SWEEP_INTERVAL_SECONDS,
        no_show_interval_seconds: int = NO_SHOW_SWEEP_INTERVAL_SECONDS,
    ):
        self.reminder_service = reminder_service
        self.no_show_service = no_show_service
        self.reminder_interval_seconds = reminder_interval_seconds
        self.no_show_interval_seconds = no_show_interval_seconds
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._is_started = False
        # Sweep threads still running; stop_scheduler waits for them
        self._in_flight: Set["asyncio.Task[Any]"] = set()

    @property
    def is_started(self) -> bool:
        return self._is_started

    async def start_scheduler(self) -> None:
        """
        Start the background scheduler.

        This should be called during application startup. A stopped scheduler
        can be started again.
        """
        if self._is_started:
            logger.warning("Sweep scheduler is already started")
            return

        # A shut down APScheduler cannot be restarted
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.reminder_service.resume()

        self.scheduler.add_job(  # type: ignore
            self._run_reminder_sweep,
            IntervalTrigger(seconds=self.reminder_interval_seconds),
            id="reminder_sweep",
            name="Send due appointment reminders",
            max_instances=SWEEP_SCHEDULER_MAX_INSTANCES,  # Prevent overlapping runs
            coalesce=True,
            replace_existing=True,
        )
        if self.no_show_service is not None:
            self.scheduler.add_job(  # type: ignore
                self._run_no_show_sweep,
                IntervalTrigger(seconds=self.no_show_interval_seconds),
                id="no_show_sweep",
                name="Mark overdue appointments as no-show",
                max_instances=SWEEP_SCHEDULER_MAX_INSTANCES,
                coalesce=True,
                replace_existing=True,
            )

        self.scheduler.start()
        self._is_started = True
        logger.info(
            f"Sweep scheduler started (reminders every {self.reminder_interval_seconds}s, "
            f"offsets {', '.join(self.reminder_service.offsets)})"
        )

        # Catch up on reminders that fell due while the process was down
        await self._run_reminder_catch_up()

    async def stop_scheduler(self) -> None:
        """
        Stop the background scheduler.

        The running sweep finishes its current batch before this returns; no
        new batch or job starts.
        """
        if not self._is_started:
            return
        self.reminder_service.request_stop()
        self.scheduler.shutdown(wait=False)
        self._is_started = False

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} running sweep(s) to finish")
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Sweep scheduler stopped")

    async def _run_in_thread(self, func: Callable[[], Any]) -> Any:
        """
        Run a sweep in a worker thread and track it until it returns.

        The thread cannot be interrupted, so the job coroutine only shields it:
        cancelling the job leaves the task for stop_scheduler to await.
        """
        task = asyncio.ensure_future(asyncio.to_thread(func))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    async def _run_reminder_catch_up(self) -> Optional[SweepResult]:
        try:
            return await self._run_in_thread(self.reminder_service.run_catch_up)
        except Exception as e:
            logger.exception(f"Reminder catch-up failed: {e}")
            return None

    async def _run_reminder_sweep(self) -> Optional[SweepResult]:
        try:
            return await self._run_in_thread(self.reminder_service.run_sweep)
        except Exception as e:
            # Don't re-raise - allow scheduler to continue
            logger.exception(f"Reminder sweep failed: {e}")
            return None

    async def _run_no_show_sweep(self) -> int:
        assert self.no_show_service is not None
        try:
            return await self._run_in_thread(self.no_show_service.run_sweep)
        except Exception as e:
            logger.exception(f"No-show sweep failed: {e}")
            return 0
