"""
Reminder ticker.

Purpose:
- Drive ReminderScheduler.on_tick on a fixed wall-clock cadence
- Run inside the API process (started on app startup) or standalone

Usage:
- python -m workers.reminder_ticker

Production notes:
- When several processes run the ticker, set USE_REDIS_LOCK=true so only one
  of them sends reminders for a given deadline
"""
import asyncio
import logging
import signal
from datetime import datetime, timezone
from typing import Optional

from config.settings import settings
from core.logging import configure_logging
from services.reminder_scheduler import ReminderScheduler

logger = logging.getLogger(__name__)


class ReminderTicker:
    """Periodic tick loop. A failing tick is logged and the loop keeps going."""

    def __init__(self, scheduler: ReminderScheduler, interval_seconds: float):
        self.scheduler = scheduler
        self.interval = max(1.0, float(interval_seconds))
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            logger.debug("Reminder ticker already running")
            return self._task
        self._task = asyncio.create_task(self._run(), name="reminder-ticker")
        logger.info(
            "Reminder ticker started: every %.0fs, schedule=%s",
            self.interval, self.scheduler.schedule.model_dump(),
        )
        return self._task

    async def _run(self):
        while True:
            try:
                await self.scheduler.on_tick(datetime.now(timezone.utc))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Reminder tick failed: %s", e)
            await asyncio.sleep(self.interval)

    async def stop(self):
        """Cancel the loop; an active run gets a partial report instead of being cut silently."""
        self.scheduler.cancel_active_run()
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Reminder ticker stopped")
        finally:
            self._task = None


async def main():
    """Entry point for running the ticker as its own process."""
    configure_logging(settings.LOG_LEVEL)
    from core.singleton import reminder_scheduler
    from infra.redis_client import close_redis

    ticker = ReminderTicker(reminder_scheduler, settings.REMINDER_TICK_SECONDS)
    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopped.set)
        except NotImplementedError:
            pass  # Windows

    ticker.start()
    try:
        await stopped.wait()
    finally:
        await ticker.stop()
        await close_redis()

if __name__ == "__main__":
    asyncio.run(main())
