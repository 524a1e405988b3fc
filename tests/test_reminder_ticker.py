import asyncio

import pytest

from conftest import FRIDAY_11_AMSTERDAM
from workers.reminder_ticker import ReminderTicker


class RecordingScheduler:
    schedule = FRIDAY_11_AMSTERDAM

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.ticks = []
        self.ticked = asyncio.Event()
        self.cancelled = 0

    async def on_tick(self, now):
        self.ticks.append(now)
        self.ticked.set()
        if self.fail:
            raise RuntimeError("tick exploded")

    def cancel_active_run(self):
        self.cancelled += 1
        return False


@pytest.mark.asyncio
async def test_ticker_ticks_with_aware_utc_time_and_stops():
    scheduler = RecordingScheduler()
    ticker = ReminderTicker(scheduler, interval_seconds=60)

    task = ticker.start()
    assert ticker.start() is task
    await asyncio.wait_for(scheduler.ticked.wait(), timeout=1)
    await ticker.stop()

    assert task.done()
    assert scheduler.cancelled == 1
    assert scheduler.ticks[0].tzinfo is not None


@pytest.mark.asyncio
async def test_failing_tick_does_not_kill_the_loop():
    scheduler = RecordingScheduler(fail=True)
    ticker = ReminderTicker(scheduler, interval_seconds=60)

    task = ticker.start()
    await asyncio.wait_for(scheduler.ticked.wait(), timeout=1)
    await asyncio.sleep(0)
    # the exception was logged; the loop is now sleeping until the next tick
    assert not task.done()
    await ticker.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_a_no_op():
    scheduler = RecordingScheduler()
    ticker = ReminderTicker(scheduler, interval_seconds=5)
    await ticker.stop()
    assert scheduler.cancelled == 1
