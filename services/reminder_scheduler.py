"""
Reminder scheduler.

Purpose:
- On each tick, decide whether the tick hits the weekly deadline occurrence
- Query members who have not picked a snack yet, compose the reminder once,
  fan it out with bounded concurrency and fold the outcomes into a RunReport
- Offer the same run as a manual trigger, behind the same single-run guard

States: IDLE -> RUNNING on a due tick or a manual trigger, back to IDLE once the
whole fan-out has been joined, whatever the individual outcomes.

Failure policy:
- eligibility query fails -> EligibilityQueryError, nothing dispatched
- individual sends fail   -> counted in the report, the run continues
- run already active      -> ConcurrentRunRejected, the query is never made
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Protocol

from core.errors import ConcurrentRunRejected, EligibilityQueryError
from models.schemas import DeliveryOutcome, RunReport, Schedule, Subscriber
from services.composer import DEFAULT_COPY, ReminderCopy, compose_reminder
from services.deadline import day_bounds, occurrence_between
from services.push_dispatcher import PushDispatcher
from services.run_guard import InProcessRunGuard, RunGuard

logger = logging.getLogger(__name__)


class EligibilityQuery(Protocol):
    """Read-only: members with reminders on, an endpoint, and no selection in the period."""

    async def find_unselected(self, period_start: datetime, period_end: datetime) -> List[Subscriber]:
        ...


class EndpointRegistry(Protocol):
    """Write side used only by the explicit deregistration follow-up."""

    async def clear_endpoints(self, user_ids: Iterable[str]) -> List[str]:
        ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class ReminderScheduler:
    def __init__(
        self,
        schedule: Schedule,
        eligibility: EligibilityQuery,
        dispatcher: PushDispatcher,
        guard: Optional[RunGuard] = None,
        tick_interval: timedelta = timedelta(seconds=60),
        copy: ReminderCopy = DEFAULT_COPY,
        deregister_expired: bool = False,
        endpoints: Optional[EndpointRegistry] = None,
        misfire_grace: timedelta = timedelta(hours=1),
    ):
        self.schedule = schedule
        self.eligibility = eligibility
        # stores usually implement both sides
        self.endpoints = endpoints if endpoints is not None else eligibility
        self.dispatcher = dispatcher
        self.guard = guard or InProcessRunGuard()
        self.tick_interval = tick_interval
        self.copy = copy
        self.auto_deregister = deregister_expired
        self.state = SchedulerState.IDLE
        self.last_report: Optional[RunReport] = None
        self.misfire_grace = misfire_grace
        self._last_fired: Optional[datetime] = None
        self._last_tick: Optional[datetime] = None
        self._stop = asyncio.Event()

    async def on_tick(self, now: Optional[datetime] = None) -> Optional[RunReport]:
        """
        Timer entry point. Returns the report when the tick ran reminders, otherwise None.
        Never raises for a mismatched tick, a concurrent run or a failed query.
        """
        now = now or datetime.now(timezone.utc)
        occurrence = occurrence_between(self._window_start(now), now, self.schedule)
        if self._last_tick is None or now > self._last_tick:
            self._last_tick = now
        if occurrence is None:
            logger.debug("Tick %s does not match the reminder schedule", now.isoformat())
            return None
        if occurrence == self._last_fired:
            logger.debug("Occurrence %s already handled", occurrence.isoformat())
            return None
        self._last_fired = occurrence

        logger.info("Running scheduled reminders for %s", occurrence.isoformat())
        try:
            return await self.run_reminders(now, trigger="scheduled")
        except ConcurrentRunRejected:
            logger.warning("Scheduled tick dropped: a reminder run is already active")
        except EligibilityQueryError as e:
            logger.error("Scheduled reminder run aborted: %s", e)
        return None

    def _window_start(self, now: datetime) -> datetime:
        """
        Ticks cover (previous tick, now], so a late or drifting tick still sees
        an occurrence that fell between two ticks. Occurrences older than
        misfire_grace are skipped rather than sent late.
        """
        earliest = now - max(self.tick_interval, self.misfire_grace)
        if self._last_tick is None:
            return now - self.tick_interval
        return max(self._last_tick, earliest)

    async def run_reminders(self, now: Optional[datetime] = None, trigger: str = "manual") -> RunReport:
        """One reminder pass. Raises ConcurrentRunRejected or EligibilityQueryError."""
        now = now or datetime.now(timezone.utc)
        if not await self.guard.acquire():
            logger.warning("Reminder run (%s) rejected: another run is active", trigger)
            raise ConcurrentRunRejected()

        self.state = SchedulerState.RUNNING
        self._stop.clear()
        try:
            period_start, period_end = day_bounds(now, self.schedule.tzinfo)
            report = RunReport(
                trigger=trigger,
                started_at=datetime.now(timezone.utc),
                period_start=period_start,
                period_end=period_end,
            )
            try:
                subscribers = await self.eligibility.find_unselected(period_start, period_end)
            except Exception as e:
                logger.exception("Eligibility query failed")
                raise EligibilityQueryError(f"Could not load subscribers without a selection: {e}") from e

            report.eligible = len(subscribers)
            logger.info("Found %d subscribers without a selection", report.eligible)

            payload = compose_reminder(now, self.copy)
            await self._fan_out(subscribers, payload, report)

            if self.auto_deregister and report.expired_subscriber_ids:
                await self.deregister_expired(report)

            logger.info(
                "Reminder run finished: eligible=%d delivered=%d expired=%d failed=%d partial=%s",
                report.eligible, report.delivered, report.expired, report.failed, report.partial,
            )
            return report
        finally:
            self.state = SchedulerState.IDLE
            await self.guard.release()

    async def _fan_out(self, subscribers, payload, report: RunReport):
        tasks = self.dispatcher.spawn(subscribers, payload)
        waiting = set(tasks)
        stop_waiter = asyncio.create_task(self._stop.wait())
        try:
            while waiting:
                done, _ = await asyncio.wait(waiting | {stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                waiting -= done
                if stop_waiter in done:
                    logger.warning("Reminder run cancelled with %d sends outstanding", len(waiting))
                    report.partial = True
                    break
        except asyncio.CancelledError:
            report.partial = True
            await self._abandon(waiting)
            self._finish(report, tasks)
            logger.warning("Reminder run task cancelled; partial report recorded")
            raise
        finally:
            stop_waiter.cancel()

        await self._abandon(waiting)
        self._finish(report, tasks)

    async def _abandon(self, pending):
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _finish(self, report: RunReport, tasks):
        outcomes: List[DeliveryOutcome] = [
            t.result() for t in tasks
            if t.done() and not t.cancelled() and t.exception() is None
        ]
        report.fold(outcomes)
        report.finished_at = datetime.now(timezone.utc)
        self.last_report = report

    def cancel_active_run(self) -> bool:
        """Ask the active run to stop waiting for outstanding sends. Returns False when idle."""
        if self.state != SchedulerState.RUNNING:
            return False
        self._stop.set()
        return True

    async def deregister_expired(self, report: RunReport) -> List[str]:
        """Explicit follow-up: drop the endpoints the push service reported as gone."""
        if not report.expired_subscriber_ids:
            return []
        cleared = await self.endpoints.clear_endpoints(report.expired_subscriber_ids)
        report.deregistered = list(cleared)
        return report.deregistered
