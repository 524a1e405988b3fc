"""
Weekly deadline arithmetic.

All functions are pure: they take aware datetimes and a Schedule and never read
the clock. Day-of-week follows cron numbering (0 = Sunday, 5 = Friday).
"""
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Tuple

from models.schemas import Schedule


def cron_weekday(moment: datetime) -> int:
    """Day-of-week of `moment` in its own timezone, 0 = Sunday."""
    return moment.isoweekday() % 7


def _at(day: date, schedule: Schedule) -> datetime:
    return datetime.combine(day, time(schedule.hour, schedule.minute), tzinfo=schedule.tzinfo)


def next_occurrence(reference: datetime, schedule: Schedule) -> datetime:
    """
    First instant >= reference that falls on the schedule's weekday and
    time-of-day, expressed in the schedule's timezone.

    A reference exactly at the occurrence returns that occurrence; one later
    on the same day returns the occurrence a week ahead.
    """
    if reference.tzinfo is None:
        raise ValueError("reference must be timezone-aware")
    local = reference.astimezone(schedule.tzinfo)
    days_ahead = (schedule.day_of_week - cron_weekday(local)) % 7
    candidate = _at(local.date() + timedelta(days=days_ahead), schedule)
    if candidate < reference:
        # only possible when days_ahead == 0 and the time already passed
        candidate = _at(local.date() + timedelta(days=days_ahead + 7), schedule)
    return candidate


def is_due(tick: datetime, schedule: Schedule, tolerance: timedelta) -> bool:
    """True when an occurrence falls in (tick - tolerance, tick]."""
    return due_occurrence(tick, schedule, tolerance) is not None


def due_occurrence(tick: datetime, schedule: Schedule, tolerance: timedelta) -> Optional[datetime]:
    """The occurrence matched by `tick`, or None when the tick is not due."""
    return occurrence_between(tick - tolerance, tick, schedule)


def occurrence_between(start: datetime, end: datetime, schedule: Schedule) -> Optional[datetime]:
    """
    First occurrence in the half-open window (start, end], or None.

    Consecutive windows that share their boundary never match the same
    occurrence twice and never leave a gap between them.
    """
    occurrence = next_occurrence(start, schedule)
    if occurrence == start:
        occurrence = next_occurrence(start + timedelta(microseconds=1), schedule)
    if start < occurrence <= end:
        return occurrence
    return None


def day_bounds(instant: datetime, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Local calendar day containing `instant`, as inclusive [00:00, 23:59:59.999999]."""
    local_day = instant.astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz) - timedelta(microseconds=1)
    return start, end
