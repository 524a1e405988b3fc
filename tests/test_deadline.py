from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import FRIDAY_11_AMSTERDAM
from models.schemas import Schedule
from services.deadline import (
    cron_weekday,
    day_bounds,
    due_occurrence,
    is_due,
    next_occurrence,
    occurrence_between,
)

AMS = ZoneInfo("Europe/Amsterdam")
# 2026-10-16 is a Friday; CEST (+02:00) until 2026-10-25
FRIDAY = datetime(2026, 10, 16, 11, 0, tzinfo=AMS)


def test_friday_before_cutoff_returns_same_day():
    ref = datetime(2026, 10, 16, 10, 59, tzinfo=AMS)
    assert next_occurrence(ref, FRIDAY_11_AMSTERDAM) == FRIDAY


def test_friday_after_cutoff_returns_following_friday():
    ref = datetime(2026, 10, 16, 11, 1, tzinfo=AMS)
    assert next_occurrence(ref, FRIDAY_11_AMSTERDAM) == datetime(2026, 10, 23, 11, 0, tzinfo=AMS)


def test_exact_occurrence_is_inclusive():
    assert next_occurrence(FRIDAY, FRIDAY_11_AMSTERDAM) == FRIDAY


def test_one_minute_after_is_exactly_one_week_later():
    ref = FRIDAY + timedelta(minutes=1)
    assert next_occurrence(ref, FRIDAY_11_AMSTERDAM) - FRIDAY == timedelta(days=7)


def test_one_second_after_cutoff_rolls_over():
    ref = FRIDAY + timedelta(seconds=1)
    assert next_occurrence(ref, FRIDAY_11_AMSTERDAM) == datetime(2026, 10, 23, 11, 0, tzinfo=AMS)


def test_reference_in_utc_is_converted_to_schedule_zone():
    # 08:30 UTC == 10:30 CEST on the Friday
    ref = datetime(2026, 10, 16, 8, 30, tzinfo=timezone.utc)
    result = next_occurrence(ref, FRIDAY_11_AMSTERDAM)
    assert result == FRIDAY
    assert result.tzinfo == AMS


def test_wall_clock_is_kept_across_dst_change():
    # clocks go back on Sunday 2026-10-25, the following Friday is CET (+01:00)
    ref = datetime(2026, 10, 23, 11, 1, tzinfo=AMS)
    result = next_occurrence(ref, FRIDAY_11_AMSTERDAM)
    assert (result.hour, result.minute) == (11, 0)
    assert result.utcoffset() == timedelta(hours=1)
    assert result.astimezone(timezone.utc) == datetime(2026, 10, 30, 10, 0, tzinfo=timezone.utc)


def test_day_of_week_wraps_around_the_week():
    sunday_9 = Schedule(day_of_week=0, hour=9, minute=0, timezone="UTC")
    saturday = datetime(2026, 10, 17, 23, 0, tzinfo=timezone.utc)
    assert next_occurrence(saturday, sunday_9) == datetime(2026, 10, 18, 9, 0, tzinfo=ZoneInfo("UTC"))


def test_naive_reference_is_rejected():
    with pytest.raises(ValueError):
        next_occurrence(datetime(2026, 10, 16, 10, 0), FRIDAY_11_AMSTERDAM)


@pytest.mark.parametrize("schedule", [
    FRIDAY_11_AMSTERDAM,
    Schedule(day_of_week=0, hour=0, minute=0, timezone="UTC"),
    Schedule(day_of_week=6, hour=23, minute=59, timezone="America/New_York"),
    Schedule(day_of_week=1, hour=7, minute=30, timezone="Asia/Kolkata"),
])
def test_next_occurrence_is_never_in_the_past_and_on_the_right_day(schedule):
    start = datetime(2026, 10, 10, 0, 0, tzinfo=timezone.utc)
    for step in range(0, 21 * 24 * 4):  # three weeks in 15 minute steps
        ref = start + timedelta(minutes=15 * step)
        result = next_occurrence(ref, schedule)
        assert result >= ref
        assert result - ref < timedelta(days=7, hours=1)
        assert cron_weekday(result) == schedule.day_of_week
        assert (result.hour, result.minute) == (schedule.hour, schedule.minute)


def test_is_due_matches_exactly_one_tick_per_occurrence():
    tolerance = timedelta(seconds=60)
    ticks = [FRIDAY - timedelta(minutes=3) + timedelta(seconds=60 * i) for i in range(7)]
    matched = [t for t in ticks if is_due(t, FRIDAY_11_AMSTERDAM, tolerance)]
    assert matched == [FRIDAY]


def test_is_due_with_jittered_ticks():
    tolerance = timedelta(seconds=60)
    ticks = [FRIDAY - timedelta(seconds=50), FRIDAY + timedelta(seconds=10), FRIDAY + timedelta(seconds=70)]
    matched = [t for t in ticks if is_due(t, FRIDAY_11_AMSTERDAM, tolerance)]
    assert matched == [FRIDAY + timedelta(seconds=10)]
    assert due_occurrence(FRIDAY + timedelta(seconds=10), FRIDAY_11_AMSTERDAM, tolerance) == FRIDAY


def test_is_due_false_on_other_days():
    thursday = datetime(2026, 10, 15, 11, 0, tzinfo=AMS)
    assert not is_due(thursday, FRIDAY_11_AMSTERDAM, timedelta(seconds=60))


def test_day_bounds_cover_local_calendar_day():
    start, end = day_bounds(datetime(2026, 10, 15, 23, 30, tzinfo=timezone.utc), AMS)
    # 23:30 UTC on Thursday is already Friday in Amsterdam
    assert start == datetime(2026, 10, 16, 0, 0, tzinfo=AMS)
    assert end == datetime(2026, 10, 16, 23, 59, 59, 999999, tzinfo=AMS)


def test_occurrence_between_is_half_open():
    assert occurrence_between(FRIDAY - timedelta(seconds=1), FRIDAY, FRIDAY_11_AMSTERDAM) == FRIDAY
    # the occurrence sits on the start boundary: the previous window owned it
    assert occurrence_between(FRIDAY, FRIDAY + timedelta(minutes=1), FRIDAY_11_AMSTERDAM) is None


def test_adjacent_windows_cover_every_instant():
    start = FRIDAY - timedelta(seconds=59, milliseconds=995)
    hits = []
    for _ in range(4):
        end = start + timedelta(seconds=60, milliseconds=10)
        hits.append(occurrence_between(start, end, FRIDAY_11_AMSTERDAM))
        start = end
    assert [h for h in hits if h is not None] == [FRIDAY]


def test_empty_window_matches_nothing():
    assert occurrence_between(FRIDAY + timedelta(seconds=1), FRIDAY, FRIDAY_11_AMSTERDAM) is None
