"""
Unit tests for business-hours evaluation.

Covers window boundaries, timezones, overnight windows and the disabled
policy. Pure functions, no I/O.
"""

from datetime import datetime, time, timezone

import pytest

from cloudcall.routing.config import BusinessHours, Schedule, Weekday
from cloudcall.routing.hours import (
    BusinessHoursEvaluator,
    HoursVerdict,
    evaluate,
    first_matching_schedule,
    schedule_matches,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _schedule(
    days=("mon",),
    start: str = "09:00",
    end: str = "17:00",
    tz: str = "UTC",
) -> Schedule:
    return Schedule(days_of_week=list(days), start_time=start, end_time=end, timezone=tz)


def _utc(day: int, hour: int, minute: int = 0, second: int = 0) -> datetime:
    # January 2024: the 1st is a Monday
    return datetime(2024, 1, day, hour, minute, second, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Window boundaries
# ---------------------------------------------------------------------------

class TestBoundaries:
    """Start is inclusive, end is exclusive."""

    @pytest.mark.parametrize("moment,expected", [
        (_utc(1, 8, 59, 59), HoursVerdict.AFTER_HOURS),
        (_utc(1, 9, 0, 0), HoursVerdict.IN_HOURS),
        (_utc(1, 16, 59, 59), HoursVerdict.IN_HOURS),
        (_utc(1, 17, 0, 0), HoursVerdict.AFTER_HOURS),
    ])
    def test_monday_nine_to_five(self, moment, expected):
        assert evaluate([_schedule()], moment) == expected

    def test_other_day_is_after_hours(self):
        # Tuesday noon
        assert evaluate([_schedule()], _utc(2, 12)) == HoursVerdict.AFTER_HOURS

    def test_no_schedules_is_after_hours(self):
        assert evaluate([], _utc(1, 12)) == HoursVerdict.AFTER_HOURS

    def test_naive_datetime_treated_as_utc(self):
        assert evaluate([_schedule()], datetime(2024, 1, 1, 9, 0)) == HoursVerdict.IN_HOURS

    def test_any_matching_schedule_is_enough(self):
        morning = _schedule(end="12:00")
        afternoon = _schedule(start="13:00")
        assert first_matching_schedule([morning, afternoon], _utc(1, 14)) is afternoon
        assert evaluate([morning, afternoon], _utc(1, 12, 30)) == HoursVerdict.AFTER_HOURS


# ---------------------------------------------------------------------------
# Timezones
# ---------------------------------------------------------------------------

class TestTimezones:

    def test_schedule_checked_in_its_own_timezone(self):
        ny = _schedule(tz="America/New_York")
        # 14:00 UTC in January is 09:00 in New York
        assert schedule_matches(ny, _utc(1, 14))
        assert not schedule_matches(ny, _utc(1, 13, 59, 59))

    def test_local_weekday_is_used(self):
        tokyo = _schedule(days=("tue",), tz="Asia/Tokyo")
        # Monday 23:00 UTC is Tuesday 08:00 in Tokyo; Tuesday 01:00 UTC is Tuesday 10:00
        assert not schedule_matches(tokyo, _utc(1, 23))
        assert schedule_matches(tokyo, _utc(2, 1))


# ---------------------------------------------------------------------------
# Overnight windows
# ---------------------------------------------------------------------------

class TestOvernight:
    """A window ending before it starts runs past midnight."""

    def test_late_evening_on_opening_day(self):
        night = _schedule(days=("mon",), start="22:00", end="06:00")
        assert schedule_matches(night, _utc(1, 23))

    def test_early_morning_belongs_to_previous_day(self):
        night = _schedule(days=("mon",), start="22:00", end="06:00")
        assert schedule_matches(night, _utc(2, 5, 59, 59))
        assert not schedule_matches(night, _utc(2, 6))

    def test_early_morning_of_opening_day_not_covered(self):
        night = _schedule(days=("mon",), start="22:00", end="06:00")
        assert not schedule_matches(night, _utc(1, 3))

    def test_equal_start_and_end_covers_whole_day(self):
        always = _schedule(days=("mon",), start="00:00", end="00:00")
        assert schedule_matches(always, _utc(1, 0))
        assert schedule_matches(always, _utc(1, 23, 59, 59))


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class TestEvaluator:

    def test_disabled_policy_has_no_verdict(self):
        policy = BusinessHours(enabled=False, schedules=[_schedule()])
        evaluator = BusinessHoursEvaluator()

        assert evaluator.verdict(policy, _utc(2, 3)) is None
        assert evaluator.is_after_hours(policy, _utc(2, 3)) is False

    def test_enabled_policy_after_hours(self):
        policy = BusinessHours(enabled=True, schedules=[_schedule()])
        assert BusinessHoursEvaluator().is_after_hours(policy, _utc(1, 18)) is True

    def test_schedule_parsing(self):
        s = _schedule(days=("Monday", "fri", 3, "0"))
        assert s.days_of_week == [Weekday.MONDAY, Weekday.FRIDAY, Weekday.WEDNESDAY, Weekday.SUNDAY]
        assert s.start_time == time(9, 0)
