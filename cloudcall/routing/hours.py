"""
Business-hours evaluation.

Decides whether an instant falls inside any schedule of a business-hours
policy. Each schedule is checked in its own timezone; windows are start
inclusive and end exclusive.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from ..core.protocols import as_utc
from .config import BusinessHours, Schedule, Weekday

logger = logging.getLogger("cloudcall.routing.hours")


class HoursVerdict(Enum):
    IN_HOURS = "in_hours"
    AFTER_HOURS = "after_hours"


def schedule_matches(schedule: Schedule, now: datetime) -> bool:
    """
    Check one schedule against an instant.

    A window whose end is not after its start runs past midnight; its
    days refer to the day the window opens.
    """
    local = as_utc(now).astimezone(schedule.tz)
    current = local.time().replace(tzinfo=None)
    days = set(schedule.days_of_week)

    if schedule.start_time < schedule.end_time:
        return Weekday.of(local) in days and schedule.start_time <= current < schedule.end_time

    # Overnight window
    if Weekday.of(local) in days and current >= schedule.start_time:
        return True
    previous_day = Weekday.of(local - timedelta(days=1))
    return previous_day in days and current < schedule.end_time


def first_matching_schedule(
    schedules: Iterable[Schedule],
    now: datetime,
) -> Optional[Schedule]:
    """Return the first schedule that covers ``now``, if any."""
    for schedule in schedules:
        if schedule_matches(schedule, now):
            return schedule
    return None


def evaluate(schedules: Iterable[Schedule], now: datetime) -> HoursVerdict:
    """In hours when any schedule matches, after hours otherwise."""
    if first_matching_schedule(schedules, now) is not None:
        return HoursVerdict.IN_HOURS
    return HoursVerdict.AFTER_HOURS


class BusinessHoursEvaluator:
    """
    Applies a business-hours policy.

    A disabled policy is never consulted, so ``is_after_hours`` is False
    for it regardless of the clock.
    """

    def verdict(self, policy: BusinessHours, now: datetime) -> Optional[HoursVerdict]:
        """Verdict for an enabled policy, None for a disabled one."""
        if not policy.enabled:
            return None
        result = evaluate(policy.schedules, now)
        logger.debug("Business hours verdict at %s: %s", now.isoformat(), result.value)
        return result

    def is_after_hours(self, policy: BusinessHours, now: datetime) -> bool:
        return self.verdict(policy, now) == HoursVerdict.AFTER_HOURS
