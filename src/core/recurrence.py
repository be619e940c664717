"""Recurrence evaluator — pure calendar arithmetic.

Answers two questions for any schedule: "is it due on this date?" and
"what is its next due date?". Works on local calendar dates; OneShot
instants are converted to the household timezone before comparison.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from src.data.models import (
    Daily,
    EveryNDays,
    Monthly,
    Obligation,
    OneShot,
    Schedule,
    Weekly,
    Yearly,
)

logger = logging.getLogger(__name__)


def is_due(schedule: Schedule, day: date, tz: str | None = None) -> bool:
    """Return True if the schedule has an occurrence on ``day``."""
    if isinstance(schedule, Daily):
        return True

    if isinstance(schedule, OneShot):
        return _local_date(schedule, tz) == day

    if isinstance(schedule, Weekly):
        if day < schedule.anchor:
            return False
        return (day - schedule.anchor).days % 7 == 0

    if isinstance(schedule, EveryNDays):
        if schedule.n <= 0:
            logger.warning("EveryNDays with n=%d is never due", schedule.n)
            return False
        if day < schedule.anchor:
            return False
        return (day - schedule.anchor).days % schedule.n == 0

    if isinstance(schedule, Yearly):
        if day < schedule.anchor:
            return False
        return _yearly_date(schedule.anchor, day.year) == day

    if isinstance(schedule, Monthly):
        if schedule.anchor is not None and day < schedule.anchor:
            return False
        return _monthly_date(schedule.day_of_month, day.year, day.month) == day

    raise TypeError(f"Unknown schedule type: {type(schedule).__name__}")


def next_occurrence(
    schedule: Schedule,
    day: date,
    tz: str | None = None,
    include_today: bool = True,
) -> date | None:
    """Return the first due date on or after ``day``.

    With ``include_today=False`` the search starts the day after (today's
    instant has already passed). Returns None when the schedule will never
    be due again.
    """
    start = day if include_today else day + timedelta(days=1)

    if isinstance(schedule, Daily):
        return start

    if isinstance(schedule, OneShot):
        at = _local_date(schedule, tz)
        return at if at >= start else None

    if isinstance(schedule, Weekly):
        if start <= schedule.anchor:
            return schedule.anchor
        delta = (start - schedule.anchor).days
        return start + timedelta(days=(7 - delta % 7) % 7)

    if isinstance(schedule, EveryNDays):
        n = schedule.n
        if n <= 0:
            return None
        if start <= schedule.anchor:
            return schedule.anchor
        delta = (start - schedule.anchor).days
        return start + timedelta(days=(n - delta % n) % n)

    if isinstance(schedule, Yearly):
        if start <= schedule.anchor:
            return schedule.anchor
        candidate = _yearly_date(schedule.anchor, start.year)
        if candidate < start:
            candidate = _yearly_date(schedule.anchor, start.year + 1)
        return candidate

    if isinstance(schedule, Monthly):
        if schedule.anchor is not None and start < schedule.anchor:
            start = schedule.anchor
        candidate = _monthly_date(schedule.day_of_month, start.year, start.month)
        if candidate < start:
            following = start + relativedelta(months=1)
            candidate = _monthly_date(
                schedule.day_of_month, following.year, following.month,
            )
        return candidate

    raise TypeError(f"Unknown schedule type: {type(schedule).__name__}")


def is_obligation_due(obligation: Obligation, day: date, tz: str | None = None) -> bool:
    """Schedule check plus the obligation's active flag and validity range."""
    if not obligation.is_active:
        return False
    if obligation.valid_from is not None and day < obligation.valid_from:
        return False
    if obligation.valid_until is not None and day > obligation.valid_until:
        return False
    return is_due(obligation.schedule, day, tz)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _local_date(schedule: OneShot, tz: str | None) -> date:
    at = schedule.at
    if tz and at.tzinfo is not None:
        at = at.astimezone(ZoneInfo(tz))
    return at.date()


def _yearly_date(anchor: date, year: int) -> date:
    """The anchor's month/day in ``year``; relativedelta clamps Feb 29 to Feb 28."""
    return anchor + relativedelta(year=year)


def _monthly_date(day_of_month: int, year: int, month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day_of_month, last_day)))
