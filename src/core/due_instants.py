"""Due-instant resolver — turns due dates into absolute notify instants.

For every date the recurrence evaluator reports due, each time-of-day is
localized in the household timezone, then crossed with every reminder
offset to get the instant at which a reminder should fire.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core.errors import ScheduleConfigError
from src.core.recurrence import is_obligation_due
from src.data.models import Obligation, OneShot

logger = logging.getLogger(__name__)

_MINUTES_PER_DAY = 1440


@dataclass(frozen=True)
class NotifyCandidate:
    """One reminder that should fire at ``notify_at``."""

    obligation_id: str
    notify_at: datetime
    offset: int                    # minutes before due_at
    due_at: datetime
    due_date: date
    time_of_day: time | None = None
    notice_key: str | None = None  # set for custom notices
    notice_body: str | None = None


def zone(tz: str) -> ZoneInfo:
    """Resolve a timezone name, raising ScheduleConfigError when unknown."""
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ScheduleConfigError(f"Unknown timezone: {tz!r}") from exc


def localize(day: date, time_of_day: time, tz: str) -> datetime:
    """Attach the household timezone to a local date + time."""
    return datetime.combine(day, time_of_day, tzinfo=zone(tz))


def candidate_dates(obligation: Obligation, today: date) -> list[date]:
    """Dates whose instants may produce reminders around ``today``.

    Yesterday is included so a catch-up window crossing midnight still
    sees late-evening reminders; days ahead are included when an offset
    reaches into tomorrow or beyond ("tomorrow" reminders).
    """
    max_offset = max(obligation.reminder_offsets, default=0)
    days_ahead = math.ceil(max(max_offset, 0) / _MINUTES_PER_DAY)
    return [today + timedelta(days=i) for i in range(-1, days_ahead + 1)]


def resolve_instants(
    obligation: Obligation, today: date, tz: str,
) -> list[NotifyCandidate]:
    """Return every notify candidate for ``obligation`` near ``today``.

    Output is sorted by due instant, then ascending offset.
    """
    candidates: list[NotifyCandidate] = []
    zone(tz)

    for day in candidate_dates(obligation, today):
        if not is_obligation_due(obligation, day, tz):
            continue
        for due_at, time_of_day in _due_instants(obligation, day, tz):
            for offset in sorted(set(obligation.reminder_offsets)):
                if offset < 0:
                    logger.warning(
                        "Ignoring negative offset %d on %s", offset, obligation.id,
                    )
                    continue
                candidates.append(NotifyCandidate(
                    obligation_id=obligation.id,
                    notify_at=due_at - timedelta(minutes=offset),
                    offset=offset,
                    due_at=due_at,
                    due_date=day,
                    time_of_day=time_of_day,
                ))

    if obligation.is_active:
        for notice in obligation.custom_notices:
            candidates.append(NotifyCandidate(
                obligation_id=obligation.id,
                notify_at=notice.at,
                offset=0,
                due_at=notice.at,
                due_date=notice.at.astimezone(zone(tz)).date(),
                notice_key=notice.key,
                notice_body=notice.body,
            ))

    candidates.sort(key=lambda c: (c.due_at, c.offset, c.notice_key or ""))
    return candidates


def _due_instants(
    obligation: Obligation, day: date, tz: str,
) -> list[tuple[datetime, time | None]]:
    if isinstance(obligation.schedule, OneShot):
        at = obligation.schedule.at
        if at.tzinfo is None:
            at = at.replace(tzinfo=zone(tz))
        return [(at, None)]
    return [(localize(day, t, tz), t) for t in obligation.times_of_day]
