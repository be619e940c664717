"""Escalation evaluator — household alerts for obligations left incomplete.

At each configured escalation instant (household-local, 18:00 and 21:00 by
default) every medication or chore that is due today, not private, and
still incomplete raises a secondary alert to the other household members.
The assignee gets a catch-up nudge at the same instants.

Per obligation-day the lifecycle is:

    Pending -> ReminderSent{0..n} -> (Completed | EscalatedAt18 -> EscalatedAt21)

Completion is terminal: once the completion record exists, no later
escalation instant fires for that obligation-day. Each (obligation,
instant, audience) fires at most once, tracked by the dedup tracker.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Callable

from src.core.dedup import DedupKey
from src.core.due_instants import localize, zone
from src.core.recurrence import is_obligation_due
from src.data.models import ObligationKind

if TYPE_CHECKING:
    from src.core.dedup import DedupTracker
    from src.data.models import CompletionBook, HouseholdContext, Obligation

logger = logging.getLogger(__name__)

ESCALATED_KINDS = (ObligationKind.MEDICATION, ObligationKind.CHORE)

AUDIENCE_HOUSEHOLD = "household"
AUDIENCE_ASSIGNEE = "assignee"


@dataclass(frozen=True)
class Escalation:
    """One alert to send for an incomplete obligation-day."""

    obligation: Obligation
    instant: datetime
    day: date
    audience: str
    recipients: frozenset[str]

    @property
    def local_hhmm(self) -> str:
        return self.instant.strftime("%H:%M")


def is_incomplete(
    obligation: Obligation,
    day: date,
    instant: datetime,
    completions: CompletionBook,
    tz: str,
) -> bool:
    """True if the obligation-day still has something undone at ``instant``."""
    if completions.is_done(obligation.id, day):
        return False

    if obligation.kind is ObligationKind.MEDICATION:
        # Only doses scheduled at or before the escalation instant count as missed
        for t in obligation.times_of_day:
            if localize(day, t, tz) > instant:
                continue
            if not completions.is_done(obligation.id, day, t):
                return True
        return False

    return obligation.is_active


class EscalationEvaluator:
    """Finds escalation instants that entered the window since the last tick."""

    def __init__(
        self,
        escalation_times: list[time],
        notify_assignee: bool = True,
    ) -> None:
        self._times = sorted(escalation_times)
        self._notify_assignee = notify_assignee

    def evaluate(
        self,
        obligations: list[Obligation],
        household: HouseholdContext,
        completions: CompletionBook,
        now: datetime,
        last_tick: datetime | None,
        tracker: DedupTracker,
        lookback_for: Callable[[Obligation], timedelta],
    ) -> list[Escalation]:
        """Return the escalations to dispatch this tick (already dedup-recorded)."""
        tz = household.timezone
        today = now.astimezone(zone(tz)).date()
        everyone = set(household.members) | set(household.preferences)

        escalations: list[Escalation] = []
        for obligation in obligations:
            if obligation.kind not in ESCALATED_KINDS:
                continue
            for day in (today - timedelta(days=1), today):
                if not is_obligation_due(obligation, day, tz):
                    continue
                for t in self._times:
                    instant = localize(day, t, tz)
                    if instant > now:
                        continue
                    if not is_incomplete(obligation, day, instant, completions, tz):
                        continue
                    escalations.extend(self._fire(
                        household.id, obligation, day, instant, everyone, now, last_tick,
                        tracker, lookback_for(obligation),
                    ))
        return escalations

    def _fire(
        self,
        household_id: str,
        obligation: Obligation,
        day: date,
        instant: datetime,
        everyone: set[str],
        now: datetime,
        last_tick: datetime | None,
        tracker: DedupTracker,
        lookback: timedelta,
    ) -> list[Escalation]:
        fired: list[Escalation] = []

        if self._notify_assignee and obligation.assignees:
            key = DedupKey(household_id, obligation.id, instant, "nudge", AUDIENCE_ASSIGNEE)
            if tracker.should_notify(key, instant, now, lookback, last_tick):
                fired.append(Escalation(
                    obligation=obligation, instant=instant, day=day,
                    audience=AUDIENCE_ASSIGNEE, recipients=obligation.assignees,
                ))

        others = frozenset(everyone - set(obligation.assignees))
        if not obligation.is_private and others:
            key = DedupKey(household_id, obligation.id, instant, "escalation", AUDIENCE_HOUSEHOLD)
            if tracker.should_notify(key, instant, now, lookback, last_tick):
                logger.info(
                    "Escalating '%s' (%s) at %s to %d member(s)",
                    obligation.title, day, instant.strftime("%H:%M"), len(others),
                )
                fired.append(Escalation(
                    obligation=obligation, instant=instant, day=day,
                    audience=AUDIENCE_HOUSEHOLD, recipients=others,
                ))
        return fired
