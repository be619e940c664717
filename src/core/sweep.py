"""Reminder sweep — one pass over a household snapshot.

Shared by the headless scheduler and the foreground watcher: both call
run_sweep() with their own dedup tracker, channel set and clock, so the
due/notify decisions are identical by construction.

Pipeline per obligation:
    recurrence -> due instants -> dedup window -> channel dispatch
followed by the escalation pass over the whole snapshot.

A failure while evaluating one obligation is recorded and the sweep moves
on to the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from src.core.dedup import DedupKey
from src.core.due_instants import resolve_instants, zone
from src.core.escalation import AUDIENCE_HOUSEHOLD, EscalationEvaluator
from src.core.messages import (
    build_catch_up_nudge,
    build_household_alert,
    build_notice,
    build_reminder,
)
from src.core.obligations import month_start
from src.data.models import Channel, ObligationKind

if TYPE_CHECKING:
    from datetime import time

    from src.core.dedup import DedupTracker
    from src.core.dispatcher import ChannelDispatcher
    from src.core.due_instants import NotifyCandidate
    from src.data.models import CompletionBook, HouseholdSnapshot, Obligation

logger = logging.getLogger(__name__)


@dataclass
class SweepConfig:
    """Everything that may differ between the two runtime contexts."""

    channels: frozenset[Channel]
    escalation_times: list[time]
    lookback_default: timedelta = timedelta(minutes=120)
    lookback_medication: timedelta = timedelta(minutes=60)
    notify_assignee: bool = True
    member_scope: str | None = None  # foreground: only the session's member

    def lookback_for(self, obligation: Obligation) -> timedelta:
        if obligation.kind is ObligationKind.MEDICATION:
            return self.lookback_medication
        return self.lookback_default

    @property
    def prune_horizon(self) -> timedelta:
        return max(self.lookback_default, self.lookback_medication) + timedelta(days=1)


@dataclass(frozen=True)
class Decision:
    """A reminder the sweep decided to deliver on one channel."""

    obligation_id: str
    notify_at: datetime
    offset: int | str
    channel: Channel


@dataclass
class SweepResult:
    household_id: str
    decisions: list[Decision] = field(default_factory=list)
    escalations: int = 0
    failed_sends: int = 0
    errors: list[tuple[str, Exception]] = field(default_factory=list)


async def run_sweep(
    snapshot: HouseholdSnapshot,
    now: datetime,
    last_tick: datetime | None,
    tracker: DedupTracker,
    dispatcher: ChannelDispatcher,
    config: SweepConfig,
) -> SweepResult:
    """Evaluate and dispatch every reminder and escalation due at ``now``.

    ``last_tick`` is the previous tick's ``now`` (None on cold start); the
    catch-up window is ``(max(last_tick, now - lookback), now]``.
    """
    household = snapshot.household
    result = SweepResult(household_id=household.id)
    today = now.astimezone(zone(household.timezone)).date()

    for obligation in snapshot.obligations:
        try:
            await _sweep_obligation(
                obligation, snapshot, today, now, last_tick,
                tracker, dispatcher, config, result,
            )
        except Exception as exc:
            logger.error(
                "Household %s: evaluation of %s failed: %s",
                household.id, obligation.id, exc,
            )
            result.errors.append((f"{household.id}:{obligation.id}", exc))

    try:
        await _sweep_escalations(snapshot, now, last_tick, tracker, dispatcher, config, result)
    except Exception as exc:
        logger.error("Household %s: escalation pass failed: %s", household.id, exc)
        result.errors.append((f"{household.id}:escalation", exc))

    return result


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


async def _sweep_obligation(
    obligation: Obligation,
    snapshot: HouseholdSnapshot,
    today: date,
    now: datetime,
    last_tick: datetime | None,
    tracker: DedupTracker,
    dispatcher: ChannelDispatcher,
    config: SweepConfig,
    result: SweepResult,
) -> None:
    household = snapshot.household
    lookback = config.lookback_for(obligation)

    for candidate in resolve_instants(obligation, today, household.timezone):
        if not (now - lookback < candidate.notify_at <= now):
            continue

        recipients = _recipients(obligation, candidate, snapshot.completions, config)
        if not recipients:
            continue

        offset_key: int | str = candidate.notice_key or candidate.offset
        channels = [
            channel
            for channel in sorted(config.channels, key=lambda c: c.value)
            if tracker.should_notify(
                DedupKey(
                    household.id, obligation.id, candidate.notify_at, offset_key, channel.value,
                ),
                candidate.notify_at, now, lookback, last_tick,
            )
        ]
        if not channels:
            continue

        tag = f"{obligation.id}-{candidate.due_at:%Y%m%d%H%M}-{offset_key}"
        if candidate.notice_body is not None:
            payload = build_notice(obligation, candidate.notice_body, tag)
        else:
            payload = build_reminder(obligation, candidate.offset, tag)

        logger.info(
            "Reminder for '%s' (%s, offset %s) via %s",
            obligation.title, candidate.due_at.isoformat(), offset_key,
            ", ".join(c.value for c in channels),
        )
        for channel in channels:
            result.decisions.append(Decision(
                obligation_id=obligation.id,
                notify_at=candidate.notify_at,
                offset=offset_key,
                channel=channel,
            ))

        report = await dispatcher.dispatch(
            obligation, recipients, payload, channels, household,
        )
        result.failed_sends += len(report.failed)


def _recipients(
    obligation: Obligation,
    candidate: NotifyCandidate,
    completions: CompletionBook,
    config: SweepConfig,
) -> set[str]:
    recipients = set(obligation.assignees)

    if obligation.kind is ObligationKind.MEDICATION and completions.is_done(
        obligation.id, candidate.due_date, candidate.time_of_day,
    ):
        # Dose already taken (possibly early): nothing to remind
        return set()

    if obligation.kind is ObligationKind.CHARGE:
        month = month_start(candidate.due_date)
        recipients = {
            member for member in recipients
            if not completions.is_done(obligation.id, month, member_id=member)
        }

    if config.member_scope is not None:
        recipients &= {config.member_scope}
    return recipients


# ---------------------------------------------------------------------------
# Escalations
# ---------------------------------------------------------------------------


async def _sweep_escalations(
    snapshot: HouseholdSnapshot,
    now: datetime,
    last_tick: datetime | None,
    tracker: DedupTracker,
    dispatcher: ChannelDispatcher,
    config: SweepConfig,
    result: SweepResult,
) -> None:
    household = snapshot.household
    evaluator = EscalationEvaluator(config.escalation_times, config.notify_assignee)
    escalations = evaluator.evaluate(
        snapshot.obligations, household, snapshot.completions,
        now, last_tick, tracker, config.lookback_for,
    )

    for escalation in escalations:
        obligation = escalation.obligation
        recipients = set(escalation.recipients)
        if config.member_scope is not None:
            recipients &= {config.member_scope}
        if not recipients:
            continue

        tag = f"{obligation.id}-{escalation.audience}-{escalation.instant:%Y%m%d%H%M}"
        if escalation.audience == AUDIENCE_HOUSEHOLD:
            assignee = next(iter(sorted(obligation.assignees)), "")
            payload = build_household_alert(obligation, household.display_name(assignee), tag)
        else:
            payload = build_catch_up_nudge(obligation, escalation.local_hhmm, tag)

        report = await dispatcher.dispatch(
            obligation, recipients, payload, config.channels, household,
        )
        result.escalations += 1
        result.failed_sends += len(report.failed)
