"""Reminder message templates.

Builds the human-readable payload for each obligation kind. The same
payload is rendered as a desktop notification (title/body/tag) or as a
Markdown chat message.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote_plus

from src.data.models import Obligation, ObligationKind

_KIND_TITLES = {
    ObligationKind.EVENT: "📅 Reminder: {title}",
    ObligationKind.CHORE: "📝 Chore reminder: {title}",
    ObligationKind.CHARGE: "💰 Charge due: {title}",
    ObligationKind.MEDICATION: "💊 Medication reminder: {subject}",
}


@dataclass(frozen=True)
class Payload:
    """A formatted notification, independent of the delivery channel."""

    title: str
    body: str
    tag: str

    def as_markdown(self) -> str:
        return f"*{self.title}*\n{self.body}"


def relative_phrase(minutes_before: int) -> str:
    """Human phrase for a reminder offset.

    >>> relative_phrase(0), relative_phrase(60), relative_phrase(90)
    ('now', 'in 1 hour', 'in 1h 30 min')
    """
    if minutes_before == 0:
        return "now"
    if minutes_before == 60:
        return "in 1 hour"
    if minutes_before == 1440:
        return "tomorrow"
    if minutes_before > 60:
        hours, mins = divmod(minutes_before, 60)
        return f"in {hours}h {mins} min" if mins else f"in {hours}h"
    return f"in {minutes_before} minutes"


def build_reminder(obligation: Obligation, offset: int, tag: str) -> Payload:
    """Primary reminder payload for one notify candidate."""
    subject = obligation.subject_name or "the household"
    title = _KIND_TITLES[obligation.kind].format(
        title=obligation.title, subject=subject,
    )
    phrase = relative_phrase(offset)

    if obligation.kind is ObligationKind.MEDICATION:
        dosage = f" ({obligation.detail})" if obligation.detail else ""
        if offset == 0:
            body = f"Time to take {obligation.title}{dosage} for {subject}."
        else:
            body = f"{phrase.capitalize()}: {obligation.title}{dosage} for {subject}."
    elif obligation.kind is ObligationKind.CHARGE:
        amount = f" ({obligation.detail})" if obligation.detail else ""
        body = f"{phrase.capitalize()} - {obligation.title}{amount}"
    else:
        body = f"{phrase.capitalize()} - {obligation.title}"

    return Payload(title=title, body=body + _map_link(obligation), tag=tag)


def build_notice(obligation: Obligation, notice_body: str, tag: str) -> Payload:
    """Payload for a fixed-instant custom notice (e.g. travel departure)."""
    return Payload(
        title=f"📅 Agenda - {obligation.title}",
        body=notice_body + _map_link(obligation),
        tag=tag,
    )


def build_household_alert(obligation: Obligation, assignee_name: str, tag: str) -> Payload:
    """Escalation sent to the other household members."""
    what = "medication" if obligation.kind is ObligationKind.MEDICATION else "chore"
    who = obligation.subject_name or assignee_name
    return Payload(
        title=f"⚠️ Household alert: {who}",
        body=f"{who} still hasn't checked off their {what}: {obligation.title}.",
        tag=tag,
    )


def build_catch_up_nudge(obligation: Obligation, local_hhmm: str, tag: str) -> Payload:
    """Escalation-time nudge sent to the assignee themself."""
    if obligation.kind is ObligationKind.MEDICATION:
        subject = obligation.subject_name or "you"
        body = (
            f"Looks like you forgot {obligation.title} for {subject}.\n"
            "Don't forget to check it off in the app!"
        )
        title = f"💊 Health reminder ({local_hhmm})"
    else:
        body = f"{obligation.title} is still open today."
        title = f"📝 Chore reminder ({local_hhmm})"
    return Payload(title=title, body=body, tag=tag)


def _map_link(obligation: Obligation) -> str:
    if not obligation.address:
        return ""
    url = f"https://www.google.com/maps/search/?api=1&query={quote_plus(obligation.address)}"
    return f"\n📍 [Open map]({url})"
