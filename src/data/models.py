"""
LifeSync Reminders — Data Models.

Obligations are the household's recurring or one-shot duties (calendar
events, chores, medications, budget charges) reduced to one common shape.
Each kind keeps its own raw record in the store; src.core.obligations maps
those records into the dataclasses below before any scheduling happens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


# ---------------------------------------------------------------------------
# Schedules (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OneShot:
    """A single absolute instant (calendar event start, dated chore)."""

    at: datetime


@dataclass(frozen=True)
class Daily:
    """Due every day."""


@dataclass(frozen=True)
class Weekly:
    """Due on the anchor's weekday, starting at the anchor."""

    anchor: date


@dataclass(frozen=True)
class EveryNDays:
    """Due every n days counted from the anchor. n <= 0 is never due."""

    anchor: date
    n: int


@dataclass(frozen=True)
class Yearly:
    """Due on the anchor's month/day (Feb 29 falls on Feb 28 in common years)."""

    anchor: date


@dataclass(frozen=True)
class Monthly:
    """Due on a day of the month, clamped to the month's last day."""

    day_of_month: int
    anchor: date | None = None


Schedule = OneShot | Daily | Weekly | EveryNDays | Yearly | Monthly


# ---------------------------------------------------------------------------
# Obligations
# ---------------------------------------------------------------------------


class ObligationKind(str, Enum):
    EVENT = "event"
    CHORE = "chore"
    MEDICATION = "medication"
    CHARGE = "charge"


@dataclass(frozen=True)
class CustomNotice:
    """A fixed-instant notice carrying its own text (e.g. "leave now")."""

    key: str
    at: datetime
    body: str


@dataclass
class Obligation:
    """Anything the household must be reminded about."""

    id: str
    kind: ObligationKind
    title: str
    schedule: Schedule
    assignees: frozenset[str] = frozenset()
    is_active: bool = True
    is_private: bool = False
    times_of_day: tuple[time, ...] = ()
    reminder_offsets: tuple[int, ...] = (0,)
    valid_from: date | None = None
    valid_until: date | None = None

    # Presentation only, never used for scheduling decisions
    subject_name: str = ""
    detail: str = ""
    address: str | None = None
    custom_notices: tuple[CustomNotice, ...] = ()


# ---------------------------------------------------------------------------
# Household snapshot
# ---------------------------------------------------------------------------


class Channel(str, Enum):
    DESKTOP = "desktop"
    CHAT_BOT = "chat_bot"


@dataclass
class MemberPreference:
    """Per-member delivery configuration.

    A channel without configuration is silently disabled for that member.
    """

    member_id: str
    display_name: str = ""
    chat_id: str | None = None
    desktop_enabled: bool = True

    def enabled_channels(self) -> set[Channel]:
        channels: set[Channel] = set()
        if self.chat_id:
            channels.add(Channel.CHAT_BOT)
        if self.desktop_enabled:
            channels.add(Channel.DESKTOP)
        return channels


@dataclass
class HouseholdContext:
    """Read-only view of one household for the duration of a tick."""

    id: str
    timezone: str
    members: frozenset[str] = frozenset()
    preferences: dict[str, MemberPreference] = field(default_factory=dict)

    def display_name(self, member_id: str) -> str:
        pref = self.preferences.get(member_id)
        if pref and pref.display_name:
            return pref.display_name
        return member_id


@dataclass
class CompletionRecord:
    """UI-written completion flag; this engine only reads it."""

    obligation_id: str
    due_date: date
    time_of_day: time | None = None
    member_id: str | None = None
    done: bool = True


class CompletionBook:
    """Lookup over a tick's completion records."""

    def __init__(self, records: list[CompletionRecord] | None = None) -> None:
        self._done: set[tuple] = set()
        for record in records or []:
            if record.done:
                self._done.add(self._key(
                    record.obligation_id, record.due_date,
                    record.time_of_day, record.member_id,
                ))

    @staticmethod
    def _key(
        obligation_id: str,
        day: date,
        time_of_day: time | None,
        member_id: str | None,
    ) -> tuple:
        hhmm = time_of_day.strftime("%H:%M") if time_of_day else None
        return (obligation_id, day.isoformat(), hhmm, member_id)

    def is_done(
        self,
        obligation_id: str,
        day: date,
        time_of_day: time | None = None,
        member_id: str | None = None,
    ) -> bool:
        return self._key(obligation_id, day, time_of_day, member_id) in self._done

    def __len__(self) -> int:
        return len(self._done)


@dataclass
class HouseholdSnapshot:
    """Everything one sweep needs for one household."""

    household: HouseholdContext
    obligations: list[Obligation] = field(default_factory=list)
    completions: CompletionBook = field(default_factory=CompletionBook)


# ---------------------------------------------------------------------------
# Monitoring records (headless process only)
# ---------------------------------------------------------------------------


@dataclass
class Heartbeat:
    status: str
    last_heartbeat: str
    version: str


@dataclass
class ErrorRecord:
    context: str
    message: str
    stack: str
    timestamp: str
