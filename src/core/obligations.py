"""Obligation adapters — raw store records to the common Obligation shape.

Each kind keeps its own fields in the store (events carry an absolute
start, chores a due date, medications a frequency + dose times, charges a
day of the month). The adapters below map them onto one schedule union so
the rest of the engine never branches on record layout.

A record that cannot be mapped raises ObligationDataError (missing fields,
unknown profile) or ScheduleConfigError (unknown frequency, bad time); the
snapshot builder skips it for the tick and logs the reason.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any

from src.core.due_instants import localize, zone
from src.core.errors import ObligationDataError, ReminderError, ScheduleConfigError
from src.data.models import (
    CompletionBook,
    CompletionRecord,
    CustomNotice,
    Daily,
    EveryNDays,
    HouseholdContext,
    HouseholdSnapshot,
    MemberPreference,
    Monthly,
    Obligation,
    ObligationKind,
    OneShot,
    Weekly,
    Yearly,
)

logger = logging.getLogger(__name__)

_EVERYONE = "family"
_DEPARTURE_LEAD_MINUTES = 5


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_hhmm(raw: str) -> time:
    """Parse "HH:MM" into a time. Raises ScheduleConfigError on bad input."""
    try:
        hour, minute = (int(part) for part in raw.strip().split(":")[:2])
        return time(hour, minute)
    except (ValueError, AttributeError, TypeError) as exc:
        raise ScheduleConfigError(f"Malformed time of day: {raw!r}") from exc


def parse_day(raw: str, field_name: str) -> date:
    try:
        return date.fromisoformat(raw[:10])
    except (ValueError, TypeError) as exc:
        raise ObligationDataError(f"Malformed {field_name}: {raw!r}") from exc


def parse_instant(raw: str, tz: str) -> datetime:
    """Parse an ISO instant; naive values are read as household-local."""
    try:
        at = datetime.fromisoformat(raw)
    except (ValueError, TypeError) as exc:
        raise ObligationDataError(f"Malformed instant: {raw!r}") from exc
    if at.tzinfo is None:
        at = at.replace(tzinfo=zone(tz))
    return at


def _offsets(raw: Any) -> tuple[int, ...]:
    if not raw:
        return ()
    try:
        return tuple(sorted({int(m) for m in raw}))
    except (ValueError, TypeError) as exc:
        raise ScheduleConfigError(f"Malformed reminders: {raw!r}") from exc


def _resolve_assignees(raw: Any, household: HouseholdContext) -> frozenset[str]:
    assignees = set(raw or [])
    if _EVERYONE in assignees:
        assignees.discard(_EVERYONE)
        assignees |= set(household.members) | set(household.preferences)
    return frozenset(assignees)


def _require_id(raw: dict, kind: str) -> str:
    record_id = raw.get("id")
    if not record_id:
        raise ObligationDataError(f"{kind} record without id")
    return str(record_id)


# ---------------------------------------------------------------------------
# Household
# ---------------------------------------------------------------------------


def household_from_record(raw: dict, default_timezone: str) -> HouseholdContext:
    """Build the household context; a missing timezone falls back to the default."""
    household_id = raw.get("id")
    if not household_id:
        raise ObligationDataError("Household record without id")

    timezone = raw.get("timezone") or default_timezone
    zone(timezone)

    preferences: dict[str, MemberPreference] = {}
    for member_id, pref in (raw.get("memberPreferences") or {}).items():
        pref = pref or {}
        chat_id = pref.get("telegramChatId")
        preferences[member_id] = MemberPreference(
            member_id=member_id,
            display_name=pref.get("displayName", ""),
            chat_id=str(chat_id) if chat_id else None,
            desktop_enabled=pref.get("desktopEnabled", True),
        )

    return HouseholdContext(
        id=household_id,
        timezone=timezone,
        members=frozenset(raw.get("members") or preferences.keys()),
        preferences=preferences,
    )


# ---------------------------------------------------------------------------
# Per-kind adapters
# ---------------------------------------------------------------------------


def event_to_obligation(raw: dict, household: HouseholdContext) -> Obligation:
    """Calendar event → OneShot at its start, plus travel departure notices."""
    if not raw.get("start"):
        raise ObligationDataError(f"Event {raw.get('id')!r} has no start")

    tz = household.timezone
    start = parse_instant(raw["start"], tz)
    title = raw.get("title") or "(no title)"

    notices: list[CustomNotice] = []
    if raw.get("departureTime"):
        depart = parse_instant(raw["departureTime"], tz)
        travel = raw.get("travelTime") or 0
        notices.append(CustomNotice(
            key=f"depart-{_DEPARTURE_LEAD_MINUTES}",
            at=depart - timedelta(minutes=_DEPARTURE_LEAD_MINUTES),
            body=(
                f"👟 *Get ready*\nLeave in {_DEPARTURE_LEAD_MINUTES} minutes "
                f"(travel: {travel} min)."
            ),
        ))
        notices.append(CustomNotice(
            key="depart-0",
            at=depart,
            body=(
                f"🚗 *LEAVE NOW*\nEstimated travel: {travel} min.\n"
                "Time to go to be on time!"
            ),
        ))

    address = raw.get("address")
    location = raw.get("location")
    if isinstance(location, dict) and location.get("label"):
        address = location["label"]

    return Obligation(
        id=f"event:{_require_id(raw, 'Event')}",
        kind=ObligationKind.EVENT,
        title=title,
        schedule=OneShot(at=start),
        assignees=_resolve_assignees(raw.get("assignees"), household),
        reminder_offsets=_offsets(raw.get("reminders")),
        address=address,
        custom_notices=tuple(notices),
    )


def chore_to_obligation(
    raw: dict, household: HouseholdContext, default_due_time: time,
) -> Obligation:
    """Chore → OneShot at its current due date.

    Recurring chores roll their ``dueDate`` forward on completion (done by
    the UI), so the engine only ever sees the current occurrence. A
    date-only due date is read as ``default_due_time`` household-local.
    """
    raw_due = raw.get("dueDate")
    if not raw_due:
        raise ObligationDataError(f"Chore {raw.get('id')!r} has no dueDate")

    tz = household.timezone
    if "T" in raw_due:
        due_at = parse_instant(raw_due, tz)
    else:
        due_at = localize(parse_day(raw_due, "dueDate"), default_due_time, tz)

    return Obligation(
        id=f"chore:{_require_id(raw, 'Chore')}",
        kind=ObligationKind.CHORE,
        title=raw.get("title") or "(untitled chore)",
        schedule=OneShot(at=due_at),
        assignees=_resolve_assignees(raw.get("assignees"), household),
        is_active=not raw.get("done", False),
        is_private=bool(raw.get("privateFor")),
        reminder_offsets=_offsets(raw.get("reminders")),
    )


def medication_to_obligation(
    raw: dict, household: HouseholdContext, profiles: dict[str, dict],
) -> Obligation:
    """Medication → Daily / Weekly / EveryNDays / Yearly anchored at startDate."""
    med_id = _require_id(raw, "Medication")
    if not raw.get("startDate"):
        raise ObligationDataError(f"Medication {med_id!r} has no startDate")
    anchor = parse_day(raw["startDate"], "startDate")

    frequency = raw.get("frequency", "daily")
    if frequency == "daily":
        schedule = Daily()
    elif frequency == "weekly":
        schedule = Weekly(anchor=anchor)
    elif frequency == "custom":
        try:
            n = int(raw.get("customDays") or 0)
        except (ValueError, TypeError) as exc:
            raise ScheduleConfigError(f"Malformed customDays: {raw.get('customDays')!r}") from exc
        schedule = EveryNDays(anchor=anchor, n=n)
    elif frequency == "yearly":
        schedule = Yearly(anchor=anchor)
    else:
        raise ScheduleConfigError(f"Unknown medication frequency: {frequency!r}")

    profile = profiles.get(raw.get("profileId") or "")
    owner = (profile or {}).get("userId") or raw.get("createdBy")
    if not owner:
        raise ObligationDataError(
            f"Medication {med_id!r} references unknown profile {raw.get('profileId')!r}"
        )

    subject = (profile or {}).get("name") or household.display_name(owner)
    if subject == owner and owner not in household.preferences:
        subject = "A household member"

    return Obligation(
        id=f"med:{med_id}",
        kind=ObligationKind.MEDICATION,
        title=raw.get("name") or "(unnamed medication)",
        schedule=schedule,
        assignees=frozenset({owner}),
        is_active=bool(raw.get("active", True)),
        is_private=bool(raw.get("isPrivate", False)),
        times_of_day=tuple(sorted(parse_hhmm(t) for t in raw.get("times") or [])),
        reminder_offsets=(0,),
        valid_from=anchor,
        valid_until=parse_day(raw["endDate"], "endDate") if raw.get("endDate") else None,
        subject_name=subject,
        detail=raw.get("dosage") or "",
    )


def charge_to_obligation(
    raw: dict, household: HouseholdContext, default_due_time: time,
) -> Obligation:
    """Recurring budget charge → Monthly on its due day."""
    label = raw.get("label")
    if not label:
        raise ObligationDataError("Budget charge without label")

    if raw.get("type") == "personal":
        if not raw.get("paidBy"):
            raise ObligationDataError(f"Personal charge {label!r} has no paidBy")
        assignees = frozenset({raw["paidBy"]})
    else:
        assignees = frozenset(household.members)

    try:
        due_day = int(raw.get("dueDay") or 1)
    except (ValueError, TypeError) as exc:
        raise ScheduleConfigError(f"Malformed dueDay on {label!r}") from exc

    amount = raw.get("amount")
    return Obligation(
        id=f"charge:{label}",
        kind=ObligationKind.CHARGE,
        title=label,
        schedule=Monthly(day_of_month=due_day),
        assignees=assignees,
        times_of_day=(default_due_time,),
        reminder_offsets=_offsets(raw.get("reminders")),
        detail=f"{amount}€" if amount is not None else "",
    )


# ---------------------------------------------------------------------------
# Completions
# ---------------------------------------------------------------------------


def month_start(day: date) -> date:
    """Charges complete per (label, month, member): keyed on the month's first day."""
    return day.replace(day=1)


def completions_from_records(
    medication_completions: list[dict],
    budget_completions: dict[str, bool],
    chores: list[dict],
    charge_labels: list[str],
) -> CompletionBook:
    """Normalize the kind-specific completion stores into one book."""
    records: list[CompletionRecord] = []

    for raw in medication_completions:
        try:
            records.append(CompletionRecord(
                obligation_id=f"med:{raw['medId']}",
                due_date=parse_day(raw["date"], "date"),
                time_of_day=parse_hhmm(raw["time"]) if raw.get("time") else None,
            ))
        except (KeyError, ReminderError) as exc:
            logger.warning("Skipping malformed medication completion %r: %s", raw, exc)

    # budgetCompletions keys look like "<label>-<YYYY-MM>-<memberId>"; labels may contain '-'
    for key, done in (budget_completions or {}).items():
        if not done:
            continue
        for label in charge_labels:
            prefix = f"{label}-"
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            month_key, _, member_id = rest[:7], rest[7:8], rest[8:]
            try:
                month = date.fromisoformat(f"{month_key}-01")
            except ValueError:
                continue
            records.append(CompletionRecord(
                obligation_id=f"charge:{label}",
                due_date=month,
                member_id=member_id,
            ))

    for raw in chores:
        if raw.get("done") and raw.get("dueDate"):
            try:
                records.append(CompletionRecord(
                    obligation_id=f"chore:{_require_id(raw, 'Chore')}",
                    due_date=parse_day(raw["dueDate"], "dueDate"),
                ))
            except (KeyError, ReminderError) as exc:
                logger.warning("Skipping malformed chore %r: %s", raw.get("id"), exc)

    return CompletionBook(records)


# ---------------------------------------------------------------------------
# Snapshot builder
# ---------------------------------------------------------------------------


def build_snapshot(
    raw_household: dict,
    events: list[dict],
    chores: list[dict],
    medications: list[dict],
    profiles: list[dict],
    medication_completions: list[dict],
    default_timezone: str,
    default_due_time: time,
) -> HouseholdSnapshot:
    """Map one household's raw records into a sweep snapshot.

    Household-level errors propagate (the household is skipped); a bad
    individual record is logged and skipped so the others still run.
    """
    household = household_from_record(raw_household, default_timezone)
    profiles_by_id = {p["id"]: p for p in profiles if p.get("id")}

    budget = raw_household.get("budgetConfig") or {}
    charges = list(budget.get("fixedCharges") or []) + list(budget.get("reserves") or [])

    obligations: list[Obligation] = []
    sources = (
        [("event", r, lambda r: event_to_obligation(r, household)) for r in events]
        + [("chore", r, lambda r: chore_to_obligation(r, household, default_due_time)) for r in chores]
        + [("medication", r, lambda r: medication_to_obligation(r, household, profiles_by_id))
           for r in medications]
        + [("charge", r, lambda r: charge_to_obligation(r, household, default_due_time)) for r in charges]
    )
    for kind, raw, adapt in sources:
        try:
            obligations.append(adapt(raw))
        except ReminderError as exc:
            logger.warning(
                "Household %s: skipping %s %r: %s",
                household.id, kind, raw.get("id") or raw.get("label"), exc,
            )

    completions = completions_from_records(
        medication_completions,
        budget.get("budgetCompletions") or {},
        chores,
        [c["label"] for c in charges if c.get("label")],
    )
    return HouseholdSnapshot(
        household=household, obligations=obligations, completions=completions,
    )
