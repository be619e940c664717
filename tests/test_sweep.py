"""Tests for src.core.sweep — end-to-end reminder decisions for one household."""

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.core.dedup import MemoryDedupTracker, SessionDedupTracker
from src.core.dispatcher import ChannelDispatcher
from src.core.obligations import chore_to_obligation
from src.core.sweep import SweepConfig, run_sweep
from src.data.models import (
    Channel,
    CompletionBook,
    CompletionRecord,
    Daily,
    HouseholdSnapshot,
    Monthly,
    Obligation,
    ObligationKind,
    OneShot,
)
from tests.conftest import RecordingChat, RecordingDesktop

PARIS = ZoneInfo("Europe/Paris")
ESCALATION_TIMES = [time(18, 0), time(21, 0)]


def _at(day, hour, minute=0, second=0):
    return datetime(2024, 3, day, hour, minute, second, tzinfo=PARIS)


def _med(**kwargs) -> Obligation:
    defaults = dict(
        id="med:m1",
        kind=ObligationKind.MEDICATION,
        title="Vitamin D",
        schedule=Daily(),
        assignees=frozenset({"alice"}),
        times_of_day=(time(8, 0),),
        subject_name="Alice",
    )
    defaults.update(kwargs)
    return Obligation(**defaults)


def _headless_config(**kwargs) -> SweepConfig:
    return SweepConfig(
        channels=frozenset({Channel.CHAT_BOT}),
        escalation_times=ESCALATION_TIMES,
        **kwargs,
    )


class TestMedicationReminder:
    @pytest.mark.asyncio
    async def test_delivered_once_to_assignee(self, household):
        chat = RecordingChat()
        dispatcher = ChannelDispatcher(chat=chat)
        tracker = MemoryDedupTracker()
        snapshot = HouseholdSnapshot(household=household, obligations=[_med()])

        first = await run_sweep(
            snapshot, _at(10, 8, 0, 5), _at(10, 7, 59, 5), tracker, dispatcher, _headless_config(),
        )
        second = await run_sweep(
            snapshot, _at(10, 8, 0, 45), _at(10, 8, 0, 5), tracker, dispatcher, _headless_config(),
        )

        assert len(first.decisions) == 1
        assert second.decisions == []
        assert [chat_id for chat_id, _ in chat.sent] == ["111"]
        assert "Time to take Vitamin D" in chat.sent[0][1]

    @pytest.mark.asyncio
    async def test_dose_already_taken_not_reminded(self, household):
        chat = RecordingChat()
        book = CompletionBook([CompletionRecord("med:m1", _at(10, 0).date(), time(8, 0))])
        snapshot = HouseholdSnapshot(household=household, obligations=[_med()], completions=book)

        result = await run_sweep(
            snapshot, _at(10, 8, 0, 5), None, MemoryDedupTracker(),
            ChannelDispatcher(chat=chat), _headless_config(),
        )

        assert result.decisions == []
        assert chat.sent == []


class TestChoreColdStart:
    @pytest.mark.asyncio
    async def test_both_offsets_delivered_in_order(self, household):
        chore = chore_to_obligation(
            {"id": "c1", "title": "Trash", "dueDate": "2024-03-10",
             "assignees": ["alice"], "reminders": [0, 60]},
            household, time(9, 0),
        )
        chat = RecordingChat()
        snapshot = HouseholdSnapshot(household=household, obligations=[chore])

        result = await run_sweep(
            snapshot, _at(10, 9, 0, 30), None, MemoryDedupTracker(),
            ChannelDispatcher(chat=chat), _headless_config(),
        )

        assert [d.offset for d in result.decisions] == [0, 60]
        assert [text.split("\n")[1] for _, text in chat.sent] == [
            "Now - Trash", "In 1 hour - Trash",
        ]


class TestChargeReminder:
    @pytest.mark.asyncio
    async def test_member_who_paid_is_skipped(self, household):
        rent = Obligation(
            id="charge:Rent",
            kind=ObligationKind.CHARGE,
            title="Rent",
            schedule=Monthly(5),
            assignees=frozenset({"alice", "bob"}),
            times_of_day=(time(9, 0),),
        )
        book = CompletionBook([
            CompletionRecord("charge:Rent", _at(1, 0).date(), member_id="alice"),
        ])
        chat = RecordingChat()
        snapshot = HouseholdSnapshot(household=household, obligations=[rent], completions=book)

        await run_sweep(
            snapshot, _at(5, 9, 0, 10), _at(5, 8, 59, 10), MemoryDedupTracker(),
            ChannelDispatcher(chat=chat), _headless_config(),
        )

        assert [chat_id for chat_id, _ in chat.sent] == ["222"]


class TestIsolation:
    @pytest.mark.asyncio
    async def test_broken_obligation_does_not_stop_others(self, household):
        broken = Obligation(
            id="event:bad",
            kind=ObligationKind.EVENT,
            title="Broken",
            schedule=OneShot(at="not a datetime"),
            assignees=frozenset({"alice"}),
        )
        chat = RecordingChat()
        snapshot = HouseholdSnapshot(household=household, obligations=[broken, _med()])

        result = await run_sweep(
            snapshot, _at(10, 8, 0, 5), _at(10, 7, 59, 5), MemoryDedupTracker(),
            ChannelDispatcher(chat=chat), _headless_config(),
        )

        assert [context for context, _ in result.errors] == ["h1:event:bad"]
        assert [d.obligation_id for d in result.decisions] == ["med:m1"]
        assert len(chat.sent) == 1

    @pytest.mark.asyncio
    async def test_failed_send_counted_not_retried(self, household):
        chat = RecordingChat(fail_for={"111"})
        tracker = MemoryDedupTracker()
        snapshot = HouseholdSnapshot(household=household, obligations=[_med()])
        dispatcher = ChannelDispatcher(chat=chat)

        first = await run_sweep(
            snapshot, _at(10, 8, 0, 5), _at(10, 7, 59, 5), tracker, dispatcher, _headless_config(),
        )
        second = await run_sweep(
            snapshot, _at(10, 8, 1, 5), _at(10, 8, 0, 5), tracker, dispatcher, _headless_config(),
        )

        assert first.failed_sends == 1
        assert second.failed_sends == 0
        assert second.decisions == []


class TestEscalationPass:
    @pytest.mark.asyncio
    async def test_household_alert_and_nudge(self, household):
        chat = RecordingChat()
        snapshot = HouseholdSnapshot(household=household, obligations=[_med()])

        result = await run_sweep(
            snapshot, _at(10, 18, 0, 20), _at(10, 17, 59, 20), MemoryDedupTracker(),
            ChannelDispatcher(chat=chat), _headless_config(),
        )

        assert result.escalations == 2
        texts = dict(chat.sent)
        assert "Health reminder (18:00)" in texts["111"]
        assert "Household alert" in texts["222"]


class TestRuntimeContextsAgree:
    @pytest.mark.asyncio
    async def test_headless_and_foreground_same_decisions(self, household, tmp_path):
        snapshot = HouseholdSnapshot(household=household, obligations=[
            _med(times_of_day=(time(8, 0), time(8, 30))),
            _med(id="med:m2", title="Iron", times_of_day=(time(8, 15),)),
        ])
        start = _at(10, 7, 58, 3)
        end = _at(10, 8, 35)

        headless = ChannelDispatcher(chat=RecordingChat())
        headless_config = _headless_config()
        headless_tracker = MemoryDedupTracker()
        headless_decisions = []
        now, last = start, None
        while now <= end:
            result = await run_sweep(snapshot, now, last, headless_tracker, headless, headless_config)
            headless_decisions += [(d.obligation_id, d.notify_at, d.offset) for d in result.decisions]
            now, last = now + timedelta(seconds=60), now

        foreground = ChannelDispatcher(desktop=RecordingDesktop())
        foreground_config = SweepConfig(
            channels=frozenset({Channel.DESKTOP}),
            escalation_times=ESCALATION_TIMES,
            member_scope="alice",
        )
        foreground_tracker = SessionDedupTracker(tmp_path / "session.json")
        foreground_decisions = []
        now, last = start, None
        while now <= end:
            result = await run_sweep(snapshot, now, last, foreground_tracker, foreground, foreground_config)
            foreground_decisions += [(d.obligation_id, d.notify_at, d.offset) for d in result.decisions]
            now, last = now + timedelta(seconds=10), now

        assert headless_decisions == foreground_decisions
        assert len(headless_decisions) == 3
