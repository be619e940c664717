"""Tests for src.core.dispatcher — fan-out and per-channel failure isolation."""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from src.core.dispatcher import ChannelDispatcher
from src.core.messages import Payload
from src.data.models import (
    Channel,
    HouseholdContext,
    MemberPreference,
    Obligation,
    ObligationKind,
    OneShot,
)
from tests.conftest import RecordingChat, RecordingDesktop


def _obligation() -> Obligation:
    return Obligation(
        id="event:e1",
        kind=ObligationKind.EVENT,
        title="Dentist",
        schedule=OneShot(datetime(2024, 3, 10, 14, 0, tzinfo=ZoneInfo("Europe/Paris"))),
        assignees=frozenset({"alice", "bob"}),
    )


def _household(**prefs: MemberPreference) -> HouseholdContext:
    return HouseholdContext(
        id="h1",
        timezone="Europe/Paris",
        members=frozenset(prefs),
        preferences=dict(prefs),
    )


PAYLOAD = Payload(title="📅 Reminder: Dentist", body="Now - Dentist", tag="event:e1-0")


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sends_to_every_recipient(self):
        chat = RecordingChat()
        dispatcher = ChannelDispatcher(chat=chat)
        household = _household(
            alice=MemberPreference("alice", chat_id="111"),
            bob=MemberPreference("bob", chat_id="222"),
        )

        report = await dispatcher.dispatch(
            _obligation(), ["alice", "bob"], PAYLOAD, [Channel.CHAT_BOT], household,
        )

        assert sorted(chat_id for chat_id, _ in chat.sent) == ["111", "222"]
        assert chat.sent[0][1] == "*📅 Reminder: Dentist*\nNow - Dentist"
        assert len(report.delivered) == 2
        assert report.failed == []

    @pytest.mark.asyncio
    async def test_failure_for_one_recipient_does_not_block_other(self):
        chat = RecordingChat(fail_for={"111"})
        dispatcher = ChannelDispatcher(chat=chat)
        household = _household(
            alice=MemberPreference("alice", chat_id="111"),
            bob=MemberPreference("bob", chat_id="222"),
        )

        report = await dispatcher.dispatch(
            _obligation(), ["alice", "bob"], PAYLOAD, [Channel.CHAT_BOT], household,
        )

        assert [chat_id for chat_id, _ in chat.sent] == ["222"]
        assert [r.recipient for r in report.failed] == ["alice"]
        assert "network down" in report.failed[0].error_message

    @pytest.mark.asyncio
    async def test_failure_on_one_channel_does_not_block_other_channel(self):
        chat = RecordingChat()
        desktop = RecordingDesktop(fail=True)
        dispatcher = ChannelDispatcher(chat=chat, desktop=desktop)
        household = _household(alice=MemberPreference("alice", chat_id="111"))

        report = await dispatcher.dispatch(
            _obligation(), ["alice"], PAYLOAD, [Channel.CHAT_BOT, Channel.DESKTOP], household,
        )

        assert [chat_id for chat_id, _ in chat.sent] == ["111"]
        by_channel = report.by_channel()
        assert by_channel[Channel.CHAT_BOT][0].success is True
        assert by_channel[Channel.DESKTOP][0].success is False

    @pytest.mark.asyncio
    async def test_missing_chat_config_silently_disables_channel(self):
        chat = RecordingChat()
        dispatcher = ChannelDispatcher(chat=chat)
        household = _household(
            alice=MemberPreference("alice", chat_id=None),
            bob=MemberPreference("bob", chat_id="222"),
        )

        report = await dispatcher.dispatch(
            _obligation(), ["alice", "bob"], PAYLOAD, [Channel.CHAT_BOT], household,
        )

        assert [chat_id for chat_id, _ in chat.sent] == ["222"]
        assert report.failed == []

    @pytest.mark.asyncio
    async def test_unknown_member_skipped(self):
        chat = RecordingChat()
        dispatcher = ChannelDispatcher(chat=chat)
        household = _household(bob=MemberPreference("bob", chat_id="222"))

        await dispatcher.dispatch(
            _obligation(), ["ghost", "bob"], PAYLOAD, [Channel.CHAT_BOT], household,
        )

        assert [chat_id for chat_id, _ in chat.sent] == ["222"]

    @pytest.mark.asyncio
    async def test_channel_without_transport_ignored(self):
        desktop = RecordingDesktop()
        dispatcher = ChannelDispatcher(desktop=desktop)
        household = _household(alice=MemberPreference("alice", chat_id="111"))

        report = await dispatcher.dispatch(
            _obligation(), ["alice"], PAYLOAD, [Channel.CHAT_BOT, Channel.DESKTOP], household,
        )

        assert desktop.shown == [(PAYLOAD.title, PAYLOAD.body, PAYLOAD.tag)]
        assert [r.channel for r in report.results] == [Channel.DESKTOP]

    @pytest.mark.asyncio
    async def test_hung_send_times_out(self):
        class HangingChat:
            async def send_message(self, chat_id, text):
                await asyncio.sleep(10)

        dispatcher = ChannelDispatcher(chat=HangingChat(), send_timeout=0.01)
        household = _household(alice=MemberPreference("alice", chat_id="111"))

        report = await dispatcher.dispatch(
            _obligation(), ["alice"], PAYLOAD, [Channel.CHAT_BOT], household,
        )

        assert len(report.failed) == 1
        assert report.failed[0].error_message == "TimeoutError"
