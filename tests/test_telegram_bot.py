"""Tests for src.bot.telegram_bot — Telegram bot handlers.

Tests the command handlers and operator authorization.
The store is mocked.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from src.bot.telegram_bot import cmd_start, cmd_status
from src.data.models import ErrorRecord, Heartbeat


def _make_update(user_id=12345, first_name="Amit", chat_id=98765):
    """Create a mock Update from an authorized operator."""
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_user.first_name = first_name
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(store=None):
    """Create a mock context with the store in bot_data."""
    context = MagicMock()
    context.bot_data = {"store": store or MagicMock()}
    return context


class TestStart:
    @pytest.mark.asyncio
    async def test_replies_with_chat_id(self):
        update = _make_update(chat_id=424242)
        await cmd_start(update, _make_context())

        text = update.message.reply_text.call_args[0][0]
        assert "Hi Amit" in text
        assert "`424242`" in text

    @pytest.mark.asyncio
    async def test_open_to_everyone(self):
        update = _make_update(user_id=99999)
        await cmd_start(update, _make_context())
        update.message.reply_text.assert_called_once()


class TestStatus:
    @pytest.mark.asyncio
    async def test_reports_heartbeat_and_errors(self):
        store = MagicMock()
        store.get_heartbeat.return_value = Heartbeat("online", "2024-03-10T08:00:00+00:00", "0.9.0")
        store.list_errors.return_value = [
            ErrorRecord("load:h0", "Unknown timezone", "", "2024-03-10T07:59:00+00:00"),
        ]
        update = _make_update()

        await cmd_status(update, _make_context(store))

        text = update.message.reply_text.call_args[0][0]
        assert "Scheduler: online (v0.9.0)" in text
        assert "Last heartbeat: 2024-03-10T08:00:00+00:00" in text
        assert "[load:h0] Unknown timezone" in text
        store.list_errors.assert_called_once_with(limit=5)

    @pytest.mark.asyncio
    async def test_no_heartbeat_yet(self):
        store = MagicMock()
        store.get_heartbeat.return_value = None
        store.list_errors.return_value = []
        update = _make_update()

        await cmd_status(update, _make_context(store))

        text = update.message.reply_text.call_args[0][0]
        assert "no heartbeat yet" in text
        assert "No recorded errors." in text

    @pytest.mark.asyncio
    async def test_store_error_reported(self):
        store = MagicMock()
        store.get_heartbeat.side_effect = RuntimeError("db locked")
        update = _make_update()

        await cmd_status(update, _make_context(store))

        update.message.reply_text.assert_called_once_with("Could not read scheduler status.")

    @pytest.mark.asyncio
    async def test_non_operator_silently_ignored(self):
        store = MagicMock()
        update = _make_update(user_id=99999)

        await cmd_status(update, _make_context(store))

        update.message.reply_text.assert_not_called()
        store.get_heartbeat.assert_not_called()


class TestBuildApp:
    def test_registers_sweep_and_handlers(self):
        from src.bot.telegram_bot import build_app

        mock_app = MagicMock()
        mock_app.bot_data = {}
        mock_app.handlers = {0: []}
        mock_app.add_handler.side_effect = lambda h: mock_app.handlers[0].append(h)
        store = MagicMock()

        with patch("src.bot.telegram_bot.ApplicationBuilder") as builder:
            builder.return_value.token.return_value.build.return_value = mock_app
            app = build_app(store=store, notifier=AsyncMock())

        assert app is mock_app
        assert app.bot_data["store"] is store
        assert len(app.handlers[0]) == 2
        mock_app.job_queue.run_repeating.assert_called_once()
        assert mock_app.job_queue.run_repeating.call_args.kwargs["name"] == "reminder_sweep"

    def test_main_requires_token(self):
        from src.bot import telegram_bot

        with patch.object(telegram_bot.settings, "TELEGRAM_BOT_TOKEN", ""):
            with pytest.raises(SystemExit):
                telegram_bot.main()
