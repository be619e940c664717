"""
LifeSync Reminders — Telegram Bot host.

The headless reminder process runs inside a python-telegram-bot
Application: the sweep is a repeating job on the bot's job queue, and the
bot doubles as the chat-bot delivery channel.

Commands:
- /start: replies with the member's chat id (pasted into the app's
  settings to enable chat-bot reminders).
- /status: operators only; shows the scheduler heartbeat and recent errors.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from src.config import settings

if TYPE_CHECKING:
    from src.data.db import HouseholdDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def operators_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores commands from non-operators."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.OPERATOR_CHAT_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized /status attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Tell the member their chat id."""
    chat = update.effective_chat
    user = update.effective_user
    if chat is None or update.message is None:
        return
    name = user.first_name if user else "there"
    logger.info("/start from %s (%s)", name, chat.id)
    await update.message.reply_text(
        f"👋 Hi {name}!\n\n"
        f"Your LifeSync chat id is:\n`{chat.id}`\n\n"
        "(Copy it into your notification settings in the app.)",
        parse_mode=ParseMode.MARKDOWN,
    )


@operators_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Report the scheduler heartbeat and the last few errors."""
    db: HouseholdDB = context.bot_data["store"]
    try:
        heartbeat = db.get_heartbeat()
        errors = db.list_errors(limit=5)
    except Exception as exc:
        logger.error("/status store error: %s", exc)
        await update.message.reply_text("Could not read scheduler status.")
        return

    if heartbeat is None:
        lines = ["Scheduler: no heartbeat yet"]
    else:
        lines = [
            f"Scheduler: {heartbeat.status} (v{heartbeat.version})",
            f"Last heartbeat: {heartbeat.last_heartbeat}",
        ]
    if errors:
        lines.append("")
        lines.append("Recent errors:")
        lines.extend(f"  {e.timestamp[:19]} [{e.context}] {e.message}" for e in errors)
    else:
        lines.append("No recorded errors.")

    await update.message.reply_text("\n".join(lines))


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    store: HouseholdDB | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build the Telegram Application and schedule the reminder sweep.

    Args:
        store: Household store. Defaults to HouseholdDB at DATABASE_PATH.
        notifier: Chat-bot port. Defaults to TelegramNotifier (created
                  from the bot instance after the app is built).
    """
    from src.core.dispatcher import ChannelDispatcher
    from src.core.scheduler import HeadlessScheduler

    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if store is None:
        from src.data.db import HouseholdDB
        store = HouseholdDB()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    dispatcher = ChannelDispatcher(
        chat=notifier, send_timeout=settings.SEND_TIMEOUT_SECONDS,
    )
    scheduler = HeadlessScheduler(store, dispatcher, settings)

    app.bot_data["store"] = store
    app.bot_data["scheduler"] = scheduler

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("status", cmd_status))

    scheduler.register(app.job_queue)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    if not settings.TELEGRAM_BOT_TOKEN:
        raise SystemExit("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env")
    logger.info("Starting LifeSync reminder service...")
    app = build_app()
    app.run_polling()
