"""
LifeSync Reminders — Entry Point.

`python main.py` starts the headless reminder service (Telegram bot + 60 s sweep).
`python main.py watch <member_id>` starts the foreground watcher for one
member (10 s sweep, desktop notifications).
"""

import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def _watch(member_id: str) -> None:
    from src.adapters.desktop_notifier import NotifySendDesktop
    from src.config import settings
    from src.core.dispatcher import ChannelDispatcher
    from src.core.scheduler import ForegroundWatcher
    from src.data.db import HouseholdDB

    desktop = NotifySendDesktop()
    if not desktop.available():
        logging.getLogger(__name__).warning(
            "notify-send not found; desktop reminders will fail and be logged",
        )
    dispatcher = ChannelDispatcher(desktop=desktop, send_timeout=settings.SEND_TIMEOUT_SECONDS)
    watcher = ForegroundWatcher(HouseholdDB(), dispatcher, member_id, settings)
    try:
        asyncio.run(watcher.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    if len(sys.argv) >= 3 and sys.argv[1] == "watch":
        _watch(sys.argv[2])
    else:
        from src.bot.telegram_bot import main

        main()
