"""Desktop notification adapter — implements DesktopPort.

Shows notifications through the freedesktop ``notify-send`` command. The
tag is passed as the notification's synchronous hint so the notification
server replaces (rather than stacks) a repeat of the same reminder.
"""

from __future__ import annotations

import asyncio
import logging
import shutil

from src.core.errors import ChannelError

logger = logging.getLogger(__name__)

_APP_NAME = "LifeSync"


class NotifySendDesktop:
    """notify-send implementation of DesktopPort."""

    def __init__(self, executable: str = "notify-send") -> None:
        self._executable = executable

    def available(self) -> bool:
        return shutil.which(self._executable) is not None

    async def show(self, title: str, body: str, tag: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._executable,
                "--app-name", _APP_NAME,
                "--hint", f"string:x-canonical-private-synchronous:{tag}",
                title,
                body,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ChannelError("desktop", "local", str(exc)) from exc

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit {proc.returncode}"
            raise ChannelError("desktop", "local", message)
        logger.debug("Desktop notification shown: %s", tag)
