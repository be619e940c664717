"""Notification ports — abstract interfaces for the delivery channels.

Core modules depend on these protocols, never on a specific messaging
provider or desktop notification backend.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Chat-bot push (one message to one chat)."""

    async def send_message(self, chat_id: str, text: str) -> None: ...


class DesktopPort(Protocol):
    """Desktop / OS notification surface."""

    async def show(self, title: str, body: str, tag: str) -> None: ...
