"""Channel dispatcher — multi-channel fan-out with failure isolation.

Every (recipient, channel) pair is an independent send. A failure on one
pair (network error, missing configuration, remote rejection, timeout) is
logged and reported, and never prevents delivery to the others. Failed
sends are not retried: the dedup tracker has already recorded the
reminder, so a failed send is a lost notification for that instant.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from src.data.models import Channel

if TYPE_CHECKING:
    from src.core.messages import Payload
    from src.data.models import HouseholdContext, Obligation
    from src.ports.notification_port import DesktopPort, NotificationPort

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """Outcome of one (recipient, channel) send."""

    recipient: str
    channel: Channel
    success: bool
    error_message: str = ""


@dataclass
class DispatchReport:
    """Per-channel results of one dispatch call."""

    results: list[SendResult] = field(default_factory=list)

    @property
    def delivered(self) -> list[SendResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[SendResult]:
        return [r for r in self.results if not r.success]

    def by_channel(self) -> dict[Channel, list[SendResult]]:
        grouped: dict[Channel, list[SendResult]] = {}
        for result in self.results:
            grouped.setdefault(result.channel, []).append(result)
        return grouped


class ChannelDispatcher:
    """Sends payloads to household members over their enabled channels."""

    def __init__(
        self,
        chat: NotificationPort | None = None,
        desktop: DesktopPort | None = None,
        send_timeout: float = 10.0,
    ) -> None:
        self._chat = chat
        self._desktop = desktop
        self._send_timeout = send_timeout

    @property
    def channels(self) -> set[Channel]:
        """Channels this dispatcher has a transport for."""
        available: set[Channel] = set()
        if self._chat is not None:
            available.add(Channel.CHAT_BOT)
        if self._desktop is not None:
            available.add(Channel.DESKTOP)
        return available

    async def dispatch(
        self,
        obligation: Obligation,
        recipients: Iterable[str],
        payload: Payload,
        channels: Iterable[Channel],
        household: HouseholdContext,
    ) -> DispatchReport:
        """Deliver ``payload`` to every recipient on every enabled channel."""
        requested = set(channels) & self.channels
        pairs: list[tuple[str, Channel]] = []
        for recipient in sorted(set(recipients)):
            pref = household.preferences.get(recipient)
            if pref is None:
                logger.debug("No preferences for member %s, skipping", recipient)
                continue
            for channel in sorted(requested & pref.enabled_channels(), key=lambda c: c.value):
                pairs.append((recipient, channel))

        if not pairs:
            return DispatchReport()

        outcomes = await asyncio.gather(
            *(self._send(recipient, channel, payload, household) for recipient, channel in pairs),
            return_exceptions=True,
        )

        report = DispatchReport()
        for (recipient, channel), outcome in zip(pairs, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Failed to send %s for '%s' to %s via %s: %s",
                    payload.tag, obligation.title, recipient, channel.value, outcome,
                )
                report.results.append(SendResult(
                    recipient=recipient, channel=channel, success=False,
                    error_message=str(outcome) or type(outcome).__name__,
                ))
            else:
                logger.info(
                    "Sent %s for '%s' to %s via %s",
                    payload.tag, obligation.title, recipient, channel.value,
                )
                report.results.append(SendResult(
                    recipient=recipient, channel=channel, success=True,
                ))
        return report

    async def _send(
        self,
        recipient: str,
        channel: Channel,
        payload: Payload,
        household: HouseholdContext,
    ) -> None:
        if channel is Channel.CHAT_BOT:
            chat_id = household.preferences[recipient].chat_id
            await asyncio.wait_for(
                self._chat.send_message(chat_id, payload.as_markdown()),
                timeout=self._send_timeout,
            )
        elif channel is Channel.DESKTOP:
            await asyncio.wait_for(
                self._desktop.show(payload.title, payload.body, payload.tag),
                timeout=self._send_timeout,
            )
