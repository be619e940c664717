"""Reminder engine error types.

Configuration and data errors never escape a sweep: the affected obligation,
household or channel is skipped for the tick and the error is logged.
"""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for reminder engine errors."""


class ScheduleConfigError(ReminderError):
    """Malformed recurrence rule, time string or timezone."""


class ObligationDataError(ReminderError):
    """A raw record is missing fields or references unknown members/profiles."""


class ChannelError(ReminderError):
    """A delivery channel rejected or failed a send."""

    def __init__(self, channel: str, recipient: str, message: str) -> None:
        super().__init__(f"{channel} → {recipient}: {message}")
        self.channel = channel
        self.recipient = recipient
