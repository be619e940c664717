"""Dedup tracker — at-most-once reminder delivery per process lifetime.

A reminder is delivered when its notify instant lies inside the current
window ``(max(last_tick, now - lookback), now]`` and its key has not been
seen. Keys are recorded *before* dispatch so a slow or failing send can
never cause a second delivery of the same reminder.

Two backings share one contract:
- MemoryDedupTracker: headless process, reset on restart.
- SessionDedupTracker: foreground watcher, persisted to a JSON file and
  rehydrated on start so a reload does not re-deliver earlier reminders.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DedupKey:
    """Identity of one delivery: (household, obligation, instant, offset, channel).

    Obligation ids are only unique inside a household, so the household id
    is part of the key.
    """

    household_id: str
    obligation_id: str
    instant: datetime
    offset: int | str
    channel: str

    def serialize(self) -> str:
        return "|".join([
            self.household_id,
            self.obligation_id,
            self.instant.isoformat(),
            str(self.offset),
            self.channel,
        ])

    @classmethod
    def parse(cls, raw: str) -> DedupKey:
        head, instant, offset, channel = raw.rsplit("|", 3)
        household_id, obligation_id = head.split("|", 1)
        parsed_offset: int | str = int(offset) if offset.lstrip("-").isdigit() else offset
        return cls(
            household_id=household_id,
            obligation_id=obligation_id,
            instant=datetime.fromisoformat(instant),
            offset=parsed_offset,
            channel=channel,
        )


def window_start(
    now: datetime, lookback: timedelta, last_tick: datetime | None,
) -> datetime:
    """Lower (exclusive) bound of the catch-up window."""
    floor = now - lookback
    if last_tick is None:
        return floor
    return max(last_tick, floor)


class DedupTracker(Protocol):
    """Contract shared by both runtime contexts."""

    def should_notify(
        self,
        key: DedupKey,
        notify_at: datetime,
        now: datetime,
        lookback: timedelta,
        last_tick: datetime | None = None,
    ) -> bool: ...

    def prune(self, now: datetime, horizon: timedelta) -> int: ...


class MemoryDedupTracker:
    """In-memory processed-key set (headless process)."""

    def __init__(self) -> None:
        self._processed: dict[str, datetime] = {}

    def should_notify(
        self,
        key: DedupKey,
        notify_at: datetime,
        now: datetime,
        lookback: timedelta,
        last_tick: datetime | None = None,
    ) -> bool:
        """Return True exactly once per key while ``notify_at`` is in the window."""
        start = window_start(now, lookback, last_tick)
        if not (start < notify_at <= now):
            return False

        raw = key.serialize()
        if raw in self._processed:
            return False

        self._processed[raw] = key.instant
        self._on_recorded()
        return True

    def has_processed(self, key: DedupKey) -> bool:
        return key.serialize() in self._processed

    def prune(self, now: datetime, horizon: timedelta) -> int:
        """Forget keys whose instant is older than ``now - horizon``."""
        cutoff = now - horizon
        stale = [raw for raw, instant in self._processed.items() if instant < cutoff]
        for raw in stale:
            del self._processed[raw]
        if stale:
            logger.debug("Pruned %d processed notification keys", len(stale))
            self._on_recorded()
        return len(stale)

    def __len__(self) -> int:
        return len(self._processed)

    def _on_recorded(self) -> None:
        """Hook for persistent backings."""


class SessionDedupTracker(MemoryDedupTracker):
    """Processed-key set persisted to a session file (foreground watcher)."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            stored = json.loads(self._path.read_text(encoding="utf-8"))
            for raw in stored:
                key = DedupKey.parse(raw)
                self._processed[raw] = key.instant
            logger.info(
                "Rehydrated %d processed notifications from %s",
                len(self._processed), self._path,
            )
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Error loading notifications from session %s: %s", self._path, exc)

    def _on_recorded(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                json.dumps(sorted(self._processed)), encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Failed to persist session notifications: %s", exc)
