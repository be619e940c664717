"""
LifeSync Reminders — Scheduler loops.

Headless scheduler: an always-on 60 s tick (run on the Telegram bot's job
queue) that sweeps every household, pushes reminders over the chat bot,
writes a liveness heartbeat and records every caught error in the store.

Foreground watcher: a 10 s tick for one member while their session is
open, delivering desktop notifications. Its dedup state lives in a session
file so a restart within the session does not re-deliver reminders.

Both loops call the same run_sweep(); only cadence, channels and the dedup
backing differ. This module depends on the HouseholdStore and channel
ports, not on specific implementations.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from src.core.dedup import MemoryDedupTracker, SessionDedupTracker
from src.core.obligations import build_snapshot
from src.core.sweep import SweepConfig, SweepResult, run_sweep
from src.data.models import Channel, ErrorRecord, Heartbeat

if TYPE_CHECKING:
    from telegram.ext import ContextTypes, JobQueue

    from src.config import Settings
    from src.core.dedup import DedupTracker
    from src.core.dispatcher import ChannelDispatcher
    from src.data.models import HouseholdSnapshot
    from src.ports.store_port import HouseholdStore

logger = logging.getLogger(__name__)

HEADLESS_JOB_NAME = "reminder_sweep"


def sweep_config_from_settings(
    settings: Settings,
    channels: set[Channel],
    member_scope: str | None = None,
) -> SweepConfig:
    return SweepConfig(
        channels=frozenset(channels),
        escalation_times=list(settings.ESCALATION_TIMES),
        lookback_default=timedelta(minutes=settings.LOOKBACK_MINUTES_DEFAULT),
        lookback_medication=timedelta(minutes=settings.LOOKBACK_MINUTES_MEDICATION),
        notify_assignee=settings.ESCALATION_NOTIFY_ASSIGNEE,
        member_scope=member_scope,
    )


def load_snapshots(
    store: HouseholdStore,
    now: datetime,
    settings: Settings,
) -> tuple[list[HouseholdSnapshot], list[tuple[str, Exception]]]:
    """Read every household from the store.

    A household that fails to load (store error, unknown timezone) is left
    out of this tick and reported; the others still run.
    """
    snapshots: list[HouseholdSnapshot] = []
    errors: list[tuple[str, Exception]] = []
    # Two days back covers "yesterday" in any household timezone
    since = (now.astimezone(timezone.utc).date() - timedelta(days=2)).isoformat()

    for raw in store.list_household_records():
        household_id = raw.get("id", "?")
        try:
            snapshots.append(build_snapshot(
                raw,
                events=store.list_events(household_id),
                chores=store.list_chores(household_id),
                medications=store.list_medications(household_id),
                profiles=store.list_health_profiles(household_id),
                medication_completions=store.list_medication_completions(household_id, since),
                default_timezone=settings.DEFAULT_TIMEZONE,
                default_due_time=settings.DEFAULT_DUE_TIME,
            ))
        except Exception as exc:
            logger.error("Failed to load household %s: %s", household_id, exc)
            errors.append((f"load:{household_id}", exc))
    return snapshots, errors


class _SweepLoop:
    """Tick bookkeeping shared by both runtime contexts."""

    def __init__(
        self,
        store: HouseholdStore,
        dispatcher: ChannelDispatcher,
        tracker: DedupTracker,
        config: SweepConfig,
        settings: Settings,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._tracker = tracker
        self._config = config
        self._settings = settings
        self._last_tick: datetime | None = None
        self._in_progress = False

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    @property
    def tracker(self) -> DedupTracker:
        return self._tracker

    async def tick(self, now: datetime | None = None) -> list[SweepResult] | None:
        """Run one sweep. Returns None when skipped because one is still running."""
        if self._in_progress:
            logger.warning("Previous sweep still running, skipping this tick")
            return None

        now = now or datetime.now(timezone.utc)
        self._in_progress = True
        try:
            return await self._tick(now)
        finally:
            self._last_tick = now
            self._in_progress = False

    async def _tick(self, now: datetime) -> list[SweepResult]:
        snapshots, load_errors = load_snapshots(self._store, now, self._settings)
        for context, exc in load_errors:
            self._on_error(context, exc)

        results: list[SweepResult] = []
        for snapshot in snapshots:
            try:
                result = await run_sweep(
                    snapshot, now, self._last_tick,
                    self._tracker, self._dispatcher, self._config,
                )
            except Exception as exc:
                self._on_error(f"sweep:{snapshot.household.id}", exc)
                continue
            for context, exc in result.errors:
                self._on_error(context, exc)
            results.append(result)

        self._tracker.prune(now, self._config.prune_horizon)
        return results

    def _on_error(self, context: str, exc: Exception) -> None:
        logger.error("ERROR [%s]: %s", context, exc)


# ---------------------------------------------------------------------------
# Headless scheduler
# ---------------------------------------------------------------------------


class HeadlessScheduler(_SweepLoop):
    """Always-on sweep over every household, with heartbeat and error log."""

    def __init__(
        self,
        store: HouseholdStore,
        dispatcher: ChannelDispatcher,
        settings: Settings,
        tracker: DedupTracker | None = None,
    ) -> None:
        super().__init__(
            store,
            dispatcher,
            tracker or MemoryDedupTracker(),
            sweep_config_from_settings(settings, {Channel.CHAT_BOT}),
            settings,
        )

    async def _tick(self, now: datetime) -> list[SweepResult]:
        self._write_heartbeat(now)
        try:
            return await super()._tick(now)
        except Exception as exc:
            self._on_error("FATAL_LOOP", exc)
            return []

    def _write_heartbeat(self, now: datetime) -> None:
        try:
            self._store.write_heartbeat(Heartbeat(
                status="online",
                last_heartbeat=now.isoformat(),
                version=self._settings.SCHEDULER_VERSION,
            ))
        except Exception as exc:
            self._on_error("heartbeat", exc)

    def _on_error(self, context: str, exc: Exception) -> None:
        super()._on_error(context, exc)
        try:
            self._store.append_error(ErrorRecord(
                context=context,
                message=str(exc) or type(exc).__name__,
                stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                timestamp=datetime.now(timezone.utc).isoformat(),
            ))
        except Exception as log_exc:
            logger.error("Failed to log error to store: %s", log_exc)

    async def job_callback(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        """JobQueue entry point."""
        await self.tick()

    def register(self, job_queue: JobQueue) -> None:
        """Schedule the sweep on a python-telegram-bot job queue (first run immediately)."""
        job_queue.run_repeating(
            self.job_callback,
            interval=self._settings.HEADLESS_TICK_SECONDS,
            first=0,
            name=HEADLESS_JOB_NAME,
        )
        logger.info(
            "Reminder sweep scheduled every %ds", self._settings.HEADLESS_TICK_SECONDS,
        )


# ---------------------------------------------------------------------------
# Foreground watcher
# ---------------------------------------------------------------------------


def session_file(settings: Settings, member_id: str) -> Path:
    """Default dedup file for one member's foreground session."""
    return Path(settings.SESSION_STATE_DIR) / f"notifications_{member_id}.json"


class ForegroundWatcher(_SweepLoop):
    """Session-scoped sweep for one member, delivering desktop notifications."""

    def __init__(
        self,
        store: HouseholdStore,
        dispatcher: ChannelDispatcher,
        member_id: str,
        settings: Settings,
        session_path: str | Path | None = None,
    ) -> None:
        super().__init__(
            store,
            dispatcher,
            SessionDedupTracker(session_path or session_file(settings, member_id)),
            sweep_config_from_settings(settings, {Channel.DESKTOP}, member_scope=member_id),
            settings,
        )
        self.member_id = member_id

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Tick every FOREGROUND_TICK_SECONDS until ``stop`` is set."""
        stop = stop or asyncio.Event()
        interval = self._settings.FOREGROUND_TICK_SECONDS
        logger.info("Foreground watcher started for %s (every %ds)", self.member_id, interval)

        while not stop.is_set():
            try:
                await self.tick()
            except Exception as exc:
                logger.error("FATAL WATCHER ERROR: %s", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Foreground watcher stopped")
