"""Household store port — abstract interface over the persistent store.

The store is owned by the UI layer: the reminder engine only reads
households, obligations and completions, and writes its own monitoring
records (heartbeat, error log).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.data.models import ErrorRecord, Heartbeat


class StoreError(Exception):
    """Raised when the store cannot be read or written."""


class HouseholdStore(Protocol):
    """Read-only obligation access plus monitoring writes."""

    def list_household_records(self) -> list[dict]: ...

    def list_events(self, household_id: str) -> list[dict]: ...

    def list_chores(self, household_id: str) -> list[dict]: ...

    def list_medications(self, household_id: str) -> list[dict]: ...

    def list_health_profiles(self, household_id: str) -> list[dict]: ...

    def list_medication_completions(
        self, household_id: str, since: str,
    ) -> list[dict]: ...

    def write_heartbeat(self, heartbeat: Heartbeat) -> None: ...

    def append_error(self, record: ErrorRecord) -> None: ...
