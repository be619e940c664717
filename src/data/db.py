"""
LifeSync Reminders — Household Database.

SQLite-backed reference implementation of the HouseholdStore port.
Households, events, chores, medications and health profiles are stored
as JSON documents (the UI owns their shape); completions and monitoring
records get real columns because the engine queries them.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator

from src.data.models import ErrorRecord, Heartbeat
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)

_DOCUMENT_TABLES = ("events", "chores", "medications", "health_profiles")
_SCHEDULER_DOC = "scheduler"


class HouseholdDB:
    """SQLite storage for household documents and scheduler monitoring."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        with closing(conn), conn:
            yield conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS households (
                    id    TEXT PRIMARY KEY,
                    data  TEXT NOT NULL
                )
            """)
            for table in _DOCUMENT_TABLES:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        household_id  TEXT NOT NULL,
                        id            TEXT NOT NULL,
                        data          TEXT NOT NULL,
                        PRIMARY KEY (household_id, id)
                    )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS medication_completions (
                    household_id  TEXT NOT NULL,
                    med_id        TEXT NOT NULL,
                    date          TEXT NOT NULL,
                    time          TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (household_id, med_id, date, time)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_status (
                    id              TEXT PRIMARY KEY,
                    status          TEXT NOT NULL,
                    last_heartbeat  TEXT NOT NULL,
                    version         TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_logs (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    context    TEXT NOT NULL,
                    message    TEXT NOT NULL,
                    stack      TEXT,
                    timestamp  TEXT NOT NULL
                )
            """)
        logger.debug("Household tables initialized at %s", self._db_path)

    # -----------------------------------------------------------------------
    # Writes owned by the UI (also used to seed tests)
    # -----------------------------------------------------------------------

    def upsert_household(self, record: dict) -> None:
        """Insert or replace a household document (must carry an ``id``)."""
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO households (id, data) VALUES (?, ?)",
                (record["id"], json.dumps(record)),
            )
        logger.info("Household %s saved", record["id"])

    def upsert_document(self, table: str, household_id: str, record: dict) -> None:
        """Insert or replace an event / chore / medication / health profile."""
        if table not in _DOCUMENT_TABLES:
            raise ValueError(f"Unknown document table: {table!r}")
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (household_id, id, data) VALUES (?, ?, ?)",
                (household_id, str(record["id"]), json.dumps(record)),
            )

    def add_medication_completion(
        self, household_id: str, med_id: str, date: str, time: str = "",
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO medication_completions
                    (household_id, med_id, date, time)
                VALUES (?, ?, ?, ?)
                """,
                (household_id, med_id, date, time),
            )
        logger.info("Medication %s marked taken on %s %s", med_id, date, time)

    # -----------------------------------------------------------------------
    # Reads (HouseholdStore)
    # -----------------------------------------------------------------------

    def list_household_records(self) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute("SELECT data FROM households ORDER BY id").fetchall()
        return [json.loads(r["data"]) for r in rows]

    def list_events(self, household_id: str) -> list[dict]:
        return self._documents("events", household_id)

    def list_chores(self, household_id: str) -> list[dict]:
        return self._documents("chores", household_id)

    def list_medications(self, household_id: str) -> list[dict]:
        """Active medications only."""
        return [
            m for m in self._documents("medications", household_id)
            if m.get("active", True)
        ]

    def list_health_profiles(self, household_id: str) -> list[dict]:
        return self._documents("health_profiles", household_id)

    def list_medication_completions(
        self, household_id: str, since: str,
    ) -> list[dict]:
        """Completions dated ``since`` (ISO date) or later."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT med_id, date, time FROM medication_completions
                WHERE household_id = ? AND date >= ?
                ORDER BY date, time
                """,
                (household_id, since),
            ).fetchall()
        return [
            {"medId": r["med_id"], "date": r["date"], "time": r["time"] or None}
            for r in rows
        ]

    def _documents(self, table: str, household_id: str) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT data FROM {table} WHERE household_id = ? ORDER BY id",
                (household_id,),
            ).fetchall()
        return [json.loads(r["data"]) for r in rows]

    # -----------------------------------------------------------------------
    # Monitoring (headless scheduler only)
    # -----------------------------------------------------------------------

    def write_heartbeat(self, heartbeat: Heartbeat) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO system_status (id, status, last_heartbeat, version)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    last_heartbeat = excluded.last_heartbeat,
                    version = excluded.version
                """,
                (_SCHEDULER_DOC, heartbeat.status, heartbeat.last_heartbeat, heartbeat.version),
            )

    def get_heartbeat(self) -> Heartbeat | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM system_status WHERE id = ?", (_SCHEDULER_DOC,),
            ).fetchone()
        if row is None:
            return None
        return Heartbeat(
            status=row["status"],
            last_heartbeat=row["last_heartbeat"],
            version=row["version"],
        )

    def append_error(self, record: ErrorRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO system_logs (context, message, stack, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (record.context, record.message, record.stack, record.timestamp),
            )

    def list_errors(self, limit: int = 20) -> list[ErrorRecord]:
        """Most recent error records first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM system_logs ORDER BY id DESC LIMIT ?", (limit,),
            ).fetchall()
        return [
            ErrorRecord(
                context=r["context"],
                message=r["message"],
                stack=r["stack"] or "",
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
