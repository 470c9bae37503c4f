# src/daybook/jobs/job_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from .job_models import JobDefinition, JobKind, JobRecord, JobState, WorkPolicy

logger = logging.getLogger(__name__)


class JobStore:
    """
    SQLite job table: one row per job key (the live or last-known instance).

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - callers doing read-modify-write hold `locked()` around the whole sequence
    """

    def __init__(self, db_path: str | Path = "jobs.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._ensure_schema()
        logger.info("JobStore ready db=%s total=%s", self._db_path, self.count_jobs())

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Exclusive section for read-modify-write on the job table."""
        with self._lock:
            yield

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    key TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    state TEXT NOT NULL DEFAULT 'pending',
                    next_fire_at REAL NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(jobs)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE jobs ADD COLUMN {name} {decl}")
                logger.info("JobStore migration: added column %s", name)

            add_col("interval", "REAL")
            add_col("payload", "TEXT NOT NULL DEFAULT '{}'")
            add_col("policy", "TEXT NOT NULL DEFAULT 'replace'")
            add_col("not_before", "REAL")
            add_col("fire_immediately", "INTEGER NOT NULL DEFAULT 0")
            add_col("attempt", "INTEGER NOT NULL DEFAULT 0")
            add_col("last_error", "TEXT")
            add_col("cycle_at", "REAL")
            add_col("generation", "INTEGER NOT NULL DEFAULT 1")
            add_col("cancel_requested", "INTEGER NOT NULL DEFAULT 0")
            add_col("last_run_at", "REAL")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(state, next_fire_at)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _payload_to_str(payload: dict[str, Any]) -> str:
        return json.dumps(payload or {}, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _str_to_payload(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
        except ValueError:
            logger.warning("Job payload is not valid JSON; using {}")
            return {}
        return val if isinstance(val, dict) else {}

    def _row_to_record(self, row: sqlite3.Row) -> JobRecord:
        kind = JobKind(row["kind"])
        definition = JobDefinition(
            key=str(row["key"]),
            kind=kind,
            payload=self._str_to_payload(row["payload"]),
            policy=WorkPolicy(row["policy"] or WorkPolicy.REPLACE.value),
            not_before=float(row["not_before"]) if row["not_before"] is not None else None,
            interval=float(row["interval"]) if kind == JobKind.PERIODIC else None,
            fire_immediately=bool(row["fire_immediately"]),
        )
        return JobRecord(
            key=definition.key,
            definition=definition,
            state=JobState.from_db(row["state"]),
            next_fire_at=float(row["next_fire_at"]),
            attempt=int(row["attempt"] or 0),
            last_error=row["last_error"],
            cycle_at=float(row["cycle_at"]) if row["cycle_at"] is not None else None,
            generation=int(row["generation"] or 1),
            cancel_requested=bool(row["cancel_requested"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            last_run_at=float(row["last_run_at"]) if row["last_run_at"] is not None else None,
        )

    # ---- public API ----

    def count_jobs(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
            return int(n)
        finally:
            conn.close()

    def get(self, key: str) -> JobRecord | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM jobs WHERE key = ?", (key,)).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def put(self, record: JobRecord) -> None:
        """Insert or wholesale-replace the row for record.key."""
        d = record.definition
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO jobs(
                    key, kind, state, next_fire_at, created_at, updated_at,
                    interval, payload, policy, not_before, fire_immediately,
                    attempt, last_error, cycle_at, generation, cancel_requested, last_run_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.key,
                    d.kind.value,
                    record.state.value,
                    float(record.next_fire_at),
                    record.created_at,
                    record.updated_at,
                    d.interval,
                    self._payload_to_str(d.payload),
                    d.policy.value,
                    d.not_before,
                    int(d.fire_immediately),
                    int(record.attempt),
                    record.last_error,
                    record.cycle_at,
                    int(record.generation),
                    int(record.cancel_requested),
                    record.last_run_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug(
            "Job stored key=%s state=%s next_fire_at=%s attempt=%s gen=%s",
            record.key,
            record.state.value,
            record.next_fire_at,
            record.attempt,
            record.generation,
        )

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM jobs WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def list_records(self, *, states: Iterable[JobState] | None = None) -> list[JobRecord]:
        conn = self._get_conn()
        try:
            if states is None:
                rows = conn.execute("SELECT * FROM jobs ORDER BY next_fire_at ASC, key ASC").fetchall()
            else:
                wanted = [s.value for s in states]
                if not wanted:
                    return []
                placeholders = ",".join("?" for _ in wanted)
                rows = conn.execute(
                    f"SELECT * FROM jobs WHERE state IN ({placeholders}) ORDER BY next_fire_at ASC, key ASC",
                    wanted,
                ).fetchall()
            return [self._row_to_record(r) for r in rows]
        finally:
            conn.close()

    def list_due(
        self,
        *,
        now_ts: float,
        exclude_keys: Iterable[str] = (),
        limit: int = 32,
    ) -> list[JobRecord]:
        """
        Pending records whose next_fire_at has been reached, earliest first.

        This is the fire queue: ordered by next_fire_at, ties broken by key.
        """
        excluded = set(exclude_keys)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM jobs
                WHERE state = 'pending'
                  AND next_fire_at <= ?
                ORDER BY next_fire_at ASC, key ASC
                """,
                (float(now_ts),),
            ).fetchall()
        finally:
            conn.close()

        out: list[JobRecord] = []
        for row in rows:
            if row["key"] in excluded:
                continue
            out.append(self._row_to_record(row))
            if len(out) >= limit:
                break
        return out

    def next_fire_at(self, *, exclude_keys: Iterable[str] = ()) -> float | None:
        """Earliest next_fire_at among pending records (None when the queue is empty)."""
        excluded = set(exclude_keys)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT key, next_fire_at FROM jobs WHERE state = 'pending' ORDER BY next_fire_at ASC"
            ).fetchall()
        finally:
            conn.close()
        for row in rows:
            if row["key"] not in excluded:
                return float(row["next_fire_at"])
        return None
