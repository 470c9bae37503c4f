# src/daybook/records/record_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any

from .record_models import Habit, Quote, Task

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class RecordStore:
    """
    SQLite store for the records the background jobs read: tasks, quotes, habits.

    Implements the RecordStore port (list_active_habits, list_quote_candidates,
    get_task_by_id, list_tasks_due_between, update_task_completion) plus the
    CRUD helpers the console and tests use.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "daybook.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("RecordStore ready db=%s", self._db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

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
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS quotes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    text TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS habits (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )

            def add_cols(table: str, wanted: dict[str, str]) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                for name, decl in wanted.items():
                    if name in cols:
                        continue
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                    logger.info("RecordStore migration: added column %s.%s", table, name)

            add_cols(
                "tasks",
                {
                    "description": "TEXT NOT NULL DEFAULT ''",
                    "due_at": "REAL",
                    "reminder_at": "REAL",
                    "is_completed": "INTEGER NOT NULL DEFAULT 0",
                },
            )
            add_cols("quotes", {"author": "TEXT", "is_active": "INTEGER NOT NULL DEFAULT 1"})
            add_cols("habits", {"is_active": "INTEGER NOT NULL DEFAULT 1"})

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(is_completed, due_at)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            reminder_at=float(row["reminder_at"]) if row["reminder_at"] is not None else None,
            is_completed=bool(row["is_completed"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- tasks ----

    def add_task(
        self,
        *,
        title: str,
        description: str = "",
        due_at: float | None = None,
        reminder_at: float | None = None,
        task_id: str | None = None,
    ) -> Task:
        if not title or not title.strip():
            raise ValueError("title is required")

        now = time.time()
        task = Task(
            id=task_id or str(uuid.uuid4()),
            title=title.strip(),
            description=description,
            due_at=due_at,
            reminder_at=reminder_at,
            is_completed=False,
            created_at=now,
            updated_at=now,
        )
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(id, title, description, due_at, reminder_at, is_completed, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (task.id, task.title, task.description, due_at, reminder_at, now, now),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Task added id=%s due_at=%s reminder_at=%s", task.id, due_at, reminder_at)
        return task

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        due_at: float | None = _UNSET,
        reminder_at: float | None = _UNSET,
    ) -> Task | None:
        """Update selected fields. due_at / reminder_at accept None to clear them."""
        fields: list[str] = []
        params: list[Any] = []

        if title is not None:
            fields.append("title = ?")
            params.append(title.strip())
        if due_at is not _UNSET:
            fields.append("due_at = ?")
            params.append(due_at)
        if reminder_at is not _UNSET:
            fields.append("reminder_at = ?")
            params.append(reminder_at)

        if fields:
            fields.append("updated_at = ?")
            params.append(time.time())
            params.append(task_id)
            conn = self._get_conn()
            try:
                conn.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params)
                conn.commit()
            finally:
                conn.close()
        return self.get_task_by_id(task_id)

    def delete_task(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        finally:
            conn.close()

    def get_task_by_id(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_tasks_due_between(self, start_ts: float, end_ts: float) -> list[Task]:
        """Tasks (completed or not) with start_ts <= due_at < end_ts, earliest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE due_at IS NOT NULL
                  AND due_at >= ?
                  AND due_at < ?
                ORDER BY due_at ASC, created_at ASC
                """,
                (float(start_ts), float(end_ts)),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def update_task_completion(self, task_id: str, completed: bool) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE tasks SET is_completed = ?, updated_at = ? WHERE id = ?",
                (int(bool(completed)), time.time(), task_id),
            )
            conn.commit()
        finally:
            conn.close()

    # ---- quotes ----

    def add_quote(self, text: str, author: str | None = None, *, is_active: bool = True) -> Quote:
        if not text or not text.strip():
            raise ValueError("text is required")
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT INTO quotes(text, author, is_active, created_at) VALUES (?, ?, ?, ?)",
                (text.strip(), author, int(is_active), time.time()),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for quotes insert")
            return Quote(id=int(rowid), text=text.strip(), author=author, is_active=is_active)
        finally:
            conn.close()

    def set_quote_active(self, quote_id: int, active: bool) -> None:
        conn = self._get_conn()
        try:
            conn.execute("UPDATE quotes SET is_active = ? WHERE id = ?", (int(active), int(quote_id)))
            conn.commit()
        finally:
            conn.close()

    def delete_quote(self, quote_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM quotes WHERE id = ?", (int(quote_id),))
            conn.commit()
        finally:
            conn.close()

    def list_quote_candidates(self, active_only: bool = True) -> list[Quote]:
        conn = self._get_conn()
        try:
            sql = "SELECT * FROM quotes"
            if active_only:
                sql += " WHERE is_active = 1"
            rows = conn.execute(sql + " ORDER BY id ASC").fetchall()
            return [
                Quote(id=int(r["id"]), text=str(r["text"]), author=r["author"], is_active=bool(r["is_active"]))
                for r in rows
            ]
        finally:
            conn.close()

    # ---- habits ----

    def add_habit(self, name: str, *, is_active: bool = True) -> Habit:
        if not name or not name.strip():
            raise ValueError("name is required")
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "INSERT INTO habits(name, is_active, created_at) VALUES (?, ?, ?)",
                (name.strip(), int(is_active), time.time()),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for habits insert")
            return Habit(id=int(rowid), name=name.strip(), is_active=is_active)
        finally:
            conn.close()

    def list_active_habits(self) -> list[Habit]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM habits WHERE is_active = 1 ORDER BY id ASC").fetchall()
            return [Habit(id=int(r["id"]), name=str(r["name"]), is_active=True) for r in rows]
        finally:
            conn.close()
