# src/zmanit/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from datetime import date
from pathlib import Path

from ..core.errors import StoreUnavailable
from .task_models import DEFAULT_DURATION_MINUTES, TaskPriority, TaskRef

logger = logging.getLogger(__name__)


class TaskStore:
    """
    SQLite task store (the Task Store collaborator).

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection

    Every sqlite3 failure surfaces as StoreUnavailable.
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreUnavailable:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open task store {self._db_path}") from e
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    estimated_duration INTEGER NOT NULL DEFAULT 30,
                    due_date TEXT,
                    due_time TEXT,
                    priority TEXT NOT NULL DEFAULT 'normal',
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    time_spent INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("priority", "TEXT NOT NULL DEFAULT 'normal'")
            add_col("is_completed", "INTEGER NOT NULL DEFAULT 0")
            add_col("time_spent", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(due_date, due_time)")
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable("task store schema setup failed") from e
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> TaskRef:
        due_date = None
        if row["due_date"]:
            try:
                due_date = date.fromisoformat(row["due_date"])
            except ValueError:
                due_date = None
        return TaskRef(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            estimated_duration=int(row["estimated_duration"] or DEFAULT_DURATION_MINUTES),
            due_date=due_date,
            due_time=row["due_time"] or None,
            priority=TaskPriority.from_db(row["priority"]),
            is_completed=bool(row["is_completed"]),
        )

    @staticmethod
    def _task_pk(task_id: str) -> int:
        try:
            return int(task_id)
        except (TypeError, ValueError):
            raise ValueError(f"unknown task id: {task_id!r}") from None

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        except sqlite3.Error as e:
            raise StoreUnavailable("count failed") from e
        finally:
            conn.close()

    def add_task(
        self,
        *,
        title: str,
        estimated_duration: int = DEFAULT_DURATION_MINUTES,
        due_date: date | None = None,
        due_time: str | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
    ) -> str:
        if not title or not title.strip():
            raise ValueError("title is required")
        if estimated_duration <= 0:
            raise ValueError("estimated_duration must be positive")

        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO tasks(title, estimated_duration, due_date, due_time, priority,
                                  is_completed, time_spent, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, 0, ?, ?)
                """,
                (
                    title.strip(),
                    int(estimated_duration),
                    due_date.isoformat() if due_date else None,
                    due_time,
                    priority.value,
                    now,
                    now,
                ),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise StoreUnavailable("SQLite did not return lastrowid for tasks insert")
            logger.debug("Task added id=%s due=%s %s", rowid, due_date, due_time)
            return str(rowid)
        except sqlite3.Error as e:
            raise StoreUnavailable("insert failed") from e
        finally:
            conn.close()

    def get_task(self, task_id: str) -> TaskRef | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (self._task_pk(task_id),)).fetchone()
            return self._row_to_task(row) if row else None
        except sqlite3.Error as e:
            raise StoreUnavailable(f"read failed task_id={task_id}") from e
        finally:
            conn.close()

    def get_tasks_for_date(self, day: date) -> list[TaskRef]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE due_date = ?
                ORDER BY COALESCE(due_time, '99:99') ASC, id ASC
                """,
                (day.isoformat(),),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        except sqlite3.Error as e:
            raise StoreUnavailable(f"read failed date={day}") from e
        finally:
            conn.close()

    def list_unscheduled(self, limit: int = 32) -> list[TaskRef]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE due_date IS NULL AND is_completed = 0
                ORDER BY created_at ASC
                    LIMIT ?
                """,
                (int(limit),),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]
        except sqlite3.Error as e:
            raise StoreUnavailable("read failed (unscheduled)") from e
        finally:
            conn.close()

    def update_task_schedule(
        self,
        task_id: str,
        *,
        due_date: date | None = None,
        due_time: str | None = None,
    ) -> None:
        fields: list[str] = []
        params: list[object] = []

        if due_date is not None:
            fields.append("due_date = ?")
            params.append(due_date.isoformat())

        if due_time is not None:
            fields.append("due_time = ?")
            params.append(due_time)

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(self._task_pk(task_id))

        conn = self._get_conn()
        try:
            conn.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params)
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"schedule update failed task_id={task_id}") from e
        finally:
            conn.close()

    def record_time_spent(self, task_id: str, minutes: int) -> None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET time_spent = time_spent + ?, updated_at = ? WHERE id = ?",
                (max(0, int(minutes)), time.time(), self._task_pk(task_id)),
            )
            conn.commit()
            if cur.rowcount == 0:
                raise ValueError(f"unknown task id: {task_id!r}")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"time-spent update failed task_id={task_id}") from e
        finally:
            conn.close()

    def time_spent(self, task_id: str) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT time_spent FROM tasks WHERE id = ?", (self._task_pk(task_id),)).fetchone()
            return int(row["time_spent"]) if row else 0
        except sqlite3.Error as e:
            raise StoreUnavailable(f"read failed task_id={task_id}") from e
        finally:
            conn.close()

    def complete_task(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE tasks SET is_completed = 1, updated_at = ? WHERE id = ?",
                (time.time(), self._task_pk(task_id)),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"complete failed task_id={task_id}") from e
        finally:
            conn.close()
