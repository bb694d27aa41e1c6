# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

import pytest

from zmanit.tasks.task_models import TaskPriority
from zmanit.tasks.task_store import TaskStore

from .fakes import MONDAY


@pytest.fixture()
def tasks(tmp_path: Path) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3")


def test_add_and_get_task(tasks: TaskStore) -> None:
    task_id = tasks.add_task(
        title="  Write report ",
        estimated_duration=45,
        due_date=MONDAY,
        due_time="09:30",
        priority=TaskPriority.HIGH,
    )

    task = tasks.get_task(task_id)
    assert task is not None
    assert task.title == "Write report"
    assert task.estimated_duration == 45
    assert task.due_date == MONDAY
    assert task.due_time == "09:30"
    assert task.priority == TaskPriority.HIGH
    assert task.is_completed is False
    assert tasks.count_tasks() == 1
    assert tasks.get_task("999") is None


def test_tasks_for_date_are_ordered_by_time_then_untimed(tasks: TaskStore) -> None:
    late = tasks.add_task(title="late", due_date=MONDAY, due_time="14:00")
    untimed = tasks.add_task(title="untimed", due_date=MONDAY)
    early = tasks.add_task(title="early", due_date=MONDAY, due_time="08:30")
    tasks.add_task(title="inbox")

    assert [t.id for t in tasks.get_tasks_for_date(MONDAY)] == [early, late, untimed]
    assert [t.title for t in tasks.list_unscheduled()] == ["inbox"]


def test_update_schedule_only_touches_given_fields(tasks: TaskStore) -> None:
    task_id = tasks.add_task(title="t", due_date=MONDAY, due_time="09:00")

    tasks.update_task_schedule(task_id, due_time="10:10")
    task = tasks.get_task(task_id)
    assert task.due_date == MONDAY
    assert task.due_time == "10:10"


def test_time_spent_accumulates(tasks: TaskStore) -> None:
    task_id = tasks.add_task(title="t")

    tasks.record_time_spent(task_id, 15)
    tasks.record_time_spent(task_id, 10)
    tasks.record_time_spent(task_id, -5)

    assert tasks.time_spent(task_id) == 25


def test_complete_task(tasks: TaskStore) -> None:
    task_id = tasks.add_task(title="t")
    tasks.complete_task(task_id)

    assert tasks.get_task(task_id).is_completed is True
    assert tasks.list_unscheduled() == []


def test_invalid_input_is_rejected(tasks: TaskStore) -> None:
    with pytest.raises(ValueError):
        tasks.add_task(title="   ")
    with pytest.raises(ValueError):
        tasks.add_task(title="t", estimated_duration=0)
    with pytest.raises(ValueError):
        tasks.get_task("abc")
    with pytest.raises(ValueError):
        tasks.record_time_spent("999", 5)


def test_old_schema_is_migrated(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    conn = sqlite3.connect(str(db))
    conn.execute(
        """
        CREATE TABLE tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            estimated_duration INTEGER NOT NULL DEFAULT 30,
            due_date TEXT,
            due_time TEXT,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """
    )
    now = time.time()
    conn.execute(
        "INSERT INTO tasks(title, estimated_duration, due_date, due_time, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
        ("legacy", 20, MONDAY.isoformat(), "08:00", now, now),
    )
    conn.commit()
    conn.close()

    store = TaskStore(db)
    (task,) = store.get_tasks_for_date(MONDAY)

    assert task.title == "legacy"
    assert task.priority == TaskPriority.NORMAL
    assert task.is_completed is False
    store.record_time_spent(task.id, 5)
    assert store.time_spent(task.id) == 5
