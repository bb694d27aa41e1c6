# src/zmanit/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import StrEnum

DEFAULT_DURATION_MINUTES = 30


class TaskPriority(StrEnum):
    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.NORMAL
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.NORMAL

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


@dataclass(frozen=True, slots=True)
class TaskRef:
    """
    Task as seen by the engine.

    The Task Store owns the record; the engine only ever writes due_date/due_time back.
    due_time is a "HH:MM" wall-clock string.
    """

    id: str
    title: str
    estimated_duration: int
    due_date: date | None = None
    due_time: str | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    is_completed: bool = False

    @property
    def duration(self) -> int:
        return self.estimated_duration if self.estimated_duration > 0 else DEFAULT_DURATION_MINUTES
