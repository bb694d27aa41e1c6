# src/zmanit/scheduling/day_order.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, timedelta

from ..core.ports import StateStore
from ..state.store import DAY_ORDER_PREFIX, day_order_key, key_suffix
from ..tasks.task_models import TaskRef
from .calendar import time_to_minutes

logger = logging.getLogger(__name__)

_UNORDERED = 10**6


def _basic_key(task: TaskRef) -> tuple:
    start = time_to_minutes(task.due_time) if task.due_time else _UNORDERED
    return start, task.priority.rank, task.title.casefold(), task.id


class DayOrderBook:
    """
    Manual per-day task order kept in the shared store under day_order::<date>.

    Every write is a read-modify-write of the single day key it touches.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    def load(self, day: date) -> list[str]:
        raw = self._store.get(day_order_key(day))
        if not isinstance(raw, list):
            return []
        return [str(x) for x in raw if x is not None]

    def save(self, day: date, ids: Iterable[str]) -> list[str]:
        order: list[str] = []
        for task_id in ids:
            task_id = str(task_id)
            if task_id not in order:
                order.append(task_id)
        self._store.put(day_order_key(day), order)
        return order

    def ensure(self, day: date, tasks: list[TaskRef]) -> list[str]:
        """Create the day's order on first render; an existing order is never overwritten."""
        order = self.load(day)
        if order:
            return order
        ids = [t.id for t in sorted(tasks, key=_basic_key)]
        if not ids:
            return []
        logger.debug("DayOrder created day=%s size=%d", day, len(ids))
        return self.save(day, ids)

    def sort_tasks_by_order(
            self,
            tasks: list[TaskRef],
            day: date,
            running_ids: Iterable[str] = (),
    ) -> list[TaskRef]:
        """
        Running tasks first, then saved position, then unknown ids by start time,
        priority and title. A total key, so repeated calls give the same order.
        """
        running = set(running_ids)
        index = {task_id: i for i, task_id in enumerate(self.load(day))}

        def key(task: TaskRef) -> tuple:
            return (0 if task.id in running else 1, index.get(task.id, _UNORDERED), *_basic_key(task))

        return sorted(tasks, key=key)

    def reorder(self, day: date, from_index: int, to_index: int) -> list[str]:
        order = self.load(day)
        if not 0 <= from_index < len(order):
            raise IndexError(f"no task at position {from_index} on {day}")
        moved = order.pop(from_index)
        to_index = max(0, min(to_index, len(order)))
        order.insert(to_index, moved)
        logger.info("DayOrder reorder day=%s task=%s %d->%d", day, moved, from_index, to_index)
        return self.save(day, order)

    def move_between_days(
            self,
            task_id: str,
            from_day: date,
            to_day: date,
            index: int | None = None,
    ) -> list[str]:
        """Remove task_id from from_day's order and insert it into to_day's (end by default)."""
        source = self.load(from_day)
        if task_id in source:
            source.remove(task_id)
            self.save(from_day, source)

        target = [x for x in self.load(to_day) if x != task_id]
        if index is None or index < 0 or index >= len(target):
            target.append(task_id)
        else:
            target.insert(index, task_id)
        logger.info("DayOrder move task=%s %s -> %s", task_id, from_day, to_day)
        return self.save(to_day, target)

    def sweep(self, today: date, retention_days: int = 7) -> int:
        """Drop orders for days older than retention_days; returns the number removed."""
        cutoff = today - timedelta(days=retention_days)
        stale: dict[str, None] = {}
        for key in self._store.items(DAY_ORDER_PREFIX):
            try:
                day = date.fromisoformat(key_suffix(key, DAY_ORDER_PREFIX))
            except ValueError:
                stale[key] = None
                continue
            if day < cutoff:
                stale[key] = None

        if stale:
            self._store.put_many(stale)
            logger.info("DayOrder sweep removed=%d", len(stale))
        return len(stale)
