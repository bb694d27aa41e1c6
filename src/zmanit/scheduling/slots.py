# src/zmanit/scheduling/slots.py

from __future__ import annotations

"""
Slot suggester.

Given a read-only snapshot of scheduled tasks, propose the soonest (date, start) pairs
for a new task of a given duration:
- days are walked from today, skipping non-work days, up to the search horizon
- a day whose remaining capacity is smaller than the duration is skipped outright
- otherwise the first gap between occupied intervals (lunch + timed tasks) that fits wins

Nothing here retries or widens the search; an empty result means "no capacity found".
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from ..core.ports import TaskRepo
from ..tasks.task_models import TaskRef
from .calendar import WorkCalendar, minutes_of, minutes_to_time, round_up, time_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SlotOptions:
    lead_minutes: int = 10
    grid_minutes: int = 15
    horizon_days: int = 14
    max_suggestions: int = 5

    @classmethod
    def from_settings(cls, settings) -> SlotOptions:
        return cls(
            lead_minutes=int(settings.slot_lead_minutes),
            grid_minutes=int(settings.slot_grid_minutes),
            horizon_days=int(settings.slot_horizon_days),
            max_suggestions=int(settings.slot_max_suggestions),
        )


@dataclass(frozen=True, slots=True)
class SlotSuggestion:
    date: date
    start: str
    end: str
    load_percent: int
    remaining_minutes: int  # capacity left on that day after placing the task

    @property
    def label(self) -> str:
        return f"{self.date.isoformat()} {self.start}-{self.end}"


@dataclass(frozen=True, slots=True)
class DayLoad:
    date: date
    scheduled_minutes: int
    remaining_minutes: int
    load_percent: int
    tasks_count: int
    is_full: bool
    is_overloaded: bool


def _open_tasks_on(day: date, tasks: list[TaskRef]) -> list[TaskRef]:
    return [t for t in tasks if t.due_date == day and not t.is_completed]


def scheduled_minutes(day: date, tasks: list[TaskRef]) -> int:
    """Sum of estimates for open tasks due that day, timed or not."""
    return sum(t.duration for t in _open_tasks_on(day, tasks))


def occupied_intervals(day: date, tasks: list[TaskRef], calendar: WorkCalendar) -> list[tuple[int, int]]:
    """Lunch plus every timed open task of the day, sorted by start."""
    occupied = [calendar.lunch]
    for t in _open_tasks_on(day, tasks):
        if not t.due_time:
            continue
        start = time_to_minutes(t.due_time)
        occupied.append((start, start + t.duration))
    occupied.sort()
    return occupied


def find_slot_in_day(
        day: date,
        duration: int,
        tasks: list[TaskRef],
        calendar: WorkCalendar,
        *,
        now: datetime,
        options: SlotOptions,
) -> tuple[int, int] | None:
    search_start = calendar.work_start
    if day == now.date():
        earliest = round_up(minutes_of(now) + options.lead_minutes, options.grid_minutes)
        search_start = max(search_start, earliest)

    current = search_start
    for occ_start, occ_end in occupied_intervals(day, tasks, calendar):
        if current + duration <= occ_start:
            break
        current = max(current, occ_end)

    if current + duration <= calendar.work_end:
        return current, current + duration
    return None


def suggest_slots(
        duration: int,
        tasks: list[TaskRef],
        *,
        now: datetime,
        calendar: WorkCalendar,
        options: SlotOptions | None = None,
) -> list[SlotSuggestion]:
    """Up to options.max_suggestions candidates, soonest first, at most one per day."""
    if duration <= 0:
        raise ValueError("duration must be positive")
    options = options or SlotOptions()

    suggestions: list[SlotSuggestion] = []
    day = now.date()
    for _ in range(options.horizon_days):
        if len(suggestions) >= options.max_suggestions:
            break

        if calendar.is_work_day(day):
            scheduled = scheduled_minutes(day, tasks)
            remaining = calendar.capacity_minutes - scheduled
            if remaining >= duration:
                slot = find_slot_in_day(day, duration, tasks, calendar, now=now, options=options)
                if slot is not None:
                    start, end = slot
                    suggestions.append(
                        SlotSuggestion(
                            date=day,
                            start=minutes_to_time(start),
                            end=minutes_to_time(end),
                            load_percent=round(scheduled * 100 / calendar.capacity_minutes),
                            remaining_minutes=remaining - duration,
                        )
                    )
            else:
                logger.debug("Skipping %s: remaining=%s < duration=%s", day, remaining, duration)

        day += timedelta(days=1)

    logger.debug("suggest_slots duration=%s -> %d candidates", duration, len(suggestions))
    return suggestions


def day_load(day: date, tasks: list[TaskRef], calendar: WorkCalendar) -> DayLoad:
    scheduled = scheduled_minutes(day, tasks)
    capacity = calendar.capacity_minutes
    return DayLoad(
        date=day,
        scheduled_minutes=scheduled,
        remaining_minutes=capacity - scheduled,
        load_percent=round(scheduled * 100 / capacity),
        tasks_count=len([t for t in _open_tasks_on(day, tasks) if t.due_time]),
        is_full=scheduled >= capacity * 0.9,
        is_overloaded=scheduled > capacity,
    )


def collect_horizon(task_repo: TaskRepo, start: date, days: int) -> list[TaskRef]:
    """Snapshot of every task due within [start, start + days) from the Task Store."""
    out: list[TaskRef] = []
    for offset in range(max(0, days)):
        out.extend(task_repo.get_tasks_for_date(start + timedelta(days=offset)))
    return out
