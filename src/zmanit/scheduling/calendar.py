# src/zmanit/scheduling/calendar.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta


def time_to_minutes(value: str | None) -> int:
    """'HH:MM' -> minutes since midnight ('' / None -> 0)."""
    if not value:
        return 0
    parts = value.strip().split(":")
    try:
        hours = int(parts[0])
        mins = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        return 0
    return hours * 60 + mins


def minutes_to_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def minutes_of(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def round_up(minutes: int, grid: int) -> int:
    if grid <= 1:
        return minutes
    return -(-minutes // grid) * grid


@dataclass(frozen=True, slots=True)
class WorkCalendar:
    """
    Work days/hours and the daily capacity model.

    All times are minutes since midnight. work_days holds datetime.weekday() numbers.
    """

    work_days: tuple[int, ...] = (6, 0, 1, 2, 3)
    work_start: int = 8 * 60
    work_end: int = 17 * 60
    capacity_minutes: int = 420
    lunch_start: int = 12 * 60 + 30
    lunch_minutes: int = 30
    reschedule_cutoff: int = 16 * 60

    @classmethod
    def from_settings(cls, settings) -> WorkCalendar:
        return cls(
            work_days=tuple(settings.work_days),
            work_start=time_to_minutes(settings.work_start),
            work_end=time_to_minutes(settings.work_end),
            capacity_minutes=int(settings.daily_capacity_minutes),
            lunch_start=time_to_minutes(settings.lunch_start),
            lunch_minutes=int(settings.lunch_minutes),
            reschedule_cutoff=time_to_minutes(settings.reschedule_cutoff),
        )

    @property
    def lunch(self) -> tuple[int, int]:
        return self.lunch_start, self.lunch_start + self.lunch_minutes

    def is_work_day(self, day: date) -> bool:
        return day.weekday() in self.work_days

    def in_work_hours(self, moment: datetime) -> bool:
        if not self.is_work_day(moment.date()):
            return False
        return self.work_start <= minutes_of(moment) < self.work_end

    def work_end_at(self, day: date) -> datetime:
        return datetime.combine(day, time()) + timedelta(minutes=self.work_end)
