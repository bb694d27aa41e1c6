# src/zmanit/scheduling/cascade.py

from __future__ import annotations

"""
Cascade rescheduling.

When a task runs past its estimate (or an interruption injects unplanned time), the
following same-day tasks are pushed so that each starts at least `gap_minutes` after its
predecessor ends. The walk stops at the first task that is already clear.

Tasks that would have to start at or after the reschedule cutoff are never moved here:
they come back as OverflowCandidate values and the caller decides (overtime, another day,
manual handling).
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import StrEnum

from ..core.errors import StoreUnavailable
from ..core.ports import TaskRepo
from ..tasks.task_models import TaskRef
from .calendar import minutes_to_time, time_to_minutes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CascadeOptions:
    gap_minutes: int = 5
    cutoff: int = 16 * 60
    soft_ratio: float = 0.8

    @classmethod
    def from_settings(cls, settings) -> CascadeOptions:
        return cls(
            gap_minutes=int(settings.cascade_gap_minutes),
            cutoff=time_to_minutes(settings.reschedule_cutoff),
            soft_ratio=float(settings.overrun_soft_ratio),
        )


@dataclass(frozen=True, slots=True)
class Reschedule:
    task_id: str
    old_time: str | None
    new_time: str


@dataclass(frozen=True, slots=True)
class OverflowCandidate:
    """Not an error: a task the cascade could not fit before the cutoff."""

    task_id: str
    title: str
    original_time: str | None
    proposed_time: str


@dataclass(frozen=True, slots=True)
class CascadePlan:
    day: date
    anchor_id: str
    moves: tuple[Reschedule, ...] = ()
    overflow: tuple[OverflowCandidate, ...] = ()

    @property
    def has_overflow(self) -> bool:
        return bool(self.overflow)

    @property
    def is_empty(self) -> bool:
        return not self.moves and not self.overflow


def day_chain(tasks: list[TaskRef], day: date, anchor_id: str | None = None) -> list[TaskRef]:
    """
    Open tasks of `day` with an explicit start time, earliest first.

    The anchor sorts first among tasks sharing its start time, so those tasks follow it.
    """
    chain = [t for t in tasks if t.due_date == day and t.due_time and not t.is_completed]
    chain.sort(key=lambda t: (time_to_minutes(t.due_time), t.id != anchor_id, t.id))
    return chain


def cascade_from_end(
        tasks: list[TaskRef],
        day: date,
        anchor_id: str,
        anchor_end: int,
        options: CascadeOptions,
        *,
        anchor_move: Reschedule | None = None,
) -> CascadePlan:
    """Push tasks after the anchor so none starts before previous_end + gap."""
    chain = day_chain(tasks, day, anchor_id)
    index = next((i for i, t in enumerate(chain) if t.id == anchor_id), None)
    if index is None:
        logger.debug("Cascade anchor %s not scheduled on %s; nothing to do", anchor_id, day)
        return CascadePlan(day=day, anchor_id=anchor_id)

    moves: list[Reschedule] = [anchor_move] if anchor_move is not None else []
    overflow: list[OverflowCandidate] = []

    previous_end = anchor_end
    for task in chain[index + 1:]:
        start = time_to_minutes(task.due_time)
        earliest = previous_end + options.gap_minutes
        if start >= earliest:
            # Chain is no longer congested.
            break

        if earliest >= options.cutoff:
            overflow.append(
                OverflowCandidate(
                    task_id=task.id,
                    title=task.title,
                    original_time=task.due_time,
                    proposed_time=minutes_to_time(earliest),
                )
            )
        else:
            moves.append(Reschedule(task_id=task.id, old_time=task.due_time, new_time=minutes_to_time(earliest)))
        previous_end = earliest + task.duration

    plan = CascadePlan(day=day, anchor_id=anchor_id, moves=tuple(moves), overflow=tuple(overflow))
    logger.info(
        "Cascade day=%s anchor=%s moves=%d overflow=%d",
        day,
        anchor_id,
        len(plan.moves),
        len(plan.overflow),
    )
    return plan


def cascade_reschedule(
        tasks: list[TaskRef],
        day: date,
        anchor_id: str,
        new_time: str,
        options: CascadeOptions,
        *,
        duration: int | None = None,
) -> CascadePlan:
    """The anchor moves to new_time (and optionally takes `duration`); followers cascade."""
    anchor = next((t for t in day_chain(tasks, day) if t.id == anchor_id), None)
    if anchor is None:
        return CascadePlan(day=day, anchor_id=anchor_id)

    anchor_end = time_to_minutes(new_time) + (duration if duration is not None else anchor.duration)
    move = None
    if anchor.due_time != new_time:
        move = Reschedule(task_id=anchor_id, old_time=anchor.due_time, new_time=new_time)
    return cascade_from_end(tasks, day, anchor_id, anchor_end, options, anchor_move=move)


def cascade_after_interruption(
        tasks: list[TaskRef],
        day: date,
        anchor_id: str,
        interrupted_at: int,
        interruption_minutes: int,
        options: CascadeOptions,
) -> CascadePlan:
    """An interruption injects its whole duration at the anchor, regardless of progress."""
    return cascade_from_end(tasks, day, anchor_id, interrupted_at + max(0, interruption_minutes), options)


def cascade_after_overrun(
        tasks: list[TaskRef],
        day: date,
        anchor_id: str,
        ended_at: int,
        options: CascadeOptions,
) -> CascadePlan:
    """The anchor overran its estimate and ends (or is still running) at `ended_at`."""
    return cascade_from_end(tasks, day, anchor_id, ended_at, options)


def apply_plan(task_repo: TaskRepo, plan: CascadePlan) -> list[str]:
    """
    Write the plan's moves back to the Task Store.

    Overflow candidates are left untouched. Returns the ids whose write-back failed;
    failures are logged and do not stop the remaining writes.
    """
    failed: list[str] = []
    for move in plan.moves:
        try:
            task_repo.update_task_schedule(move.task_id, due_date=plan.day, due_time=move.new_time)
        except StoreUnavailable:
            logger.warning("Reschedule write-back failed task_id=%s -> %s", move.task_id, move.new_time)
            failed.append(move.task_id)
    return failed


class ProgressLevel(StrEnum):
    ON_TRACK = "on_track"
    SOFT_WARNING = "soft_warning"
    HARD_OVERRUN = "hard_overrun"


@dataclass(frozen=True, slots=True)
class Progress:
    level: ProgressLevel
    percent: int
    overrun_minutes: int


def classify_progress(actual_minutes: float, estimate_minutes: int, soft_ratio: float = 0.8) -> Progress:
    """Soft warning from soft_ratio of the estimate, hard overrun from 100%."""
    estimate = estimate_minutes if estimate_minutes > 0 else 30
    if actual_minutes >= estimate:
        level = ProgressLevel.HARD_OVERRUN
    elif actual_minutes >= estimate * soft_ratio:
        level = ProgressLevel.SOFT_WARNING
    else:
        level = ProgressLevel.ON_TRACK
    return Progress(
        level=level,
        percent=round(actual_minutes * 100 / estimate),
        overrun_minutes=max(0, int(actual_minutes - estimate)),
    )
