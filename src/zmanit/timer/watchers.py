# src/zmanit/timer/watchers.py

from __future__ import annotations

"""
Periodic watchers run every T_check by run_watch_loop().

- IdleDetector: no active timer for T_idle during work hours -> one IDLE_DETECTED
  alert per idle episode; closed episodes are logged per day under idle_log::<date>
- OverrunWatcher: the active task's elapsed time against its estimate -> soft
  warning, then hard overrun with a single cascade per timer episode
- ScheduleWatcher: today's timed tasks against the clock -> starting soon, not
  started, block ending, transition to the next task, break reminder

To stop the loop, cancel the coroutine/task.
"""

import asyncio
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from ..alerts.models import AlertAction, AlertPriority, AlertRecord, AlertType
from ..core.errors import StoreUnavailable
from ..core.ports import Clock, StateStore, TaskRepo
from ..scheduling.calendar import WorkCalendar, minutes_of, time_to_minutes
from ..scheduling.cascade import CascadeOptions, ProgressLevel, cascade_after_overrun, classify_progress, day_chain
from ..state.store import IDLE_LOG_PREFIX, IDLE_SINCE_KEY, idle_log_key, key_suffix
from ..tasks.task_models import TaskRef
from .coordinator import TimerCoordinator

logger = logging.getLogger(__name__)

IDLE_ALERT_KEY = "idle-detected"


@dataclass(frozen=True, slots=True)
class IdlePeriod:
    start: datetime
    end: datetime
    minutes: int

    @classmethod
    def between(cls, start: datetime, end: datetime) -> IdlePeriod:
        return cls(start=start, end=end, minutes=max(0, int((end - start).total_seconds() // 60)))

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "minutes": self.minutes}

    @classmethod
    def from_dict(cls, raw: Any) -> IdlePeriod | None:
        if not isinstance(raw, dict):
            return None
        try:
            return cls.between(datetime.fromisoformat(raw["start"]), datetime.fromisoformat(raw["end"]))
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True, slots=True)
class IdleStats:
    date: date
    periods: tuple[IdlePeriod, ...]
    total_minutes: int
    current_minutes: int  # open episode, not yet logged


class IdleDetector:
    def __init__(
            self,
            *,
            store: StateStore,
            coordinator: TimerCoordinator,
            clock: Clock,
            calendar: WorkCalendar,
            dispatcher=None,
            threshold_minutes: int = 15,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._clock = clock
        self._calendar = calendar
        self.dispatcher = dispatcher
        self._threshold = timedelta(minutes=threshold_minutes)
        self._alerted_for: datetime | None = None

    def idle_since(self) -> datetime | None:
        raw = self._store.get(IDLE_SINCE_KEY)
        if not isinstance(raw, str):
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def check(self) -> bool:
        """One idle check. Returns True when an IDLE_DETECTED alert was raised."""
        now = self._clock.now()
        since = self.idle_since()

        if self._coordinator.view().active_task_id is not None:
            if since is not None:
                self._close_episode(since, now)
            self._alerted_for = None
            return False

        if not self._calendar.in_work_hours(now):
            if since is not None:
                self._close_episode(since, min(now, self._calendar.work_end_at(since.date())))
            self._alerted_for = None
            return False

        if since is None:
            self._store.put(IDLE_SINCE_KEY, now.isoformat())
            logger.debug("Idle episode started at %s", now.isoformat())
            return False

        if now - since < self._threshold or self._alerted_for == since:
            return False

        self._alerted_for = since
        idle_minutes = int((now - since).total_seconds() // 60)
        logger.info("Idle detected for %d minutes", idle_minutes)
        if self.dispatcher is not None:
            self.dispatcher.send(
                AlertRecord(
                    alert_type=AlertType.IDLE_DETECTED,
                    priority=AlertPriority.MEDIUM,
                    title="No timer running",
                    message=f"No task has been running for {idle_minutes} minutes. What's next?",
                    key=IDLE_ALERT_KEY,
                    show_popup=True,
                    actions=(
                        AlertAction("start", "Start a task", primary=True),
                        AlertAction("break", "On a break"),
                    ),
                )
            )
        return True

    def acknowledge(self) -> None:
        """The user answered the idle prompt: close the episode and re-arm."""
        now = self._clock.now()
        since = self.idle_since()
        if since is not None:
            self._close_episode(since, now)
            if self._calendar.in_work_hours(now):
                self._store.put(IDLE_SINCE_KEY, now.isoformat())
        self._alerted_for = None

    def _close_episode(self, start: datetime, end: datetime) -> None:
        period = IdlePeriod.between(start, end)
        self._store.delete(IDLE_SINCE_KEY)
        if period.minutes < 1:
            return

        key = idle_log_key(start.date())
        log = self._store.get(key)
        entries = log if isinstance(log, list) else []
        entries.append(period.to_dict())
        self._store.put(key, entries)
        logger.info("Idle episode logged %s-%s (%d min)", start.strftime("%H:%M"), end.strftime("%H:%M"), period.minutes)

    def periods_for(self, day: date) -> list[IdlePeriod]:
        raw = self._store.get(idle_log_key(day))
        if not isinstance(raw, list):
            return []
        return [p for p in (IdlePeriod.from_dict(x) for x in raw) if p is not None]

    def today_stats(self) -> IdleStats:
        now = self._clock.now()
        periods = tuple(self.periods_for(now.date()))
        since = self.idle_since()
        current = 0
        if since is not None and since.date() == now.date():
            current = int((now - since).total_seconds() // 60)
        return IdleStats(
            date=now.date(),
            periods=periods,
            total_minutes=sum(p.minutes for p in periods),
            current_minutes=current,
        )

    def learned_daily_buffer(self, days: int = 7) -> int:
        """Mean logged idle minutes per day over the last `days` days that have a log."""
        today = self._clock.now().date()
        totals = []
        for offset in range(days):
            periods = self.periods_for(today - timedelta(days=offset))
            if periods:
                totals.append(sum(p.minutes for p in periods))
        if not totals:
            return 0
        return round(sum(totals) / len(totals))

    def sweep(self, today: date, retention_days: int = 30) -> int:
        cutoff = today - timedelta(days=retention_days)
        stale: dict[str, None] = {}
        for key in self._store.items(IDLE_LOG_PREFIX):
            try:
                day = date.fromisoformat(key_suffix(key, IDLE_LOG_PREFIX))
            except ValueError:
                stale[key] = None
                continue
            if day < cutoff:
                stale[key] = None
        if stale:
            self._store.put_many(stale)
            logger.info("Idle log sweep removed=%d", len(stale))
        return len(stale)


class OverrunWatcher:
    def __init__(
            self,
            *,
            coordinator: TimerCoordinator,
            task_repo: TaskRepo,
            clock: Clock,
            cascade_options: CascadeOptions | None = None,
            dispatcher=None,
    ) -> None:
        self._coordinator = coordinator
        self._tasks = task_repo
        self._clock = clock
        self._options = cascade_options or CascadeOptions()
        self.dispatcher = dispatcher
        # task_id -> highest level already reported for the current timer episode
        self._levels: dict[str, ProgressLevel] = {}

    def check(self) -> ProgressLevel | None:
        now = self._clock.now()
        view = self._coordinator.view()

        for task_id in list(self._levels):
            record = view.records.get(task_id)
            if record is None or not record.is_running:
                del self._levels[task_id]

        active = view.active
        if active is None:
            return None

        try:
            task = self._tasks.get_task(active.task_id)
        except StoreUnavailable:
            logger.warning("Task Store unavailable during overrun check")
            return None
        except ValueError:
            task = None
        if task is None:
            return None

        progress = classify_progress(active.elapsed_seconds(now) / 60, task.duration, self._options.soft_ratio)
        previous = self._levels.get(task.id, ProgressLevel.ON_TRACK)
        if progress.level == previous or progress.level == ProgressLevel.ON_TRACK:
            return progress.level
        self._levels[task.id] = progress.level

        if progress.level == ProgressLevel.SOFT_WARNING:
            self._alert(
                AlertRecord(
                    alert_type=AlertType.TASK_ENDING_SOON,
                    priority=AlertPriority.MEDIUM,
                    title="Almost out of time",
                    message=f'"{task.title}" has used {progress.percent}% of its {task.duration} minutes.',
                    task_id=task.id,
                )
            )
            return progress.level

        logger.info("Hard overrun task=%s elapsed=%s%%", task.id, progress.percent)
        day = now.date()
        scheduled_today = task.due_date == day and bool(task.due_time)
        message = f'"{task.title}" is over its {task.duration}-minute estimate.'
        if scheduled_today:
            message += " Later tasks were pushed."
        self._alert(
            AlertRecord(
                alert_type=AlertType.TASK_OVERTIME,
                priority=AlertPriority.HIGH,
                title="Over the estimate",
                message=message,
                task_id=task.id,
                show_popup=True,
                actions=(
                    AlertAction("complete", "Finish now", primary=True),
                    AlertAction("extend", "Keep going"),
                ),
            )
        )
        if scheduled_today:
            try:
                tasks = self._tasks.get_tasks_for_date(day)
            except StoreUnavailable:
                logger.warning("Task Store unavailable; overrun cascade skipped task=%s", task.id)
                return progress.level
            plan = cascade_after_overrun(tasks, day, task.id, minutes_of(now), self._options)
            self._coordinator.apply_cascade(plan)
        return progress.level

    def _alert(self, alert: AlertRecord) -> None:
        if self.dispatcher is not None:
            self.dispatcher.send(alert)


class ScheduleWatcher:
    """
    Alerts around today's timed tasks:
    - no timer running: "starts soon" within lead_minutes, "not started" within grace_minutes after
    - the task's timer running: "block ends soon", then "time to move on" once its block is over
    - continuous timer work for break_interval_minutes: break reminder

    Each (alert type, task) fires once per day; the transition prompt repeats at most
    every TRANSITION_REPEAT_MINUTES through the dispatcher's dedup.
    """

    TRANSITION_REPEAT_MINUTES = 15

    def __init__(
            self,
            *,
            coordinator: TimerCoordinator,
            task_repo: TaskRepo,
            clock: Clock,
            dispatcher=None,
            lead_minutes: int = 5,
            grace_minutes: int = 15,
            break_interval_minutes: int = 90,
    ) -> None:
        self._coordinator = coordinator
        self._tasks = task_repo
        self._clock = clock
        self.dispatcher = dispatcher
        self._lead = lead_minutes
        self._grace = grace_minutes
        self._break_interval = timedelta(minutes=break_interval_minutes)

        self._day: date | None = None
        self._sent: set[tuple[AlertType, str]] = set()
        self._working_since: datetime | None = None

    def check(self) -> list[AlertRecord]:
        """One pass over today's schedule. Returns the alerts handed to the dispatcher."""
        now = self._clock.now()
        day = now.date()
        if self._day != day:
            self._day = day
            self._sent.clear()

        active_id = self._coordinator.view().active_task_id
        raised: list[AlertRecord] = []
        self._check_break(now, active_id, raised)

        try:
            chain = day_chain(self._tasks.get_tasks_for_date(day), day)
        except StoreUnavailable:
            logger.warning("Task Store unavailable during schedule check")
            return raised

        current = minutes_of(now)
        for i, task in enumerate(chain):
            start = time_to_minutes(task.due_time)
            if active_id is None:
                until_start = start - current
                if 0 < until_start <= self._lead:
                    self._once(raised, self._starting_soon(task, until_start))
                elif -self._grace <= until_start < 0:
                    self._once(raised, self._overdue(task))
            elif active_id == task.id:
                to_end = start + task.duration - current
                if 0 < to_end <= self._lead:
                    self._once(raised, self._block_ending(task, to_end))
                elif to_end < 0:
                    following = next((t for t in chain[i + 1:] if t.id != task.id), None)
                    self._raise(raised, self._transition(task, following))

        return raised

    def _check_break(self, now: datetime, active_id: str | None, raised: list[AlertRecord]) -> None:
        if active_id is None:
            self._working_since = None
            return
        if self._working_since is None:
            self._working_since = now
            return
        worked = now - self._working_since
        if worked < self._break_interval:
            return

        # Count the next stretch from here, whether or not the break is taken.
        self._working_since = now
        minutes = int(worked.total_seconds() // 60)
        hours, rest = divmod(minutes, 60)
        span = f"{hours} h {rest} min" if hours else f"{rest} min"
        self._raise(
            raised,
            AlertRecord(
                alert_type=AlertType.BREAK_REMINDER,
                priority=AlertPriority.MEDIUM,
                title="Time for a break",
                message=f"You have been working for {span} without a break.",
                key="break-reminder",
                show_popup=True,
                actions=(
                    AlertAction("take_break", "Take a break", primary=True),
                    AlertAction("snooze_15", "15 more minutes"),
                    AlertAction("dismiss", "Dismiss"),
                ),
            ),
        )

    @staticmethod
    def _starting_soon(task: TaskRef, minutes: int) -> AlertRecord:
        return AlertRecord(
            alert_type=AlertType.TASK_STARTING_SOON,
            priority=AlertPriority.HIGH,
            title="Starting soon",
            message=f'"{task.title}" starts in {minutes} min ({task.due_time}).',
            task_id=task.id,
            show_popup=True,
            actions=(
                AlertAction("start_now", "Start now", primary=True),
                AlertAction("snooze_5", "5 more minutes"),
            ),
        )

    @staticmethod
    def _overdue(task: TaskRef) -> AlertRecord:
        return AlertRecord(
            alert_type=AlertType.TASK_OVERDUE,
            priority=AlertPriority.CRITICAL,
            title="Task not started",
            message=f'"{task.title}" was due to start at {task.due_time}.',
            task_id=task.id,
            actions=(
                AlertAction("start_now", "Start now", primary=True),
                AlertAction("reschedule", "Reschedule"),
                AlertAction("skip", "Skip"),
            ),
        )

    @staticmethod
    def _block_ending(task: TaskRef, minutes: int) -> AlertRecord:
        return AlertRecord(
            alert_type=AlertType.TASK_ENDING_SOON,
            priority=AlertPriority.MEDIUM,
            title="Block ending",
            message=f'The block for "{task.title}" ends in {minutes} min.',
            task_id=task.id,
            key=f"block-ending:{task.id}",
            show_popup=True,
            actions=(
                AlertAction("complete", "Finish", primary=True),
                AlertAction("extend_15", "15 more minutes"),
            ),
        )

    def _transition(self, task: TaskRef, following: TaskRef | None) -> AlertRecord:
        if following is not None:
            message = f'Time to move from "{task.title}" to "{following.title}" ({following.due_time}).'
            actions = (
                AlertAction("transition", f'Start "{following.title}"', primary=True),
                AlertAction("extend_15", "15 more minutes"),
                AlertAction("complete_current", "Finish and continue"),
            )
        else:
            message = f'The block for "{task.title}" is over. What next?'
            actions = (
                AlertAction("complete", "Finish task", primary=True),
                AlertAction("break", "Take a break"),
            )
        return AlertRecord(
            alert_type=AlertType.TRANSITION_NEEDED,
            priority=AlertPriority.CRITICAL,
            title="Time to switch",
            message=message,
            task_id=task.id,
            min_interval_minutes=self.TRANSITION_REPEAT_MINUTES,
            actions=actions,
        )

    def _once(self, raised: list[AlertRecord], alert: AlertRecord) -> None:
        marker = (alert.alert_type, alert.task_id or "")
        if marker in self._sent:
            return
        self._sent.add(marker)
        self._raise(raised, alert)

    def _raise(self, raised: list[AlertRecord], alert: AlertRecord) -> None:
        logger.info("Schedule alert %s task=%s", alert.alert_type.value, alert.task_id)
        raised.append(alert)
        if self.dispatcher is not None:
            self.dispatcher.send(alert)


async def run_watch_loop(
        watchers: Iterable,
        *,
        interval_seconds: float = 60.0,
        lock: threading.RLock | None = None,
) -> None:
    """Run every watcher's check() each interval_seconds until cancelled."""
    watchers = list(watchers)
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        for watcher in watchers:
            try:
                if lock is not None:
                    with lock:
                        watcher.check()
                else:
                    watcher.check()
            except StoreUnavailable:
                logger.warning("State store unavailable during %s check", type(watcher).__name__)
            except Exception:
                logger.exception("%s check failed", type(watcher).__name__)

        await asyncio.sleep(sleep_s)
