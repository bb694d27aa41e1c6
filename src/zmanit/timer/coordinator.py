# src/zmanit/timer/coordinator.py

from __future__ import annotations

"""
Timer coordinator.

Owns the single-active-timer rule for one execution context. Several coordinators
(one per open context) may share the same StateStore, so:
- every operation re-derives the timer view from the store right before writing
- multi-key updates (switch, start + active_timer) go through one put_many
- a rescan heals the rare dual-active state left by two contexts racing
  (newest record wins, the others are paused)

Callers serialize operations of one context (AppState.lock).
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any

from ..alerts.models import AlertAction, AlertPriority, AlertRecord, AlertType
from ..core.errors import ConflictError, InvalidStateError, StoreUnavailable
from ..core.ports import ChangeFeed, Clock, Presenter, StateStore, TaskRepo
from ..scheduling.calendar import minutes_of
from ..scheduling.cascade import (
    CascadeOptions,
    CascadePlan,
    apply_plan,
    cascade_after_interruption,
    cascade_after_overrun,
)
from ..state.store import ACTIVE_TIMER_KEY, TIMER_PREFIX, timer_key
from ..tasks.task_models import TaskRef
from .models import TimerEvent, TimerRecord, TimerView, derive_timer_view

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StopResult:
    task_id: str
    seconds: int
    minutes: int
    overran: bool = False
    plan: CascadePlan | None = None


class TimerCoordinator:
    def __init__(
            self,
            *,
            store: StateStore,
            feed: ChangeFeed,
            task_repo: TaskRepo,
            clock: Clock,
            cascade_options: CascadeOptions | None = None,
            presenter: Presenter | None = None,
            dispatcher=None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._tasks = task_repo
        self._clock = clock
        self._cascade = cascade_options or CascadeOptions()
        self.presenter = presenter
        self.dispatcher = dispatcher

        self._publishing = False
        self._unsubscribe = [
            feed.subscribe(f"{TIMER_PREFIX}*", self._on_change),
            feed.subscribe(ACTIVE_TIMER_KEY, self._on_change),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # ---- queries ----

    def view(self) -> TimerView:
        return derive_timer_view(self._store.items(TIMER_PREFIX))

    def get_timer(self, task_id: str) -> TimerRecord | None:
        record = TimerRecord.from_dict(self._store.get(timer_key(task_id)))
        if record is None or record.task_id != str(task_id):
            return None
        return record

    def active_task_id(self) -> str | None:
        return self.view().active_task_id

    # ---- transitions ----

    def start_timer(self, task_id: str) -> TimerRecord:
        """
        Start (or resume) the timer of task_id.

        Raises ConflictError when another task's timer is active; the caller must
        confirm and use switch_timer().
        """
        task_id = str(task_id)
        now = self._clock.now()
        view = self.view()

        other = next((tid for tid in view.active_ids if tid != task_id), None)
        if other is not None:
            raise ConflictError(active_task_id=other, requested_task_id=task_id)

        current = view.records.get(task_id)
        if current is not None and current.is_active:
            return current

        record, event = self._running(current, task_id, now)
        self._commit({timer_key(task_id): record.to_dict(), ACTIVE_TIMER_KEY: task_id}, event, record)
        if event == TimerEvent.STARTED:
            self._started_alert(task_id)
        return record

    def switch_timer(self, from_task_id: str, to_task_id: str) -> TimerRecord:
        """Pause from_task_id and start to_task_id as one store transition."""
        from_task_id = str(from_task_id)
        to_task_id = str(to_task_id)
        if from_task_id == to_task_id:
            return self.start_timer(to_task_id)

        now = self._clock.now()
        view = self.view()

        other = next((tid for tid in view.active_ids if tid not in (from_task_id, to_task_id)), None)
        if other is not None:
            raise ConflictError(active_task_id=other, requested_task_id=to_task_id)

        changes: dict[str, Any] = {}
        source = view.records.get(from_task_id)
        if source is not None and source.is_active:
            changes[timer_key(from_task_id)] = self._paused(source, now).to_dict()

        target = view.records.get(to_task_id)
        if target is not None and target.is_active:
            record = target
        else:
            record, _ = self._running(target, to_task_id, now)
            changes[timer_key(to_task_id)] = record.to_dict()
        changes[ACTIVE_TIMER_KEY] = to_task_id

        self._commit(changes, TimerEvent.SWITCHED, record)
        self._started_alert(to_task_id)
        return record

    def pause_timer(self, task_id: str) -> TimerRecord:
        task_id = str(task_id)
        now = self._clock.now()
        view = self.view()

        current = view.records.get(task_id)
        if current is None or not current.is_active:
            raise InvalidStateError(task_id, "timer is not running")

        record = self._paused(current, now)
        changes = {timer_key(task_id): record.to_dict(), ACTIVE_TIMER_KEY: self._next_active(view, task_id)}
        self._commit(changes, TimerEvent.PAUSED, record)
        return record

    def resume_timer(self, task_id: str) -> TimerRecord:
        task_id = str(task_id)
        now = self._clock.now()
        view = self.view()

        current = view.records.get(task_id)
        if current is None or not current.is_running or current.is_active:
            raise InvalidStateError(task_id, "no paused timer to resume")

        other = next((tid for tid in view.active_ids if tid != task_id), None)
        if other is not None:
            raise InvalidStateError(task_id, f"timer of task {other} is active")

        record, event = self._running(current, task_id, now)
        self._commit({timer_key(task_id): record.to_dict(), ACTIVE_TIMER_KEY: task_id}, event, record)
        return record

    def interrupt_timer(self, task_id: str, duration_minutes: int) -> tuple[TimerRecord, CascadePlan]:
        """
        Freeze the running timer and push the rest of today's schedule by the
        interruption (duration_minutes, injected at the interruption instant).
        """
        task_id = str(task_id)
        if duration_minutes <= 0:
            raise ValueError("interruption duration must be positive")

        now = self._clock.now()
        view = self.view()

        current = view.records.get(task_id)
        if current is None or not current.is_active:
            raise InvalidStateError(task_id, "only a running timer can be interrupted")

        record = replace(
            current,
            start_time=None,
            is_interrupted=True,
            interrupted_at=now,
            accumulated_seconds=current.elapsed_seconds(now),
            last_updated=now,
        )
        changes = {timer_key(task_id): record.to_dict(), ACTIVE_TIMER_KEY: self._next_active(view, task_id)}
        self._commit(changes, TimerEvent.INTERRUPTED, record)

        day = now.date()
        tasks = self._tasks_for(day)
        if tasks is None:
            return record, CascadePlan(day=day, anchor_id=task_id)
        plan = cascade_after_interruption(tasks, day, task_id, minutes_of(now), duration_minutes, self._cascade)
        self.apply_cascade(plan)
        return record, plan

    def stop_timer(self, task_id: str) -> StopResult:
        """
        Finalize the timer, report minutes to the Task Store and remove the record.

        A Task Store failure is reported as an alert; local state stays stopped.
        """
        task_id = str(task_id)
        now = self._clock.now()
        view = self.view()

        current = view.records.get(task_id)
        if current is None or not current.is_running:
            raise InvalidStateError(task_id, "no timer to stop")

        seconds = current.elapsed_seconds(now)
        minutes = round(seconds / 60)
        final = replace(
            current,
            start_time=None,
            is_running=False,
            is_paused=False,
            is_interrupted=False,
            accumulated_seconds=seconds,
            last_updated=now,
        )

        changes: dict[str, Any] = {timer_key(task_id): None}
        if current.is_active:
            changes[ACTIVE_TIMER_KEY] = self._next_active(view, task_id)
        self._commit(changes, TimerEvent.STOPPED, final)

        try:
            self._tasks.record_time_spent(task_id, minutes)
        except (StoreUnavailable, ValueError):
            logger.warning("Time-spent write-back failed task_id=%s minutes=%s", task_id, minutes)
            self._sync_failed(task_id, f"Could not save {minutes} min spent; the timer was stopped locally.")

        task = self._task(task_id)
        overran = task is not None and seconds >= task.duration * 60
        plan = None
        # Only a timer that was still running ends "now"; a paused one already ended.
        if overran and current.is_active:
            day = now.date()
            if task.due_date == day:
                tasks = self._tasks_for(day)
                if tasks is not None:
                    plan = cascade_after_overrun(tasks, day, task_id, minutes_of(now), self._cascade)
                    self.apply_cascade(plan)

        return StopResult(task_id=task_id, seconds=seconds, minutes=minutes, overran=overran, plan=plan)

    def clear_timer(self, task_id: str) -> bool:
        """Drop a timer record without reporting time (task completed or discarded)."""
        task_id = str(task_id)
        view = self.view()
        current = view.records.get(task_id)
        if current is None:
            return False

        changes: dict[str, Any] = {timer_key(task_id): None}
        if current.is_active:
            changes[ACTIVE_TIMER_KEY] = self._next_active(view, task_id)
        self._commit(changes, TimerEvent.CLEARED, replace(current, is_running=False, last_updated=self._clock.now()))
        return True

    def rescan(self) -> TimerView:
        """
        Re-derive the view from the store and restore the single-active rule.

        With more than one active record the most recently updated stays active.
        """
        now = self._clock.now()
        view = self.view()

        changes: dict[str, Any] = {}
        healed: list[TimerRecord] = []
        for task_id in view.conflicts:
            paused = self._paused(view.records[task_id], now)
            changes[timer_key(task_id)] = paused.to_dict()
            healed.append(paused)

        stored_active = self._store.get(ACTIVE_TIMER_KEY)
        if stored_active != view.active_task_id:
            changes[ACTIVE_TIMER_KEY] = view.active_task_id

        if not changes:
            return view

        if healed:
            logger.warning("Healing %d extra active timer(s); keeping task=%s", len(healed), view.active_task_id)
        self._commit(changes, TimerEvent.HEALED, *healed)
        return self.view()

    # ---- internals ----

    @staticmethod
    def _running(current: TimerRecord | None, task_id: str, now: datetime) -> tuple[TimerRecord, TimerEvent]:
        if current is not None and current.is_running:
            record = replace(
                current,
                start_time=now,
                is_paused=False,
                is_interrupted=False,
                paused_at=None,
                interrupted_at=None,
                last_updated=now,
            )
            return record, TimerEvent.RESUMED
        record = TimerRecord(task_id=task_id, start_time=now, is_running=True, last_updated=now)
        return record, TimerEvent.STARTED

    @staticmethod
    def _paused(current: TimerRecord, now: datetime) -> TimerRecord:
        return replace(
            current,
            start_time=None,
            is_paused=True,
            paused_at=now,
            accumulated_seconds=current.elapsed_seconds(now),
            last_updated=now,
        )

    @staticmethod
    def _next_active(view: TimerView, leaving: str) -> str | None:
        return next((tid for tid in view.active_ids if tid != leaving), None)

    def _commit(self, changes: dict[str, Any], event: TimerEvent, *records: TimerRecord) -> None:
        self._store.put_many(changes)

        self._publishing = True
        try:
            for key, value in changes.items():
                self._feed.publish(key, value)
        finally:
            self._publishing = False

        for record in records:
            logger.info("Timer %s task=%s accumulated=%ss", event.value, record.task_id, record.accumulated_seconds)
            if self.presenter is None:
                continue
            try:
                self.presenter.render_timer_state(record)
            except Exception:
                logger.exception("Timer render failed task=%s", record.task_id)

    def _on_change(self, key: str, value: Any) -> None:
        if self._publishing:
            return
        logger.debug("Timer change observed key=%s; rescanning", key)
        self.rescan()

    def _tasks_for(self, day: date) -> list[TaskRef] | None:
        try:
            return self._tasks.get_tasks_for_date(day)
        except StoreUnavailable:
            logger.warning("Task Store unavailable while reading %s", day)
            return None

    def _task(self, task_id: str) -> TaskRef | None:
        try:
            return self._tasks.get_task(task_id)
        except (StoreUnavailable, ValueError):
            logger.warning("Task Store has no readable task %s", task_id)
            return None

    def apply_cascade(self, plan: CascadePlan) -> None:
        """Write a cascade back to the Task Store and alert about failures and overflow."""
        failed = apply_plan(self._tasks, plan)
        if failed:
            self._sync_failed(plan.anchor_id, f"Could not save new times for {len(failed)} task(s).")
        if plan.has_overflow:
            names = ", ".join(f'"{c.title}"' for c in plan.overflow)
            self._alert(
                AlertRecord(
                    alert_type=AlertType.SCHEDULE_CONFLICT,
                    priority=AlertPriority.HIGH,
                    title="Schedule overflow",
                    message=f"No room left today for {names}. Move them or work overtime.",
                    task_id=plan.anchor_id,
                    show_popup=True,
                    actions=(
                        AlertAction("overtime", "Work overtime", primary=True),
                        AlertAction("move", "Move to another day"),
                        AlertAction("manual", "Leave for later"),
                    ),
                )
            )

    def _started_alert(self, task_id: str) -> None:
        task = self._task(task_id)
        title = task.title if task is not None else f"task {task_id}"
        self._alert(
            AlertRecord(
                alert_type=AlertType.TASK_STARTED,
                priority=AlertPriority.LOW,
                title="Task started",
                message=f'Started working on "{title}"',
                task_id=task_id,
                min_interval_minutes=0,
            )
        )

    def _sync_failed(self, task_id: str, message: str) -> None:
        self._alert(
            AlertRecord(
                alert_type=AlertType.SYNC_FAILED,
                priority=AlertPriority.LOW,
                title="Not saved",
                message=message,
                task_id=task_id,
            )
        )

    def _alert(self, alert: AlertRecord) -> None:
        if self.dispatcher is not None:
            self.dispatcher.send(alert)
