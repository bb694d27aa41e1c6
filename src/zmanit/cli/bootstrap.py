# src/zmanit/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (stores/feed/coordinator/alerts/watchers),
- runs the retention sweeps once on start.
"""

from __future__ import annotations

import logging

from ..alerts.dispatcher import AlertDispatcher
from ..config import get_settings
from ..connectors.console_connector import ConsolePresenter
from ..connectors.desktop_push import NotifySendPush
from ..core.clock import SystemClock
from ..core.errors import StoreUnavailable
from ..core.ports import Clock, Presenter
from ..core.state import AppState
from ..scheduling.calendar import WorkCalendar
from ..scheduling.cascade import CascadeOptions
from ..scheduling.day_order import DayOrderBook
from ..scheduling.slots import SlotOptions
from ..state.store import SqliteStateStore
from ..state.sync import PollingFeed
from ..tasks.task_store import TaskStore
from ..timer.coordinator import TimerCoordinator
from ..timer.watchers import IdleDetector, OverrunWatcher, ScheduleWatcher

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.state_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
        *,
        settings=None,
        clock: Clock | None = None,
        presenter: Presenter | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    clock = clock or SystemClock()
    if presenter is None:
        presenter = ConsolePresenter()

    store = SqliteStateStore(settings.state_db_path)
    feed = PollingFeed(store)
    task_store = TaskStore(settings.tasks_db_path)
    calendar = WorkCalendar.from_settings(settings)
    cascade_options = CascadeOptions.from_settings(settings)

    dispatcher = AlertDispatcher(
        clock=clock,
        presenter=presenter,
        push=NotifySendPush(app_name=settings.app_name) if settings.push_enabled else None,
        push_enabled=settings.push_enabled,
        min_interval_minutes=settings.alert_min_interval_minutes,
        history_max=settings.alert_history_max,
        history_hours=settings.alert_history_hours,
    )
    if settings.push_enabled:
        dispatcher.request_push_permission()

    coordinator = TimerCoordinator(
        store=store,
        feed=feed,
        task_repo=task_store,
        clock=clock,
        cascade_options=cascade_options,
        presenter=presenter,
        dispatcher=dispatcher,
    )

    state = AppState(
        settings=settings,
        clock=clock,
        store=store,
        feed=feed,
        task_store=task_store,
        calendar=calendar,
        slot_options=SlotOptions.from_settings(settings),
        cascade_options=cascade_options,
        dispatcher=dispatcher,
        coordinator=coordinator,
        day_orders=DayOrderBook(store),
        idle_detector=IdleDetector(
            store=store,
            coordinator=coordinator,
            clock=clock,
            calendar=calendar,
            dispatcher=dispatcher,
            threshold_minutes=settings.idle_threshold_minutes,
        ),
        overrun_watcher=OverrunWatcher(
            coordinator=coordinator,
            task_repo=task_store,
            clock=clock,
            cascade_options=cascade_options,
            dispatcher=dispatcher,
        ),
        schedule_watcher=ScheduleWatcher(
            coordinator=coordinator,
            task_repo=task_store,
            clock=clock,
            dispatcher=dispatcher,
            lead_minutes=settings.schedule_lead_minutes,
            grace_minutes=settings.overdue_grace_minutes,
            break_interval_minutes=settings.break_interval_minutes,
        ),
    )

    # Another context may have left two active timers behind.
    coordinator.rescan()
    run_retention_sweeps(state)
    return state


def run_retention_sweeps(state: AppState) -> None:
    today = state.clock.now().date()
    try:
        state.day_orders.sweep(today, state.settings.day_order_retention_days)
        state.idle_detector.sweep(today, state.settings.idle_log_retention_days)
    except StoreUnavailable:
        logger.warning("Retention sweep skipped: state store unavailable.")
