# src/zmanit/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..alerts.dispatcher import AlertDispatcher
from ..scheduling.calendar import WorkCalendar
from ..scheduling.cascade import CascadeOptions
from ..scheduling.day_order import DayOrderBook
from ..scheduling.slots import SlotOptions
from ..state.sync import PollingFeed
from ..tasks.task_store import TaskStore
from ..timer.coordinator import TimerCoordinator
from ..timer.watchers import IdleDetector, OverrunWatcher, ScheduleWatcher
from .ports import Clock, StateStore


@dataclass
class AppState:
    """One wired engine per execution context (process)."""

    # Store Settings on the state for easy access in commands.
    settings: object

    clock: Clock
    store: StateStore
    feed: PollingFeed
    task_store: TaskStore
    calendar: WorkCalendar
    slot_options: SlotOptions
    cascade_options: CascadeOptions

    dispatcher: AlertDispatcher
    coordinator: TimerCoordinator
    day_orders: DayOrderBook
    idle_detector: IdleDetector
    overrun_watcher: OverrunWatcher
    schedule_watcher: ScheduleWatcher

    # Serializes engine operations of this context (console thread vs. polling loops).
    lock: threading.RLock = field(default_factory=threading.RLock)
