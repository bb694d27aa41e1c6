# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from zmanit.alerts.dispatcher import AlertDispatcher
from zmanit.scheduling.calendar import WorkCalendar
from zmanit.state.store import InMemoryStateStore
from zmanit.state.sync import PollingFeed
from zmanit.timer.coordinator import TimerCoordinator

from .fakes import FakeClock, FakePush, FakeTaskRepo, RecordingPresenter, at


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the bootstrap and engine config builders.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="zmanit-test",
        log_level="DEBUG",
        console_enabled=False,
        push_enabled=False,
        data_dir=tmp_path,
        state_db_path=tmp_path / "state.sqlite3",
        tasks_db_path=tmp_path / "tasks.sqlite3",
        work_days=(0, 1, 2, 3, 6),
        work_start="08:00",
        work_end="17:00",
        daily_capacity_minutes=420,
        lunch_start="12:30",
        lunch_minutes=30,
        reschedule_cutoff="16:00",
        slot_lead_minutes=10,
        slot_grid_minutes=15,
        slot_horizon_days=14,
        slot_max_suggestions=5,
        cascade_gap_minutes=5,
        overrun_soft_ratio=0.8,
        timer_sync_seconds=5.0,
        idle_check_seconds=60.0,
        idle_threshold_minutes=15,
        alert_min_interval_minutes=5.0,
        alert_history_max=100,
        alert_history_hours=24.0,
        schedule_lead_minutes=5,
        overdue_grace_minutes=15,
        break_interval_minutes=90,
        day_order_retention_days=7,
        idle_log_retention_days=30,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(at("09:00"))


@pytest.fixture()
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture()
def repo() -> FakeTaskRepo:
    return FakeTaskRepo()


@pytest.fixture()
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture()
def push() -> FakePush:
    return FakePush()


@pytest.fixture()
def calendar() -> WorkCalendar:
    return WorkCalendar()


@pytest.fixture()
def dispatcher(clock: FakeClock, presenter: RecordingPresenter) -> AlertDispatcher:
    return AlertDispatcher(clock=clock, presenter=presenter)


@pytest.fixture()
def make_coordinator(
    store: InMemoryStateStore,
    repo: FakeTaskRepo,
    clock: FakeClock,
    presenter: RecordingPresenter,
    dispatcher: AlertDispatcher,
) -> Callable[[], TimerCoordinator]:
    """Each call builds one more context over the same shared store."""

    def factory() -> TimerCoordinator:
        return TimerCoordinator(
            store=store,
            feed=PollingFeed(store),
            task_repo=repo,
            clock=clock,
            presenter=presenter,
            dispatcher=dispatcher,
        )

    return factory


@pytest.fixture()
def coordinator(make_coordinator) -> TimerCoordinator:
    return make_coordinator()
