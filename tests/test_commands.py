# tests/test_commands.py

from __future__ import annotations

import pytest

from zmanit.alerts.models import AlertType
from zmanit.cli.bootstrap import create_initial_state
from zmanit.cli.commands import CommandRegistry, registry

from .fakes import FakeClock, RecordingPresenter, at


@pytest.fixture()
def app(settings):
    clock = FakeClock(at("09:00"))
    state = create_initial_state(settings=settings, clock=clock, presenter=RecordingPresenter())
    yield state, clock
    state.coordinator.close()


def _run(state, line: str) -> str:
    reply = registry.handle(state, line)
    assert reply is not None
    return reply


def test_command_registry_routes_2_and_3_params() -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}
    notes: list[str] = []

    def h2(state, args):
        called["h2"] += 1
        return f"h2 {' '.join(args)}"

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a", aliases=["aa"])
    reg.register("b", h3, "b")

    assert reg.handle(None, "/a x y") == "h2 x y"
    assert reg.handle(None, "/AA") == "h2 "
    assert reg.handle(None, "/b", emit=notes.append) == "h3"
    assert called == {"h2": 2, "h3": 1}
    assert notes == ["note"]
    assert "/a - a" in reg.build_help()


def test_command_registry_unknown_and_non_command() -> None:
    reg = CommandRegistry()
    assert reg.handle(None, "hello") is None
    assert "Unknown command" in (reg.handle(None, "/nope") or "")
    assert "Empty command" in (reg.handle(None, "/") or "")


def test_timer_flow_through_commands(app) -> None:
    state, clock = app

    assert _run(state, "/add 30 today 09:00 Write report") == "Added #1 Write report (30m, 2026-10-19 09:00)."
    assert _run(state, "/add 30 today 09:30 Review !high").startswith("Added #2 Review")

    assert _run(state, "/start 1").startswith("Timer running for task #1")
    assert "/switch 1 2" in _run(state, "/start 2")
    assert _run(state, "/switch 1 2") == "Paused #1; timer running for task #2."

    clock.advance(minutes=10)
    assert _run(state, "/stop") == "Stopped task #2: 10 min recorded."
    assert state.task_store.time_spent("2") == 10

    assert "No timer is running" in _run(state, "/pause")
    assert "only a running timer can be interrupted" in _run(state, "/interrupt 45 1")


def test_suggest_and_tasks_listing(app) -> None:
    state, clock = app
    _run(state, "/add 30 today 09:00 First")
    _run(state, "/add 30 today 09:30 Second")
    clock.advance(minutes=10)

    reply = _run(state, "/suggest 60m")
    assert reply.startswith("Free slots for 60 minutes:")
    assert "1. 2026-10-19 10:00-11:00" in reply

    listing = _run(state, "/tasks").splitlines()
    assert listing[1].startswith("  1. #1 09:00 First")
    assert listing[2].startswith("  2. #2 09:30 Second")

    assert "Usage" in _run(state, "/suggest")
    assert "must be positive" in _run(state, "/suggest 0m")


def test_schedule_cascades_later_tasks(app) -> None:
    state, _clock = app
    _run(state, "/add 60 today 09:00 Long")
    _run(state, "/add 30 today 10:00 Next")

    reply = _run(state, "/schedule 1 today 09:30")

    assert "moved #2: 10:00 -> 10:35" in reply
    assert state.task_store.get_task("2").due_time == "10:35"


def test_unknown_task_is_reported(app) -> None:
    state, _clock = app
    assert "Unknown task 42" in _run(state, "/complete 42")


def test_start_and_switch_reject_unknown_tasks(app) -> None:
    state, _clock = app
    _run(state, "/add 30 today 09:00 Real")

    assert "unknown task id: 'abc'" in _run(state, "/start abc")
    assert "Unknown task 42" in _run(state, "/start 42")
    assert state.coordinator.view().records == {}

    _run(state, "/start 1")
    assert "Unknown task 42" in _run(state, "/switch 1 42")
    assert state.coordinator.active_task_id() == "1"


def test_stop_keeps_minutes_visible_when_write_back_is_rejected(app) -> None:
    state, clock = app
    presenter = state.coordinator.presenter
    # A timer left behind for a task that no longer exists in the Task Store.
    state.coordinator.start_timer("42")
    clock.advance(minutes=20)

    assert _run(state, "/stop 42") == "Stopped task #42: 20 min recorded."

    failed = [a for a in presenter.toasts() if a.alert_type == AlertType.SYNC_FAILED]
    assert len(failed) == 1
    assert "20 min" in failed[0].message
