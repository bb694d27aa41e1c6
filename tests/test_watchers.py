# tests/test_watchers.py

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from zmanit.alerts.models import AlertType, Channel
from zmanit.scheduling.cascade import ProgressLevel
from zmanit.state.store import idle_log_key
from zmanit.timer.watchers import IdleDetector, IdlePeriod, OverrunWatcher, ScheduleWatcher, run_watch_loop

from .fakes import MONDAY, at, task


@pytest.fixture()
def detector(store, coordinator, clock, calendar, dispatcher) -> IdleDetector:
    return IdleDetector(
        store=store,
        coordinator=coordinator,
        clock=clock,
        calendar=calendar,
        dispatcher=dispatcher,
        threshold_minutes=15,
    )


@pytest.fixture()
def watcher(coordinator, repo, clock, dispatcher) -> OverrunWatcher:
    return OverrunWatcher(coordinator=coordinator, task_repo=repo, clock=clock, dispatcher=dispatcher)


@pytest.fixture()
def schedule(coordinator, repo, clock, dispatcher) -> ScheduleWatcher:
    return ScheduleWatcher(coordinator=coordinator, task_repo=repo, clock=clock, dispatcher=dispatcher)


def _idle_toasts(presenter) -> list:
    return [a for a in presenter.toasts() if a.alert_type == AlertType.IDLE_DETECTED]


# ---- idle detection ----


def test_idle_alert_fires_once_per_episode(detector, clock, presenter) -> None:
    assert detector.check() is False
    assert detector.idle_since() == at("09:00")

    clock.advance(minutes=14)
    assert detector.check() is False

    clock.advance(minutes=1)
    assert detector.check() is True
    assert presenter.channels_for(AlertType.IDLE_DETECTED) == [Channel.TOAST, Channel.POPUP]

    clock.advance(minutes=5)
    assert detector.check() is False
    clock.advance(minutes=20)
    assert detector.check() is False

    assert len(_idle_toasts(presenter)) == 1
    assert _idle_toasts(presenter)[0].dedup_key == "idle-detected"


def test_running_timer_closes_and_logs_the_episode(detector, coordinator, clock, presenter) -> None:
    detector.check()
    clock.advance(minutes=20)
    assert detector.check() is True

    coordinator.start_timer("1")
    assert detector.check() is False
    assert detector.idle_since() is None
    assert detector.periods_for(MONDAY) == [IdlePeriod.between(at("09:00"), at("09:20"))]

    clock.advance(minutes=10)
    coordinator.stop_timer("1")
    detector.check()
    assert detector.idle_since() == at("09:30")

    clock.advance(minutes=15)
    assert detector.check() is True
    assert len(_idle_toasts(presenter)) == 2


def test_acknowledge_logs_and_rearms(detector, clock, presenter) -> None:
    detector.check()
    clock.advance(minutes=15)
    assert detector.check() is True

    detector.acknowledge()
    assert [p.minutes for p in detector.periods_for(MONDAY)] == [15]
    assert detector.idle_since() == at("09:15")

    clock.advance(minutes=15)
    assert detector.check() is True
    assert len(_idle_toasts(presenter)) == 2


def test_episode_is_capped_at_end_of_work_hours(detector, clock) -> None:
    clock.set(at("16:50"))
    detector.check()

    clock.set(at("17:30"))
    assert detector.check() is False

    assert detector.idle_since() is None
    assert [p.minutes for p in detector.periods_for(MONDAY)] == [10]


def test_no_idle_tracking_on_non_work_days(detector, clock) -> None:
    clock.set(at("10:00", day=date(2026, 10, 23)))

    assert detector.check() is False
    assert detector.idle_since() is None


def test_short_episode_is_not_logged(detector, coordinator, clock) -> None:
    detector.check()
    clock.advance(seconds=30)
    coordinator.start_timer("1")
    detector.check()

    assert detector.periods_for(MONDAY) == []


def test_today_stats_include_open_episode(detector, store, clock) -> None:
    store.put(idle_log_key(MONDAY), [IdlePeriod.between(at("08:00"), at("08:20")).to_dict()])
    clock.set(at("09:40"))
    detector.check()
    clock.set(at("09:50"))

    stats = detector.today_stats()

    assert stats.total_minutes == 20
    assert stats.current_minutes == 10
    assert len(stats.periods) == 1


def test_learned_daily_buffer_is_mean_of_logged_days(detector, store) -> None:
    sunday = MONDAY - timedelta(days=1)
    store.put(
        idle_log_key(MONDAY),
        [
            IdlePeriod.between(at("08:00"), at("08:20")).to_dict(),
            IdlePeriod.between(at("11:00"), at("11:10")).to_dict(),
        ],
    )
    store.put(idle_log_key(sunday), [IdlePeriod.between(at("10:00", sunday), at("10:10", sunday)).to_dict()])
    store.put(idle_log_key(MONDAY - timedelta(days=2)), ["garbage"])

    assert detector.learned_daily_buffer() == 20


def test_sweep_removes_old_and_malformed_logs(detector, store) -> None:
    store.put("idle_log::2026-09-01", [])
    store.put("idle_log::not-a-date", [])
    store.put(idle_log_key(MONDAY - timedelta(days=1)), [])

    assert detector.sweep(MONDAY, retention_days=30) == 2
    assert list(store.items("idle_log::")) == ["idle_log::2026-10-18"]


# ---- overrun watcher ----


def test_overrun_soft_then_hard_with_single_cascade(watcher, coordinator, repo, clock, presenter) -> None:
    repo.tasks["1"] = task("1", 30, "09:00")
    repo.tasks["2"] = task("2", 30, "09:30")
    coordinator.start_timer("1")

    clock.advance(minutes=10)
    assert watcher.check() == ProgressLevel.ON_TRACK

    clock.advance(minutes=14)
    assert watcher.check() == ProgressLevel.SOFT_WARNING
    assert [a.alert_type for a in presenter.toasts()][-1] == AlertType.TASK_ENDING_SOON

    clock.advance(minutes=6)
    assert watcher.check() == ProgressLevel.HARD_OVERRUN
    assert repo.tasks["2"].due_time == "09:35"
    assert presenter.channels_for(AlertType.TASK_OVERTIME) == [Channel.TOAST, Channel.POPUP]

    clock.advance(minutes=5)
    assert watcher.check() == ProgressLevel.HARD_OVERRUN
    assert len(repo.schedule_updates) == 1
    assert len(presenter.channels_for(AlertType.TASK_OVERTIME)) == 2


def test_overrun_watcher_idle_without_active_timer(watcher) -> None:
    assert watcher.check() is None


def test_overrun_of_unscheduled_task_alerts_without_cascade(watcher, coordinator, repo, clock, presenter) -> None:
    repo.tasks["U"] = task("U", 30, day=None)
    coordinator.start_timer("U")

    clock.advance(minutes=24)
    assert watcher.check() == ProgressLevel.SOFT_WARNING

    clock.advance(minutes=21)
    assert watcher.check() == ProgressLevel.HARD_OVERRUN
    overtime = [a for a in presenter.toasts() if a.alert_type == AlertType.TASK_OVERTIME]
    assert len(overtime) == 1
    assert "pushed" not in overtime[0].message
    assert repo.schedule_updates == []


def test_overrun_of_task_due_another_day_does_not_cascade(watcher, coordinator, repo, clock, presenter) -> None:
    tomorrow = MONDAY + timedelta(days=1)
    repo.tasks["T"] = task("T", 30, "09:00", day=tomorrow)
    repo.tasks["N"] = task("N", 30, "09:35", day=tomorrow)
    coordinator.start_timer("T")

    clock.advance(minutes=40)
    assert watcher.check() == ProgressLevel.HARD_OVERRUN
    assert presenter.channels_for(AlertType.TASK_OVERTIME) == [Channel.TOAST, Channel.POPUP]
    assert repo.tasks["N"].due_time == "09:35"


def test_overrun_levels_reset_for_a_new_timer_episode(watcher, coordinator, repo, clock, presenter) -> None:
    repo.tasks["1"] = task("1", 10, "09:00")
    coordinator.start_timer("1")
    clock.advance(minutes=9)
    assert watcher.check() == ProgressLevel.SOFT_WARNING

    coordinator.stop_timer("1")
    assert watcher.check() is None

    # Past the dispatcher's dedup interval, a new episode warns again.
    clock.advance(minutes=10)
    coordinator.start_timer("1")
    clock.advance(minutes=9)
    assert watcher.check() == ProgressLevel.SOFT_WARNING
    ending = [a for a in presenter.toasts() if a.alert_type == AlertType.TASK_ENDING_SOON]
    assert len(ending) == 2


# ---- schedule watcher ----


def test_starting_soon_fires_once_without_active_timer(schedule, repo, clock, presenter) -> None:
    repo.tasks["1"] = task("1", 30, "09:05")

    raised = schedule.check()
    assert [a.alert_type for a in raised] == [AlertType.TASK_STARTING_SOON]
    assert "starts in 5 min" in raised[0].message
    assert presenter.channels_for(AlertType.TASK_STARTING_SOON) == [Channel.TOAST, Channel.POPUP]

    clock.advance(minutes=2)
    assert schedule.check() == []


def test_starting_soon_is_quiet_while_another_timer_runs(schedule, coordinator, repo) -> None:
    repo.tasks["1"] = task("1", 30, "09:05")
    coordinator.start_timer("other")

    assert schedule.check() == []


def test_not_started_task_is_overdue_within_grace(schedule, coordinator, repo, clock, presenter) -> None:
    repo.tasks["1"] = task("1", 30, "08:50")

    raised = schedule.check()
    assert [a.alert_type for a in raised] == [AlertType.TASK_OVERDUE]
    assert Channel.BLOCKING_POPUP in presenter.channels_for(AlertType.TASK_OVERDUE)

    clock.advance(minutes=3)
    assert schedule.check() == []

    # Past the grace window nothing more is said.
    repo.tasks["2"] = task("2", 30, "08:40")
    assert schedule.check() == []


def test_block_ending_then_transition_to_next_task(schedule, coordinator, repo, clock, presenter) -> None:
    repo.tasks["1"] = task("1", 30, "09:00")
    repo.tasks["2"] = task("2", 30, "09:35")
    coordinator.start_timer("1")

    clock.set(at("09:26"))
    raised = schedule.check()
    assert [a.alert_type for a in raised] == [AlertType.TASK_ENDING_SOON]
    assert raised[0].dedup_key == "block-ending:1"

    clock.set(at("09:31"))
    raised = schedule.check()
    assert [a.alert_type for a in raised] == [AlertType.TRANSITION_NEEDED]
    assert '"Task 2"' in raised[0].message
    assert raised[0].actions[0].id == "transition"

    # The prompt repeats, but not more often than every 15 minutes.
    clock.set(at("09:36"))
    schedule.check()
    assert len(presenter.channels_for(AlertType.TRANSITION_NEEDED)) == 2
    clock.set(at("09:47"))
    schedule.check()
    assert len(presenter.channels_for(AlertType.TRANSITION_NEEDED)) == 4


def test_transition_without_next_task_offers_finish(schedule, coordinator, repo, clock) -> None:
    repo.tasks["1"] = task("1", 30, "09:00")
    coordinator.start_timer("1")

    clock.set(at("09:40"))
    raised = schedule.check()

    assert raised[0].alert_type == AlertType.TRANSITION_NEEDED
    assert [a.id for a in raised[0].actions] == ["complete", "break"]


def test_break_reminder_after_continuous_work(schedule, coordinator, clock, presenter) -> None:
    coordinator.start_timer("1")
    assert schedule.check() == []

    clock.advance(minutes=89)
    assert schedule.check() == []

    clock.advance(minutes=1)
    raised = schedule.check()
    assert [a.alert_type for a in raised] == [AlertType.BREAK_REMINDER]
    assert "1 h 30 min" in raised[0].message

    # Pausing ends the stretch; the count restarts on the next timer.
    coordinator.pause_timer("1")
    schedule.check()
    coordinator.resume_timer("1")
    schedule.check()
    clock.advance(minutes=60)
    assert schedule.check() == []


def test_schedule_check_survives_task_store_outage(schedule, repo) -> None:
    repo.fail_reads = True
    assert schedule.check() == []


@pytest.mark.asyncio
async def test_run_watch_loop_checks_until_cancelled() -> None:
    class Counting:
        def __init__(self) -> None:
            self.calls = 0

        def check(self) -> None:
            self.calls += 1

    class Broken:
        def check(self) -> None:
            raise RuntimeError("boom")

    counting = Counting()
    task_ = asyncio.create_task(run_watch_loop([Broken(), counting], interval_seconds=0.01))

    for _ in range(100):
        if counting.calls >= 2:
            break
        await asyncio.sleep(0.01)

    task_.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task_

    assert counting.calls >= 2
