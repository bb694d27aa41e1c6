# tests/test_alerts.py

from __future__ import annotations

from zmanit.alerts.dispatcher import AlertDispatcher
from zmanit.alerts.models import (
    AlertPriority,
    AlertRecord,
    AlertType,
    Channel,
    DeliveryTier,
    tiers_for,
)

from .fakes import FakePush, RecordingPresenter


def _alert(priority: AlertPriority = AlertPriority.MEDIUM, **kw) -> AlertRecord:
    kw.setdefault("alert_type", AlertType.BREAK_REMINDER)
    kw.setdefault("message", "Take a short break")
    return AlertRecord(priority=priority, **kw)


def test_same_key_is_dropped_inside_the_interval(clock, dispatcher, presenter) -> None:
    idle = _alert(alert_type=AlertType.IDLE_DETECTED, key="idle-detected", min_interval_minutes=5)

    assert dispatcher.send(idle) is True
    clock.advance(minutes=3)
    assert dispatcher.send(idle) is False
    clock.advance(minutes=3)
    assert dispatcher.send(idle) is True

    assert len(presenter.toasts()) == 2
    assert [e.sent_at for e in dispatcher.history()] == [clock.now().replace(minute=0), clock.now()]


def test_derived_dedup_key_uses_type_and_task() -> None:
    assert _alert(alert_type=AlertType.TASK_OVERTIME, task_id="7").dedup_key == "task_overtime:7"
    assert _alert(alert_type=AlertType.TASK_OVERTIME).dedup_key == "task_overtime:"
    assert _alert(key="custom", task_id="7").dedup_key == "custom"


def test_different_tasks_are_not_deduplicated(dispatcher) -> None:
    assert dispatcher.send(_alert(task_id="1")) is True
    assert dispatcher.send(_alert(task_id="2")) is True


def test_default_interval_applies_without_per_alert_override(clock, presenter) -> None:
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, min_interval_minutes=10)

    assert dispatcher.send(_alert()) is True
    clock.advance(minutes=6)
    assert dispatcher.send(_alert()) is False
    clock.advance(minutes=4)
    assert dispatcher.send(_alert()) is True


def test_tiers_by_priority() -> None:
    assert tiers_for(_alert(AlertPriority.LOW)) == [DeliveryTier(Channel.TOAST, 4, "info")]
    assert tiers_for(_alert(AlertPriority.MEDIUM)) == [DeliveryTier(Channel.TOAST, 6, "info")]
    assert tiers_for(_alert(AlertPriority.HIGH)) == [DeliveryTier(Channel.TOAST, 8, "warning")]

    critical = tiers_for(_alert(AlertPriority.CRITICAL))
    assert [t.channel for t in critical] == [Channel.TOAST, Channel.BLOCKING_POPUP]
    assert critical[0].duration_seconds == 10
    assert critical[1].blocking is True


def test_show_popup_is_a_per_alert_override() -> None:
    tiers = tiers_for(_alert(AlertPriority.LOW, show_popup=True))
    assert [t.channel for t in tiers] == [Channel.TOAST, Channel.POPUP]
    assert tiers[1].blocking is False


def test_critical_alert_jumps_the_queue(clock) -> None:
    delivered: list[str] = []

    class ReentrantPresenter:
        dispatcher: AlertDispatcher

        def render_alert(self, alert: AlertRecord, tier: DeliveryTier) -> None:
            if tier.channel != Channel.TOAST:
                return
            delivered.append(alert.message)
            if alert.message == "a":
                self.dispatcher.send(_alert(AlertPriority.MEDIUM, message="b", key="b"))
                self.dispatcher.send(_alert(AlertPriority.CRITICAL, message="c", key="c"))

        def render_timer_state(self, record) -> None:
            pass

    presenter = ReentrantPresenter()
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter)
    presenter.dispatcher = dispatcher

    dispatcher.send(_alert(message="a", key="a"))

    assert delivered == ["a", "c", "b"]
    assert dispatcher.pending() == []


def test_popup_failure_does_not_block_toast_or_push(clock) -> None:
    presenter = RecordingPresenter(fail_popups=True)
    push = FakePush()
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, push=push, push_enabled=True)

    assert dispatcher.send(_alert(AlertPriority.HIGH, show_popup=True, title="Overtime")) is True

    assert presenter.channels_for(AlertType.BREAK_REMINDER) == [Channel.TOAST]
    assert push.notified == [("Overtime", "Take a short break", "break_reminder:")]


def test_push_rules_and_cached_permission(clock, presenter) -> None:
    push = FakePush()
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, push=push, push_enabled=True)

    dispatcher.send(_alert(AlertPriority.LOW, key="low"))
    dispatcher.send(_alert(AlertPriority.MEDIUM, key="medium"))
    dispatcher.send(_alert(AlertPriority.MEDIUM, key="medium-push", send_push=True))
    dispatcher.send(_alert(AlertPriority.HIGH, key="high"))
    dispatcher.send(_alert(AlertPriority.CRITICAL, key="critical"))

    assert [tag for _, _, tag in push.notified] == ["medium-push", "high", "critical"]
    assert push.permission_requests == 1


def test_denied_permission_means_no_push(clock, presenter) -> None:
    push = FakePush(answer="denied")
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, push=push, push_enabled=True)

    dispatcher.send(_alert(AlertPriority.CRITICAL))

    assert dispatcher.request_push_permission() == "denied"
    assert push.notified == []
    assert len(presenter.alerts) == 2


def test_push_disabled_never_asks(clock, presenter) -> None:
    push = FakePush()
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, push=push, push_enabled=False)

    dispatcher.send(_alert(AlertPriority.HIGH))

    assert dispatcher.request_push_permission() == "denied"
    assert push.permission_requests == 0
    assert push.notified == []


def test_push_failure_is_not_fatal(clock, presenter) -> None:
    push = FakePush(fail=True)
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, push=push, push_enabled=True)

    assert dispatcher.send(_alert(AlertPriority.HIGH)) is True
    assert len(presenter.toasts()) == 1


def test_history_is_bounded_by_size(clock, presenter) -> None:
    dispatcher = AlertDispatcher(clock=clock, presenter=presenter, history_max=3)

    for i in range(5):
        dispatcher.send(_alert(key=f"k{i}"))

    assert [e.key for e in dispatcher.history()] == ["k2", "k3", "k4"]


def test_history_older_than_window_is_pruned(clock, dispatcher) -> None:
    dispatcher.send(_alert(key="old"))
    clock.advance(hours=25)
    dispatcher.send(_alert(key="new"))

    assert [e.key for e in dispatcher.history()] == ["new"]


def test_dropped_alerts_are_not_recorded(clock, dispatcher) -> None:
    dispatcher.send(_alert(key="same"))
    clock.advance(minutes=1)
    dispatcher.send(_alert(key="same"))

    history = dispatcher.history()
    assert len(history) == 1
    assert history[0].alert.created_at == history[0].sent_at


def test_reset_clears_history(dispatcher) -> None:
    dispatcher.send(_alert(key="x"))
    dispatcher.reset()

    assert dispatcher.history() == []
    assert dispatcher.send(_alert(key="x")) is True
