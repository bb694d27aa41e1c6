# src/zmanit/alerts/dispatcher.py

from __future__ import annotations

"""
Alert dispatcher.

Alerts from any producer go through:
1) dedup against the recent delivery history (drop, never queue)
2) the queue: critical alerts jump ahead, everything else is appended
3) delivery: log line + presenter channels by priority tier + optional system push

The queue is drained synchronously by whoever calls send(); an alert raised while
another is being delivered (e.g. from a presenter) is queued and delivered by the
outer drain.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from ..core.ports import Clock, Presenter, PushNotifier
from .models import AlertPriority, AlertRecord, tiers_for

logger = logging.getLogger(__name__)

_ALWAYS_PUSH = (AlertPriority.CRITICAL, AlertPriority.HIGH)


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    key: str
    alert: AlertRecord
    sent_at: datetime


class AlertDispatcher:
    def __init__(
            self,
            *,
            clock: Clock,
            presenter: Presenter | None = None,
            push: PushNotifier | None = None,
            push_enabled: bool = False,
            min_interval_minutes: float = 5,
            history_max: int = 100,
            history_hours: float = 24,
    ) -> None:
        self._clock = clock
        self.presenter = presenter
        self._push = push
        self._push_enabled = push_enabled
        self._min_interval = float(min_interval_minutes)
        self._history_max = max(1, int(history_max))
        self._history_window = timedelta(hours=history_hours)

        self._queue: deque[AlertRecord] = deque()
        self._history: list[HistoryEntry] = []
        self._draining = False
        self._permission: str | None = None

    # ---- push capability ----

    def request_push_permission(self) -> str:
        """Ask the push collaborator once; the answer is cached for this context."""
        if self._permission is not None:
            return self._permission
        if not self._push_enabled or self._push is None:
            self._permission = "denied"
            return self._permission
        try:
            answer = self._push.request_permission()
        except Exception:
            logger.exception("Push permission request failed")
            answer = "denied"
        self._permission = "granted" if answer == "granted" else "denied"
        logger.info("Push permission: %s", self._permission)
        return self._permission

    # ---- public API ----

    def send(self, alert: AlertRecord) -> bool:
        """Returns False when the alert was dropped as a duplicate."""
        now = self._clock.now()
        self._prune(now)

        key = alert.dedup_key
        interval = alert.min_interval_minutes if alert.min_interval_minutes is not None else self._min_interval
        last = self._last_sent(key)
        if last is not None and now - last < timedelta(minutes=interval):
            logger.debug("Alert suppressed key=%s last=%s", key, last.isoformat())
            return False

        alert = replace(alert, created_at=alert.created_at or now)
        self._history.append(HistoryEntry(key=key, alert=alert, sent_at=now))
        if len(self._history) > self._history_max:
            del self._history[: len(self._history) - self._history_max]

        if alert.priority == AlertPriority.CRITICAL:
            self._queue.appendleft(alert)
        else:
            self._queue.append(alert)

        self._drain()
        return True

    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    def pending(self) -> list[AlertRecord]:
        return list(self._queue)

    def clear_queue(self) -> None:
        self._queue.clear()

    def reset(self) -> None:
        self._queue.clear()
        self._history.clear()

    # ---- internals ----

    def _last_sent(self, key: str) -> datetime | None:
        for entry in reversed(self._history):
            if entry.key == key:
                return entry.sent_at
        return None

    def _prune(self, now: datetime) -> None:
        horizon = now - self._history_window
        self._history = [e for e in self._history if e.sent_at >= horizon][-self._history_max:]

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                self._deliver(self._queue.popleft())
        finally:
            self._draining = False

    def _deliver(self, alert: AlertRecord) -> None:
        logger.info(
            "ALERT [%s] %s task=%s: %s",
            alert.priority.value,
            alert.alert_type.value,
            alert.task_id or "-",
            alert.message,
        )

        if self.presenter is not None:
            for tier in tiers_for(alert):
                try:
                    self.presenter.render_alert(alert, tier)
                except Exception:
                    # Toast/popup failures never block the queue or the push channel.
                    logger.exception("Alert render failed channel=%s key=%s", tier.channel.value, alert.dedup_key)

        if self._should_push(alert):
            try:
                self._push.notify(alert.title or alert.alert_type.value, alert.message, alert.dedup_key)
            except Exception:
                logger.exception("Push notify failed key=%s", alert.dedup_key)

    def _should_push(self, alert: AlertRecord) -> bool:
        if not self._push_enabled or self._push is None:
            return False
        if alert.priority not in _ALWAYS_PUSH and not alert.send_push:
            return False
        return self.request_push_permission() == "granted"
