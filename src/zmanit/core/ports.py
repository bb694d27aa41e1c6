# src/zmanit/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The engine depends on Protocols instead of concrete implementations.
This keeps the shared store, the task backend and the presentation layer swappable,
and lets tests supply fake time and an in-memory store.
"""

from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..alerts.models import AlertRecord, DeliveryTier
    from ..tasks.task_models import TaskRef
    from ..timer.models import TimerRecord

ChangeCallback = Callable[[str, Any], None]
# Called with (key, new_value); new_value is None when the key was removed.


class Clock(Protocol):
    def now(self) -> datetime: ...


class StateStore(Protocol):
    """
    Process-wide durable key/value space shared by every open context.

    Values are JSON-serializable. Malformed persisted values read back as None.
    """

    def get(self, key: str) -> Any | None: ...
    def put(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> None: ...
    def put_many(self, items: Mapping[str, Any | None]) -> None: ...
    def items(self, prefix: str) -> dict[str, Any]: ...


class ChangeFeed(Protocol):
    """
    Small pub/sub seam over the shared store.

    A pattern is either an exact key or a prefix ending with "*".
    subscribe() returns a callable that removes the subscription.
    """

    def subscribe(self, pattern: str, callback: ChangeCallback) -> Callable[[], None]: ...
    def publish(self, key: str, value: Any) -> None: ...


class TaskRepo(Protocol):
    """Task Store collaborator: owns task content; the engine only touches schedule fields."""

    def get_task(self, task_id: str) -> TaskRef | None: ...
    def get_tasks_for_date(self, day: date) -> list[TaskRef]: ...

    def update_task_schedule(
            self,
            task_id: str,
            *,
            due_date: date | None = None,
            due_time: str | None = None,
    ) -> None: ...

    def record_time_spent(self, task_id: str, minutes: int) -> None: ...


class Presenter(Protocol):
    """Presentation collaborator: renders alerts on a channel and the timer state."""

    def render_alert(self, alert: AlertRecord, tier: DeliveryTier) -> None: ...
    def render_timer_state(self, record: TimerRecord) -> None: ...


class PushNotifier(Protocol):
    """System-level push capability."""

    def request_permission(self) -> str: ...  # "granted" | "denied"
    def notify(self, title: str, body: str, tag: str) -> None: ...
