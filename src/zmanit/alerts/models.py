# src/zmanit/alerts/models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class AlertType(StrEnum):
    TASK_STARTING_SOON = "task_starting_soon"
    TASK_STARTED = "task_started"
    TASK_ENDING_SOON = "task_ending_soon"
    TASK_OVERTIME = "task_overtime"
    TASK_OVERDUE = "task_overdue"
    TRANSITION_NEEDED = "transition_needed"
    IDLE_DETECTED = "idle_detected"
    BREAK_REMINDER = "break_reminder"
    SCHEDULE_CONFLICT = "schedule_conflict"
    SYNC_FAILED = "sync_failed"


class AlertPriority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Channel(StrEnum):
    LOG = "log"
    TOAST = "toast"
    POPUP = "popup"
    BLOCKING_POPUP = "blocking_popup"


@dataclass(frozen=True, slots=True)
class DeliveryTier:
    channel: Channel
    duration_seconds: int = 0
    style: str = "info"
    blocking: bool = False


@dataclass(frozen=True, slots=True)
class AlertAction:
    id: str
    label: str
    primary: bool = False


@dataclass(frozen=True, slots=True)
class AlertRecord:
    """
    One alert request.

    key: explicit dedup key; when empty the key is derived from type + task_id.
    show_popup: per-alert popup override for non-critical priorities.
    send_push: push for medium/low (critical/high always push when permitted).
    """

    alert_type: AlertType
    priority: AlertPriority
    message: str
    title: str = ""
    task_id: str | None = None
    key: str | None = None
    min_interval_minutes: float | None = None
    show_popup: bool = False
    send_push: bool = False
    actions: tuple[AlertAction, ...] = ()
    created_at: datetime | None = None

    @property
    def dedup_key(self) -> str:
        if self.key:
            return self.key
        return f"{self.alert_type.value}:{self.task_id or ''}"


_TOAST = {
    AlertPriority.CRITICAL: DeliveryTier(Channel.TOAST, 10, "error"),
    AlertPriority.HIGH: DeliveryTier(Channel.TOAST, 8, "warning"),
    AlertPriority.MEDIUM: DeliveryTier(Channel.TOAST, 6, "info"),
    AlertPriority.LOW: DeliveryTier(Channel.TOAST, 4, "info"),
}

_BLOCKING_POPUP = DeliveryTier(Channel.BLOCKING_POPUP, 0, "error", blocking=True)
_POPUP = DeliveryTier(Channel.POPUP, 0, "warning")


def tiers_for(alert: AlertRecord) -> list[DeliveryTier]:
    """In-app channels for an alert, toast first. The silent log channel is implicit."""
    tiers = [_TOAST[alert.priority]]
    if alert.priority == AlertPriority.CRITICAL:
        tiers.append(_BLOCKING_POPUP)
    elif alert.show_popup:
        tiers.append(_POPUP)
    return tiers
