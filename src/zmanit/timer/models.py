# src/zmanit/timer/models.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from ..state.store import TIMER_PREFIX, key_suffix

logger = logging.getLogger(__name__)


class TimerPhase(StrEnum):
    RUNNING = "running"
    PAUSED = "paused"
    INTERRUPTED = "interrupted"
    IDLE = "idle"


class TimerEvent(StrEnum):
    STARTED = "started"
    SWITCHED = "switched"
    PAUSED = "paused"
    RESUMED = "resumed"
    INTERRUPTED = "interrupted"
    STOPPED = "stopped"
    CLEARED = "cleared"
    HEALED = "healed"


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _flag_from_raw(raw: Any) -> bool:
    if raw is None:
        return False
    if not isinstance(raw, bool):
        raise ValueError(f"bad flag: {raw!r}")
    return raw


def _dt_from_raw(raw: Any) -> datetime | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValueError(f"bad instant: {raw!r}")
    return datetime.fromisoformat(raw)


@dataclass(frozen=True, slots=True)
class TimerRecord:
    """
    Persisted timer state of one task (key timer::<task_id>).

    A paused or interrupted record keeps is_running=True; it stops being the
    active timer but still owns its accumulated time until stopped.
    """

    task_id: str
    start_time: datetime | None = None
    is_running: bool = False
    is_paused: bool = False
    is_interrupted: bool = False
    paused_at: datetime | None = None
    accumulated_seconds: int = 0
    last_updated: datetime | None = None
    interrupted_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.is_running and not self.is_paused and not self.is_interrupted

    @property
    def phase(self) -> TimerPhase:
        if not self.is_running:
            return TimerPhase.IDLE
        if self.is_interrupted:
            return TimerPhase.INTERRUPTED
        if self.is_paused:
            return TimerPhase.PAUSED
        return TimerPhase.RUNNING

    def elapsed_seconds(self, now: datetime) -> int:
        """Accumulated time plus the current run, if the record is active."""
        total = self.accumulated_seconds
        if self.is_active and self.start_time is not None:
            total += max(0, int((now - self.start_time).total_seconds()))
        return total

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "start_time": _dt_to_str(self.start_time),
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "is_interrupted": self.is_interrupted,
            "paused_at": _dt_to_str(self.paused_at),
            "accumulated_seconds": self.accumulated_seconds,
            "last_updated": _dt_to_str(self.last_updated),
            "interrupted_at": _dt_to_str(self.interrupted_at),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> TimerRecord | None:
        """Parse a persisted record; anything malformed reads as absent."""
        if not isinstance(raw, Mapping):
            return None
        try:
            task_id = raw["task_id"]
            if not isinstance(task_id, (str, int)) or str(task_id) == "":
                return None
            accumulated = int(raw.get("accumulated_seconds") or 0)
            return cls(
                task_id=str(task_id),
                start_time=_dt_from_raw(raw.get("start_time")),
                is_running=_flag_from_raw(raw.get("is_running")),
                is_paused=_flag_from_raw(raw.get("is_paused")),
                is_interrupted=_flag_from_raw(raw.get("is_interrupted")),
                paused_at=_dt_from_raw(raw.get("paused_at")),
                accumulated_seconds=max(0, accumulated),
                last_updated=_dt_from_raw(raw.get("last_updated")),
                interrupted_at=_dt_from_raw(raw.get("interrupted_at")),
            )
        except (KeyError, TypeError, ValueError):
            return None


@dataclass(frozen=True, slots=True)
class TimerView:
    """Timer state derived from one store snapshot."""

    records: dict[str, TimerRecord] = field(default_factory=dict)
    active_ids: tuple[str, ...] = ()

    @property
    def active_task_id(self) -> str | None:
        return self.active_ids[0] if self.active_ids else None

    @property
    def active(self) -> TimerRecord | None:
        task_id = self.active_task_id
        return self.records.get(task_id) if task_id is not None else None

    @property
    def conflicts(self) -> tuple[str, ...]:
        """Active records beyond the first (only visible inside the cross-context staleness window)."""
        return self.active_ids[1:]

    @property
    def paused_ids(self) -> tuple[str, ...]:
        return tuple(tid for tid, r in self.records.items() if r.is_running and not r.is_active)


def derive_timer_view(items: Mapping[str, Any]) -> TimerView:
    """
    Single derivation of "which timer is active" from a timer:: snapshot.

    Malformed records and records whose task_id disagrees with their key are skipped.
    Active records are ordered by last_updated, newest first.
    """
    records: dict[str, TimerRecord] = {}
    for key, raw in items.items():
        record = TimerRecord.from_dict(raw)
        if record is None or record.task_id != key_suffix(key, TIMER_PREFIX):
            logger.debug("Skipping malformed timer record key=%s", key)
            continue
        records[record.task_id] = record

    active = [r for r in records.values() if r.is_active]
    active.sort(key=lambda r: (r.last_updated or datetime.min, r.task_id), reverse=True)
    return TimerView(records=records, active_ids=tuple(r.task_id for r in active))
