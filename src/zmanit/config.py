# src/zmanit/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Nothing required at import time: every value has a default.
- Engine components never read settings themselves; they get explicit config objects.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ENV_PREFIX = "ZMANIT"

_CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_clock(name: str, default: str) -> str:
    """HH:MM wall-clock value; anything unparseable falls back to the default."""
    raw = (os.getenv(name) or "").strip()
    if not raw or not _CLOCK_RE.match(raw):
        return default
    h, m = raw.split(":")
    return f"{int(h):02d}:{int(m):02d}"


def parse_work_days(names: List[str]) -> tuple[int, ...]:
    """Map day names (mon..sun, case-insensitive, 3+ letters) to datetime.weekday() numbers."""
    out: list[int] = []
    for n in names:
        key = n.strip().lower()[:3]
        if key in WEEKDAY_NAMES:
            idx = WEEKDAY_NAMES.index(key)
            if idx not in out:
                out.append(idx)
    return tuple(sorted(out))


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Surfaces ----
    console_enabled: bool
    push_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    state_db_path: Path
    tasks_db_path: Path

    # ---- Work calendar ----
    work_days: tuple[int, ...]
    work_start: str
    work_end: str
    daily_capacity_minutes: int
    lunch_start: str
    lunch_minutes: int
    reschedule_cutoff: str

    # ---- Slot search ----
    slot_lead_minutes: int
    slot_grid_minutes: int
    slot_horizon_days: int
    slot_max_suggestions: int

    # ---- Cascade / overrun ----
    cascade_gap_minutes: int
    overrun_soft_ratio: float

    # ---- Polling ----
    timer_sync_seconds: float
    idle_check_seconds: float
    idle_threshold_minutes: int

    # ---- Alerts ----
    alert_min_interval_minutes: float
    alert_history_max: int
    alert_history_hours: float

    # ---- Schedule alerts ----
    schedule_lead_minutes: int
    overdue_grace_minutes: int
    break_interval_minutes: int

    # ---- Retention ----
    day_order_retention_days: int
    idle_log_retention_days: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "zmanit").strip() or "zmanit"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        push_enabled = _env_bool(_k("PUSH_ENABLED"), False)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/zmanit"))
        state_db_path = _env_path(_k("STATE_DB_PATH"), data_dir / "state.sqlite3")
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        # Default week runs Sunday..Thursday.
        work_days = parse_work_days(_env_list(_k("WORK_DAYS"), ["sun", "mon", "tue", "wed", "thu"]))
        if not work_days:
            work_days = (0, 1, 2, 3, 6)

        soft_ratio = _env_float(_k("OVERRUN_SOFT_RATIO"), 0.8)
        if not 0.0 < soft_ratio < 1.0:
            soft_ratio = 0.8

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            push_enabled=push_enabled,
            data_dir=data_dir,
            state_db_path=state_db_path,
            tasks_db_path=tasks_db_path,
            work_days=work_days,
            work_start=_env_clock(_k("WORK_START"), "08:00"),
            work_end=_env_clock(_k("WORK_END"), "17:00"),
            daily_capacity_minutes=max(1, _env_int(_k("DAILY_CAPACITY_MINUTES"), 420)),
            lunch_start=_env_clock(_k("LUNCH_START"), "12:30"),
            lunch_minutes=max(0, _env_int(_k("LUNCH_MINUTES"), 30)),
            reschedule_cutoff=_env_clock(_k("RESCHEDULE_CUTOFF"), "16:00"),
            slot_lead_minutes=max(0, _env_int(_k("SLOT_LEAD_MINUTES"), 10)),
            slot_grid_minutes=max(1, _env_int(_k("SLOT_GRID_MINUTES"), 15)),
            slot_horizon_days=max(1, _env_int(_k("SLOT_HORIZON_DAYS"), 14)),
            slot_max_suggestions=max(1, _env_int(_k("SLOT_MAX_SUGGESTIONS"), 5)),
            cascade_gap_minutes=max(0, _env_int(_k("CASCADE_GAP_MINUTES"), 5)),
            overrun_soft_ratio=soft_ratio,
            timer_sync_seconds=max(0.5, _env_float(_k("TIMER_SYNC_SECONDS"), 5.0)),
            idle_check_seconds=max(1.0, _env_float(_k("IDLE_CHECK_SECONDS"), 60.0)),
            idle_threshold_minutes=max(1, _env_int(_k("IDLE_THRESHOLD_MINUTES"), 15)),
            alert_min_interval_minutes=max(0.0, _env_float(_k("ALERT_MIN_INTERVAL_MINUTES"), 5.0)),
            alert_history_max=max(1, _env_int(_k("ALERT_HISTORY_MAX"), 100)),
            alert_history_hours=max(1.0, _env_float(_k("ALERT_HISTORY_HOURS"), 24.0)),
            schedule_lead_minutes=max(1, _env_int(_k("SCHEDULE_LEAD_MINUTES"), 5)),
            overdue_grace_minutes=max(1, _env_int(_k("OVERDUE_GRACE_MINUTES"), 15)),
            break_interval_minutes=max(1, _env_int(_k("BREAK_INTERVAL_MINUTES"), 90)),
            day_order_retention_days=max(1, _env_int(_k("DAY_ORDER_RETENTION_DAYS"), 7)),
            idle_log_retention_days=max(1, _env_int(_k("IDLE_LOG_RETENTION_DAYS"), 30)),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
