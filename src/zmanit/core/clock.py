# src/zmanit/core/clock.py

from __future__ import annotations

from datetime import datetime


class SystemClock:
    """Wall clock in naive local time (work hours and task due times are local)."""

    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)
