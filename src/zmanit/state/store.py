# src/zmanit/state/store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Mapping
from datetime import date
from pathlib import Path
from typing import Any

from ..core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

TIMER_PREFIX = "timer::"
ACTIVE_TIMER_KEY = "active_timer"
DAY_ORDER_PREFIX = "day_order::"
IDLE_LOG_PREFIX = "idle_log::"
IDLE_SINCE_KEY = "idle_since"


def timer_key(task_id: str) -> str:
    return f"{TIMER_PREFIX}{task_id}"


def day_order_key(day: date) -> str:
    return f"{DAY_ORDER_PREFIX}{day.isoformat()}"


def idle_log_key(day: date) -> str:
    return f"{IDLE_LOG_PREFIX}{day.isoformat()}"


def key_suffix(key: str, prefix: str) -> str:
    return key[len(prefix):] if key.startswith(prefix) else key


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _decode(key: str, raw: str | None) -> Any | None:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed value for key=%s", key)
        return None


class SqliteStateStore:
    """
    SQLite-backed shared key/value store.

    Several processes (open "contexts") may use the same file concurrently:
    - each method opens its own SQLite connection
    - put_many runs inside one IMMEDIATE transaction, so a multi-key update
      is observed by other readers as a single transition
    - there is no cross-call locking: callers re-read right before they write
    """

    def __init__(self, db_path: str | Path = "state.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SqliteStateStore ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open state store {self._db_path}") from e
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot initialize state store {self._db_path}") from e
        finally:
            conn.close()

    # ---- public API ----

    def get(self, key: str) -> Any | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"read failed key={key}") from e
        finally:
            conn.close()
        return _decode(key, row[0]) if row else None

    def put(self, key: str, value: Any) -> None:
        self.put_many({key: value})

    def delete(self, key: str) -> None:
        self.put_many({key: None})

    def put_many(self, items: Mapping[str, Any | None]) -> None:
        if not items:
            return
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            for key, value in items.items():
                if value is None:
                    conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                else:
                    conn.execute(
                        """
                        INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                        """,
                        (key, _encode(value), now),
                    )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            with contextlib.suppress(sqlite3.Error):
                conn.execute("ROLLBACK")
            raise StoreUnavailable(f"write failed keys={sorted(items)}") from e
        finally:
            conn.close()

    def items(self, prefix: str) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"scan failed prefix={prefix}") from e
        finally:
            conn.close()

        out: dict[str, Any] = {}
        for key, raw in rows:
            value = _decode(key, raw)
            if value is not None:
                out[key] = value
        return out


class InMemoryStateStore:
    """
    Process-local store with the same semantics as SqliteStateStore.

    Values are kept JSON-encoded so callers never share mutable objects.
    Share one instance between several coordinators to model several contexts.
    """

    def __init__(self) -> None:
        self.raw: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        return _decode(key, self.raw.get(key))

    def put(self, key: str, value: Any) -> None:
        self.put_many({key: value})

    def delete(self, key: str) -> None:
        self.raw.pop(key, None)

    def put_many(self, items: Mapping[str, Any | None]) -> None:
        encoded = {k: (None if v is None else _encode(v)) for k, v in items.items()}
        for key, raw in encoded.items():
            if raw is None:
                self.raw.pop(key, None)
            else:
                self.raw[key] = raw

    def items(self, prefix: str) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for key in sorted(self.raw):
            if not key.startswith(prefix):
                continue
            value = _decode(key, self.raw[key])
            if value is not None:
                out[key] = value
        return out
