# src/zmanit/state/sync.py

"""
Cross-context change notification.

The shared store has no native push primitive, so the default feed polls it and diffs
snapshots. Local publishes are delivered immediately. A context that receives a
notification should rescan right away instead of waiting for its next poll.

To stop the polling loop, cancel the coroutine/task.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

from ..core.errors import StoreUnavailable
from ..core.ports import ChangeCallback, StateStore

logger = logging.getLogger(__name__)


def _matches(pattern: str, key: str) -> bool:
    if pattern.endswith("*"):
        return key.startswith(pattern[:-1])
    return key == pattern


class _Subscriptions:
    def __init__(self) -> None:
        self._subs: list[tuple[str, ChangeCallback]] = []

    def add(self, pattern: str, callback: ChangeCallback) -> Callable[[], None]:
        entry = (pattern, callback)
        self._subs.append(entry)

        def unsubscribe() -> None:
            if entry in self._subs:
                self._subs.remove(entry)

        return unsubscribe

    def patterns(self) -> list[str]:
        return sorted({p for p, _ in self._subs})

    def fire(self, key: str, value: Any) -> None:
        for pattern, callback in list(self._subs):
            if not _matches(pattern, key):
                continue
            try:
                callback(key, value)
            except Exception:
                logger.exception("Change listener failed key=%s", key)


class LocalEventBus:
    """In-process push feed: for a single process there is nothing to poll."""

    def __init__(self) -> None:
        self._subs = _Subscriptions()

    def subscribe(self, pattern: str, callback: ChangeCallback) -> Callable[[], None]:
        return self._subs.add(pattern, callback)

    def publish(self, key: str, value: Any) -> None:
        self._subs.fire(key, value)


class PollingFeed:
    """
    Polling feed over a shared StateStore.

    - publish(): remember the value as seen and notify local subscribers
    - poll_once(): re-read every subscribed pattern and notify about keys whose
      value changed since the last poll (written by another context)
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store
        self._subs = _Subscriptions()
        self._seen: dict[str, Any] = {}

    def subscribe(self, pattern: str, callback: ChangeCallback) -> Callable[[], None]:
        unsubscribe = self._subs.add(pattern, callback)
        try:
            # Existing values are the baseline, not changes.
            self._seen.update(self._read(pattern))
        except StoreUnavailable:
            logger.warning("Could not prime subscription pattern=%s", pattern)
        return unsubscribe

    def publish(self, key: str, value: Any) -> None:
        if value is None:
            self._seen.pop(key, None)
        else:
            self._seen[key] = value
        self._subs.fire(key, value)

    def _read(self, pattern: str) -> dict[str, Any]:
        if pattern.endswith("*"):
            return self._store.items(pattern[:-1])
        value = self._store.get(pattern)
        return {} if value is None else {pattern: value}

    def poll_once(self) -> int:
        """Diff the store against the last snapshot; returns the number of changed keys."""
        patterns = self._subs.patterns()
        if not patterns:
            return 0

        current: dict[str, Any] = {}
        for pattern in patterns:
            current.update(self._read(pattern))

        watched = {k for k in self._seen if any(_matches(p, k) for p in patterns)}
        changed: list[tuple[str, Any]] = []
        for key in sorted(watched | set(current)):
            new = current.get(key)
            if new != self._seen.get(key):
                changed.append((key, new))

        for key, new in changed:
            if new is None:
                self._seen.pop(key, None)
            else:
                self._seen[key] = new

        for key, new in changed:
            logger.debug("Observed external change key=%s", key)
            self._subs.fire(key, new)
        return len(changed)


async def run_sync_loop(
        feed: PollingFeed,
        *,
        interval_seconds: float = 5.0,
        lock: threading.Lock | None = None,
) -> None:
    """
    Poll the shared store every interval_seconds and fan out changes.

    `lock` serializes the poll with other engine operations of this context.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            if lock is not None:
                with lock:
                    feed.poll_once()
            else:
                feed.poll_once()
        except StoreUnavailable:
            logger.warning("State store unavailable during sync poll")
        except Exception:
            logger.exception("sync poll failed")

        await asyncio.sleep(sleep_s)
