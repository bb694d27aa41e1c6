# src/zmanit/cli/background.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState
from ..state.sync import run_sync_loop
from ..timer.watchers import run_watch_loop

logger = logging.getLogger(__name__)


async def _run_loops(state: AppState, stop_event: asyncio.Event) -> None:
    settings = state.settings
    tasks = [
        asyncio.create_task(
            run_sync_loop(state.feed, interval_seconds=settings.timer_sync_seconds, lock=state.lock)
        ),
        asyncio.create_task(
            run_watch_loop(
                [state.idle_detector, state.overrun_watcher, state.schedule_watcher],
                interval_seconds=settings.idle_check_seconds,
                lock=state.lock,
            )
        ),
    ]
    logger.info("Polling loops started (sync=%ss, check=%ss).", settings.timer_sync_seconds, settings.idle_check_seconds)

    try:
        await stop_event.wait()
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Polling loops stopped.")


@dataclass
class BackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal background stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_loops_in_background(state: AppState) -> BackgroundRunner | None:
    """
    Start the sync and watch loops in a background thread with its own event loop,
    so the blocking console REPL can run in the main thread.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_loops(state, stop_event))
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="zmanit-loops", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Background thread did not initialize properly.")
        return None

    logger.info("Background thread started.")
    return BackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
