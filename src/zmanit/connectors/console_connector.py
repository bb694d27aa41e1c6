# src/zmanit/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime
from typing import TYPE_CHECKING, TextIO

from ..alerts.models import AlertRecord, Channel, DeliveryTier
from ..cli.commands import registry as command_registry
from ..core.state import AppState

if TYPE_CHECKING:
    from ..timer.models import TimerRecord

logger = logging.getLogger(__name__)

_STYLE_MARK = {"error": "!!", "warning": "!", "info": "-"}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


class ConsolePresenter:
    """
    Presentation collaborator for the terminal.

    Toasts are one line; popups print the alert with its actions. A blocking popup
    is rendered the same way but marked as requiring a choice (the console never
    blocks the alert queue on input).
    """

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out
        self._lock = threading.Lock()

    def _write(self, text: str) -> None:
        out = self._out or sys.stdout
        with self._lock:
            out.write(f"[{_ts_local()}] {text}\n")
            out.flush()

    def render_alert(self, alert: AlertRecord, tier: DeliveryTier) -> None:
        mark = _STYLE_MARK.get(tier.style, "-")
        title = alert.title or alert.alert_type.value

        if tier.channel == Channel.TOAST:
            self._write(f"{mark} {title}: {alert.message}")
            return

        if tier.channel in (Channel.POPUP, Channel.BLOCKING_POPUP):
            header = "ACTION REQUIRED" if tier.blocking else "Heads up"
            lines = [f"[{header}] {title}", f"    {alert.message}"]
            for action in alert.actions:
                star = "*" if action.primary else " "
                lines.append(f"   {star} {action.label} ({action.id})")
            self._write("\n".join(lines))

    def render_timer_state(self, record: TimerRecord) -> None:
        logger.debug("Timer state task=%s phase=%s", record.task_id, record.phase.value)


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    lock = getattr(state, "lock", None)

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = input(">>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if not user_input.startswith("/"):
            _print_ts("Commands start with '/'. Use /help to list them.")
            continue

        try:
            if lock:
                with lock:
                    cmd_response = command_registry.handle(state, user_input, emit=emit)
            else:
                cmd_response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is not None:
            _print_ts(cmd_response)

    logger.info("Console connector finished.")
