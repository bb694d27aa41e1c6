# src/zmanit/connectors/desktop_push.py

from __future__ import annotations

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


class NotifySendPush:
    """System push via the freedesktop `notify-send` tool (fire-and-forget)."""

    def __init__(self, *, app_name: str = "zmanit", executable: str = "notify-send") -> None:
        self._app_name = app_name
        self._executable = executable

    def request_permission(self) -> str:
        if shutil.which(self._executable) is None:
            logger.info("%s not found on PATH; system push disabled.", self._executable)
            return "denied"
        return "granted"

    def notify(self, title: str, body: str, tag: str) -> None:
        # Popen so a slow notification daemon never blocks the alert queue.
        subprocess.Popen(
            [
                self._executable,
                "--app-name",
                self._app_name,
                "--hint",
                f"string:x-canonical-private-synchronous:{tag}",
                title,
                body,
            ],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
