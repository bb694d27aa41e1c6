# src/zmanit/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Loggers of the polling loops; they run every few seconds in a background thread.
_QUIET_PREFIXES = (
    "zmanit.state.sync",
    "zmanit.cli.background",
    "zmanit.timer.watchers",
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the interactive console readable:
    - allow zmanit logs, except polling-loop chatter below WARNING
    - Python warnings (captured as 'py.warnings') and third-party loggers only at ERROR+
    """

    def __init__(self, quiet_prefixes: tuple[str, ...] = _QUIET_PREFIXES) -> None:
        super().__init__()
        self._quiet = quiet_prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("zmanit."):
            if name.startswith(self._quiet):
                return record.levelno >= logging.WARNING
            return True

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/zmanit",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure logging with:
    - Console handler: short lines, filtered for interactive use
    - File handler: everything, tagged with pid/thread

    Every open context appends to the same zmanit.log, so file lines carry the
    process id. Call this ONCE, very early (before first logger.info).
    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "zmanit.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    console_fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    file_fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d pid=%(process)d %(threadName)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(console_fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(file_fmt)
    root.addHandler(fh)

    logging.captureWarnings(True)
    return log_file
