# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

from zmanit.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter_quiets_loops_and_third_party() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("zmanit.timer.coordinator", logging.INFO))
    assert not f.filter(_record("zmanit.state.sync", logging.INFO))
    assert f.filter(_record("zmanit.state.sync", logging.WARNING))
    assert not f.filter(_record("asyncio", logging.WARNING))
    assert f.filter(_record("asyncio", logging.ERROR))


def test_setup_logging_writes_file_with_pid(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved = list(root.handlers)
    saved_level = root.level
    try:
        log_file = setup_logging(log_dir=tmp_path / "logs")
        logging.getLogger("zmanit.test").info("hello %s", "there")
        for h in root.handlers:
            h.flush()

        text = log_file.read_text(encoding="utf-8")
        assert "zmanit.test: hello there" in text
        assert "pid=" in text
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
