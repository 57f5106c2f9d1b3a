# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

from pi_seeker.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter_quiets_background_components() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("pi_seeker.tasks.controller", logging.DEBUG))
    assert not f.filter(_record("pi_seeker.pi.isolate", logging.INFO))
    assert f.filter(_record("pi_seeker.pi.isolate", logging.WARNING))
    assert not f.filter(_record("pi_seeker.connectors.matrix_connector", logging.INFO))
    assert not f.filter(_record("nio.rooms", logging.WARNING))
    assert f.filter(_record("nio.rooms", logging.ERROR))
    assert not f.filter(_record("py.warnings", logging.WARNING))


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    try:
        log_file = setup_logging(log_dir=tmp_path / "logs")
        logging.getLogger("pi_seeker.pi.search").debug("chunk scanned")
        for h in root.handlers:
            h.flush()

        assert log_file == tmp_path / "logs" / "pi-seeker.log"
        assert "chunk scanned" in log_file.read_text("utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
