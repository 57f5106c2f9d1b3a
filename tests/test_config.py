# tests/test_config.py

from __future__ import annotations

from pathlib import Path

from pi_seeker.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in (
        "PISEEK_ISOLATE_MODE",
        "PISEEK_CHUNK_SIZE",
        "PISEEK_MAX_DIGITS",
        "PISEEK_DATA_DIR",
        "PISEEK_TASKS_DB_PATH",
        "PISEEK_PROGRESS_INTERVAL_SECONDS",
        "PISEEK_MATRIX_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)

    s = Settings.from_env()
    assert s.isolate_mode == "process"
    assert s.chunk_size == 10_000
    assert s.max_digits is None
    assert s.progress_interval_seconds == 60.0
    assert s.tasks_db_path == Path(".local/pi-seeker") / "pi_tasks.sqlite3"
    assert s.matrix_enabled is False


def test_overrides_and_bad_values(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PISEEK_ISOLATE_MODE", "Thread")
    monkeypatch.setenv("PISEEK_CHUNK_SIZE", "-5")
    monkeypatch.setenv("PISEEK_MAX_DIGITS", "250000")
    monkeypatch.setenv("PISEEK_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PISEEK_MATRIX_ROOMS", "!a:x, !b:x")
    monkeypatch.delenv("PISEEK_TASKS_DB_PATH", raising=False)

    s = Settings.from_env()
    assert s.isolate_mode == "thread"
    assert s.chunk_size == 10_000
    assert s.max_digits == 250_000
    assert s.tasks_db_path == tmp_path / "pi_tasks.sqlite3"
    assert s.matrix_rooms == ["!a:x", "!b:x"]

    monkeypatch.setenv("PISEEK_ISOLATE_MODE", "fiber")
    monkeypatch.setenv("PISEEK_MAX_DIGITS", "lots")
    s = Settings.from_env()
    assert s.isolate_mode == "process"
    assert s.max_digits is None
