# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from pi_seeker.cli.bootstrap import create_initial_state
from pi_seeker.core.state import AppState
from pi_seeker.tasks.task_store import SearchTaskStore

from .fakes import ManualIsolateFactory, RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    A SimpleNamespace instead of the real config keeps tests independent
    of the environment and any local .env file.
    """
    return SimpleNamespace(
        app_name="pi-seeker-test",
        log_level="DEBUG",
        # Connectors
        console_enabled=False,
        matrix_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "pi_tasks.sqlite3",
        matrix_store_path=tmp_path / "matrix_store",
        # Search tuning
        isolate_mode="thread",
        chunk_size=1000,
        progress_interval_seconds=0.0,
        max_digits=None,
        guard_digits=10,
        resume_on_start=True,
    )


@pytest.fixture()
def store(tmp_path: Path) -> SearchTaskStore:
    return SearchTaskStore(tmp_path / "tasks.sqlite3")


@pytest.fixture()
def isolates() -> ManualIsolateFactory:
    return ManualIsolateFactory()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def state(settings: SimpleNamespace, isolates: ManualIsolateFactory, notifier: RecordingNotifier) -> AppState:
    """
    AppState wired with a real SQLite store and manually driven isolates.
    """
    app = create_initial_state(settings=settings, isolate_factory=isolates)
    app.notifier.register(notifier)
    return app
