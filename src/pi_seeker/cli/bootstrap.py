# src/pi_seeker/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store, notifier hub and controller into AppState,
- relaunches searches interrupted by the previous shutdown.
"""

from __future__ import annotations

import functools
import logging

from ..config import get_settings
from ..core.notify import ConsoleNotifier, NotifierHub
from ..core.state import AppState
from ..pi.isolate import create_isolate
from ..tasks.controller import TaskController
from ..tasks.task_store import SearchTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    if getattr(settings, "matrix_enabled", False):
        settings.matrix_store_path.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, isolate_factory=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if isolate_factory is None:
        isolate_factory = functools.partial(create_isolate, settings.isolate_mode)

    store = SearchTaskStore(settings.tasks_db_path)
    notifier = NotifierHub()
    if settings.console_enabled:
        notifier.register(ConsoleNotifier())

    controller = TaskController(
        store,
        notifier,
        isolate_factory,
        chunk_size=settings.chunk_size,
        progress_interval=settings.progress_interval_seconds,
        max_digits=settings.max_digits,
        guard_digits=settings.guard_digits,
    )

    return AppState(
        settings=settings,
        task_store=store,
        notifier=notifier,
        controller=controller,
    )


def resume_searches(state: AppState) -> int:
    if not getattr(state.settings, "resume_on_start", True):
        return 0
    try:
        resumed = state.controller.resume_active_tasks()
    except Exception:
        logger.exception("Failed to resume interrupted searches.")
        return 0
    if resumed:
        logger.info("Resumed %d interrupted search(es).", resumed)
    return resumed
