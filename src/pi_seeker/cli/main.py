# src/pi_seeker/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, resumes interrupted searches, then starts connectors:
- console REPL in the main thread (optional),
- Matrix connector in a background thread (optional).
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import TYPE_CHECKING

from ..cli.bootstrap import create_initial_state, resume_searches
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)

MATRIX_CONNECT_TIMEOUT_S = 60.0

if TYPE_CHECKING:
    from ..connectors.matrix_connector import MatrixBackgroundRunner


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logging.getLogger("nio").setLevel(max(console_level, logging.INFO))
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logger.info("Starting %s (isolate=%s, chunk=%s)...", settings.app_name, settings.isolate_mode, settings.chunk_size)

    state = create_initial_state(settings=settings)

    matrix_runner: MatrixBackgroundRunner | None = None
    if settings.matrix_enabled:
        from ..connectors.matrix_connector import start_matrix_in_background

        matrix_runner = start_matrix_in_background(state)
        if matrix_runner is not None and not matrix_runner.wait_connected(timeout=MATRIX_CONNECT_TIMEOUT_S):
            logger.warning("Matrix not connected after %ss; resuming searches anyway.", MATRIX_CONNECT_TIMEOUT_S)

    # Resume after connectors are up so completion notices have somewhere to go.
    resume_searches(state)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Not in the main thread, or the platform lacks SIGTERM.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running background connectors only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        state.controller.shutdown()

        if matrix_runner is not None:
            matrix_runner.stop()
            matrix_runner.join(timeout=10.0)

        logger.info("Bye.")


if __name__ == "__main__":
    main()
