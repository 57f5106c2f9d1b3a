# src/pi_seeker/core/notify.py

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from ..tasks.task_models import Identity
from .ports import NotifyTransport

logger = logging.getLogger(__name__)

CONSOLE_CONTEXT = "console"


class NotifierHub:
    """
    Routes notifications to the first transport that accepts the identity.

    Transports are registered by connectors as they come up (console at start,
    Matrix once its client is logged in). Delivery failures are logged, never
    raised and never retried.
    """

    def __init__(self) -> None:
        self._transports: list[NotifyTransport] = []
        self._lock = threading.Lock()

    def register(self, transport: NotifyTransport) -> None:
        with self._lock:
            self._transports.append(transport)
        logger.debug("Notifier transport registered: %s", type(transport).__name__)

    def unregister(self, transport: NotifyTransport) -> None:
        with self._lock:
            if transport in self._transports:
                self._transports.remove(transport)

    def notify(self, identity: Identity, text: str) -> None:
        with self._lock:
            transports = list(self._transports)

        for transport in transports:
            try:
                if not transport.accepts(identity):
                    continue
            except Exception:
                logger.exception("Notifier accepts() failed transport=%s", type(transport).__name__)
                continue

            try:
                transport.notify(identity, text)
            except Exception:
                logger.exception(
                    "Notification failed identity=%s transport=%s",
                    identity,
                    type(transport).__name__,
                )
            return

        logger.warning("No notifier transport for identity=%s; dropped: %r", identity, text)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ConsoleNotifier:
    """Prints notifications for the console context."""

    def __init__(self, write: Callable[[str], None] = print) -> None:
        self._write = write

    def accepts(self, identity: Identity) -> bool:
        return identity.context_id == CONSOLE_CONTEXT

    def notify(self, identity: Identity, text: str) -> None:
        self._write(f"\n[{_ts_local()}] [pi] {text}")
