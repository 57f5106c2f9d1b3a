# src/pi_seeker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the search core.

The controller depends on Protocols instead of concrete implementations.
This keeps storage, delivery transports and execution substrates swappable
and makes testing easier.
"""

from collections.abc import Callable
from typing import Protocol

from ..pi.isolate import IsolateMessage, SearchJob
from ..tasks.task_models import Identity, SearchStatus, SearchTask


class SearchTaskRepo(Protocol):
    """Persistence gateway for search task records."""

    def create_task(
            self,
            *,
            requester_id: str,
            context_id: str,
            target: str,
            status: SearchStatus = SearchStatus.PENDING,
            progress_position: int = 0,
            elapsed_seconds: int = 0,
    ) -> int: ...

    def update_task(
            self,
            task_id: int,
            *,
            status: SearchStatus | None = None,
            found_offset: int | None = None,
            progress_position: int | None = None,
            elapsed_seconds: int | None = None,
            error: str | None = None,
    ) -> None: ...

    def get_task(self, task_id: int) -> SearchTask | None: ...
    def find_current_task(self, identity: Identity) -> SearchTask | None: ...
    def list_active_tasks(self, identity: Identity | None = None) -> list[SearchTask]: ...


class Notifier(Protocol):
    """
    Fire-and-forget delivery of human-readable text to an identity.

    Implementations should not raise; callers log and move on if they do.
    """

    def notify(self, identity: Identity, text: str) -> None: ...


class NotifyTransport(Notifier, Protocol):
    """A Notifier that only handles some identities (console, one chat network...)."""

    def accepts(self, identity: Identity) -> bool: ...


class Isolate(Protocol):
    def start(self) -> None: ...
    def cancel(self) -> None: ...
    def is_alive(self) -> bool: ...


IsolateFactory = Callable[[SearchJob, Callable[[IsolateMessage], None]], Isolate]
# factory(job, on_message) -> Isolate
