# tests/fakes.py

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace

from pi_seeker.errors import PersistenceFailure
from pi_seeker.pi.isolate import ErrorMessage, IsolateMessage, ProgressMessage, ResultMessage, SearchJob
from pi_seeker.tasks.task_models import Identity, SearchStatus, SearchTask


class InMemorySearchRepo:
    """
    In-memory SearchTaskRepo used for controller unit tests.

    Set `fail_updates` to make every update_task() raise PersistenceFailure,
    which is how the SQLite store reports a failed write.
    """

    def __init__(self) -> None:
        self.tasks: dict[int, SearchTask] = {}
        self.fail_updates = False
        self._next_id = 1

    def create_task(
        self,
        *,
        requester_id: str,
        context_id: str,
        target: str,
        status: SearchStatus = SearchStatus.PENDING,
        progress_position: int = 0,
        elapsed_seconds: int = 0,
    ) -> int:
        task_id = self._next_id
        self._next_id += 1
        now = time.time()
        self.tasks[task_id] = SearchTask(
            id=task_id,
            requester_id=requester_id,
            context_id=context_id,
            target=target,
            status=status,
            created_at=now,
            updated_at=now,
            progress_position=progress_position,
            elapsed_seconds=elapsed_seconds,
        )
        return task_id

    def update_task(
        self,
        task_id: int,
        *,
        status=None,
        found_offset=None,
        progress_position=None,
        elapsed_seconds=None,
        error=None,
    ) -> None:
        if self.fail_updates:
            raise PersistenceFailure("disk full")
        t = self.tasks[task_id]
        self.tasks[task_id] = replace(
            t,
            status=status if status is not None else t.status,
            found_offset=found_offset if found_offset is not None else t.found_offset,
            progress_position=progress_position if progress_position is not None else t.progress_position,
            elapsed_seconds=elapsed_seconds if elapsed_seconds is not None else t.elapsed_seconds,
            error=error if error is not None else t.error,
            updated_at=time.time(),
        )

    def get_task(self, task_id: int) -> SearchTask | None:
        t = self.tasks.get(task_id)
        return replace(t) if t is not None else None

    def find_current_task(self, identity: Identity) -> SearchTask | None:
        current = [
            t
            for t in self.tasks.values()
            if t.identity == identity
            and t.status in (SearchStatus.PENDING, SearchStatus.RUNNING, SearchStatus.COMPLETED)
        ]
        if not current:
            return None
        return replace(max(current, key=lambda t: (t.created_at, t.id)))

    def list_active_tasks(self, identity: Identity | None = None) -> list[SearchTask]:
        out = [
            replace(t)
            for t in self.tasks.values()
            if t.status.is_active and (identity is None or t.identity == identity)
        ]
        out.sort(key=lambda t: (t.created_at, t.id))
        return out


@dataclass(slots=True)
class RecordingNotifier:
    """Notifier / transport that accepts everything and remembers what it got."""

    sent: list[tuple[Identity, str]] = field(default_factory=list)

    def accepts(self, identity: Identity) -> bool:
        return True

    def notify(self, identity: Identity, text: str) -> None:
        self.sent.append((identity, text))


class ManualIsolate:
    """
    Isolate double driven by the test.

    start() does nothing; the test pushes messages with progress()/result()/error().
    Messages are delivered even after cancel(), like a real isolate that has
    already queued them.
    """

    def __init__(self, job: SearchJob, on_message) -> None:
        self.job = job
        self.on_message = on_message
        self.started = False
        self.alive = False
        self.cancel_calls = 0

    def start(self) -> None:
        self.started = True
        self.alive = True

    def cancel(self) -> None:
        self.cancel_calls += 1

    def is_alive(self) -> bool:
        return self.alive

    def emit(self, msg: IsolateMessage) -> None:
        self.on_message(msg)

    def progress(self, position: int, elapsed_seconds: int = 0) -> None:
        self.emit(ProgressMessage(self.job.task_id, position, elapsed_seconds))

    def result(self, offset: int | None, elapsed_seconds: int = 0) -> None:
        self.alive = False
        self.emit(ResultMessage(self.job.task_id, offset, elapsed_seconds))

    def error(self, reason: str) -> None:
        self.alive = False
        self.emit(ErrorMessage(self.job.task_id, reason))


class ManualIsolateFactory:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.isolates: list[ManualIsolate] = []

    def __call__(self, job: SearchJob, on_message) -> ManualIsolate:
        if self.fail_with is not None:
            raise self.fail_with
        iso = ManualIsolate(job, on_message)
        self.isolates.append(iso)
        return iso

    @property
    def last(self) -> ManualIsolate:
        return self.isolates[-1]

    def for_task(self, task_id: int) -> ManualIsolate:
        return next(iso for iso in self.isolates if iso.job.task_id == task_id)


class FakeMatrixClient:
    """Captures room_send() calls made by the Matrix connector."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.user_id = "@pi-bot:example.org"
        self.rooms: dict = {}
        self.callbacks: list = []
        self.closed = False

    def add_event_callback(self, callback, event_type) -> None:
        self.callbacks.append((callback, event_type))

    async def sync(self, timeout: int = 0, full_state: bool = False) -> None:
        await asyncio.sleep(0.01)

    async def close(self) -> None:
        self.closed = True

    async def room_send(self, *, room_id: str, message_type: str, content: dict, **kwargs) -> None:
        self.sent.append((room_id, content["body"]))
