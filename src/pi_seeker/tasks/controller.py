# src/pi_seeker/tasks/controller.py

from __future__ import annotations

"""
Search task controller.

Owns the per-identity state machine:

    start_task:  supersede the identity's active task (cancel its isolate,
                 mark it superseded), create a new task, launch an isolate
    on_progress: checkpoint position/elapsed of the identity's live task
    on_result:   completed (+ found offset), notify
    on_error:    failed (+ reason), notify

Isolate messages are matched by task id against the live task of the
identity. Anything tagged with a retired task id is dropped, whatever order
it arrives in: a superseded isolate may still flush a progress message or two
after cancel(), and those must never reach the stored record.

While a task is live its in-memory record is authoritative. Checkpoint
writes always carry all checkpoint fields, so a failed write is simply
reconciled by the next successful one.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace

from ..core.ports import Isolate, IsolateFactory, Notifier, SearchTaskRepo
from ..errors import PersistenceFailure
from ..pi.digits import DEFAULT_GUARD_DIGITS
from ..pi.isolate import ErrorMessage, IsolateMessage, ProgressMessage, ResultMessage, SearchJob
from .task_models import Identity, SearchStatus, SearchTask, validate_target

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LiveSearch:
    task: SearchTask
    isolate: Isolate | None = None
    dirty: bool = False


class TaskController:
    def __init__(
        self,
        store: SearchTaskRepo,
        notifier: Notifier,
        isolate_factory: IsolateFactory,
        *,
        chunk_size: int = 10_000,
        progress_interval: float = 60.0,
        max_digits: int | None = None,
        guard_digits: int = DEFAULT_GUARD_DIGITS,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._store = store
        self._notifier = notifier
        self._isolate_factory = isolate_factory
        self._chunk_size = int(chunk_size)
        self._progress_interval = max(0.0, float(progress_interval))
        self._max_digits = max_digits
        self._guard_digits = int(guard_digits)

        self._lock = threading.RLock()
        self._live: dict[Identity, _LiveSearch] = {}
        # Isolates of superseded/finished tasks, kept to re-signal cancel on stray messages.
        self._retired: dict[int, Isolate | None] = {}
        # Terminal records whose final write failed; retried on later writes.
        self._unsynced: dict[int, SearchTask] = {}

    # ---- host entry points ----

    def start_task(self, identity: Identity, target: str) -> int:
        """
        Start a new search for `identity`, superseding its active one.

        Raises InvalidTarget (nothing is created) or PersistenceFailure.
        """
        target = validate_target(target)

        with self._lock:
            self._flush_unsynced()
            self._supersede(identity)

            task_id = self._store.create_task(
                requester_id=identity.requester_id,
                context_id=identity.context_id,
                target=target,
                status=SearchStatus.PENDING,
            )
            now = time.time()
            task = SearchTask(
                id=task_id,
                requester_id=identity.requester_id,
                context_id=identity.context_id,
                target=target,
                status=SearchStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            logger.info("Search task %s started identity=%s target=%s", task_id, identity, target)
            failure = self._launch(task)

        if failure:
            self._notify(identity, failure)
        return task_id

    def query_current(self, identity: Identity) -> SearchTask | None:
        """
        Newest non-superseded task for the identity (a copy), or None.

        A live task is answered from memory; otherwise the store is asked.
        """
        with self._lock:
            live = self._live.get(identity)
            if live is not None:
                return replace(live.task)
            unsynced = {t.id: replace(t) for t in self._unsynced.values() if t.identity == identity}

        stored = self._store.find_current_task(identity)
        if stored is not None and stored.id in unsynced:
            # The row is behind memory; failed tasks are not "current".
            stored = unsynced.pop(stored.id)
            if stored.status != SearchStatus.COMPLETED:
                stored = None

        completed = [t for t in unsynced.values() if t.status == SearchStatus.COMPLETED]
        if completed:
            newest = max(completed, key=lambda t: (t.created_at, t.id))
            if stored is None or (newest.created_at, newest.id) >= (stored.created_at, stored.id):
                return newest
        return stored

    def resume_active_tasks(self) -> int:
        """
        Relaunch tasks left pending/running by a previous process.

        Only the newest task per identity is resumed; older ones are superseded.
        Returns the number of relaunched tasks.
        """
        rows = self._store.list_active_tasks()
        newest: dict[Identity, SearchTask] = {}
        resumed = 0

        with self._lock:
            for task in rows:
                prior = newest.get(task.identity)
                if prior is not None:
                    logger.info("Superseding stale task %s for identity=%s", prior.id, prior.identity)
                    self._store.update_task(prior.id, status=SearchStatus.SUPERSEDED)
                newest[task.identity] = task

            failures: list[tuple[Identity, str]] = []
            for identity, task in newest.items():
                if identity in self._live:
                    continue
                logger.info(
                    "Resuming task %s identity=%s target=%s from position=%s elapsed=%ss",
                    task.id,
                    identity,
                    task.target,
                    task.progress_position,
                    task.elapsed_seconds,
                )
                failure = self._launch(replace(task))
                if failure:
                    failures.append((identity, failure))
                else:
                    resumed += 1

        for identity, text in failures:
            self._notify(identity, text)
        return resumed

    def shutdown(self) -> None:
        """Cancel every live isolate. Persisted statuses stay active so they resume."""
        with self._lock:
            lives = list(self._live.values())
            self._live.clear()
            for live in lives:
                self._retired[live.task.id] = live.isolate
                if live.isolate is not None:
                    live.isolate.cancel()
                if live.dirty:
                    self._checkpoint(live)
        if lives:
            logger.info("Cancelled %d live search(es) for shutdown.", len(lives))

    def live_count(self) -> int:
        with self._lock:
            return len(self._live)

    # ---- isolate messages ----

    def handle_message(self, msg: IsolateMessage) -> None:
        if isinstance(msg, ProgressMessage):
            self.on_progress(msg.task_id, msg.position, msg.elapsed_seconds)
        elif isinstance(msg, ResultMessage):
            self.on_result(msg.task_id, msg.offset, msg.elapsed_seconds)
        elif isinstance(msg, ErrorMessage):
            self.on_error(msg.task_id, msg.reason)
        else:
            logger.warning("Unknown isolate message dropped: %r", msg)

    def on_progress(self, task_id: int, position: int, elapsed_seconds: int) -> None:
        with self._lock:
            live = self._find_live(task_id)
            if live is None:
                self._drop_stale(task_id, "progress")
                return

            task = live.task
            task.progress_position = max(task.progress_position, int(position))
            task.elapsed_seconds = max(task.elapsed_seconds, int(elapsed_seconds))
            if task.status == SearchStatus.PENDING:
                task.status = SearchStatus.RUNNING
            self._checkpoint(live)
            logger.debug(
                "Task %s progress position=%s elapsed=%ss",
                task_id,
                task.progress_position,
                task.elapsed_seconds,
            )

    def on_result(self, task_id: int, offset: int | None, elapsed_seconds: int = 0) -> None:
        with self._lock:
            live = self._find_live(task_id)
            if live is None:
                self._drop_stale(task_id, "result")
                return

            task = live.task
            task.status = SearchStatus.COMPLETED
            task.found_offset = offset
            task.elapsed_seconds = max(task.elapsed_seconds, int(elapsed_seconds))
            if offset is not None:
                task.progress_position = max(task.progress_position, offset + len(task.target) - 1)
            elif self._max_digits is not None:
                task.progress_position = max(task.progress_position, self._max_digits)
            self._retire(live)
            self._finalize(task)

        if offset is not None:
            logger.info("Task %s found target=%s at offset=%s", task_id, task.target, offset)
            text = (
                f'"{task.target}" first appears at digit {offset} after the decimal point of pi '
                f"(search took {task.elapsed_seconds}s)."
            )
        else:
            logger.info("Task %s exhausted without a match target=%s", task_id, task.target)
            text = (
                f'"{task.target}" does not appear in the first {task.progress_position} digits of pi '
                f"(search took {task.elapsed_seconds}s)."
            )
        self._notify(task.identity, text)

    def on_error(self, task_id: int, reason: str) -> None:
        with self._lock:
            live = self._find_live(task_id)
            if live is None:
                self._drop_stale(task_id, "error")
                return

            task = live.task
            task.status = SearchStatus.FAILED
            task.error = reason or "unknown error"
            self._retire(live)
            self._finalize(task)

        logger.warning("Task %s failed target=%s reason=%s", task_id, task.target, task.error)
        self._notify(task.identity, f'Search for "{task.target}" in pi failed: {task.error}')

    # ---- internals (call with self._lock held) ----

    def _launch(self, task: SearchTask) -> str | None:
        """Start an isolate for `task`. Returns a failure notification text, or None."""
        identity = task.identity
        live = _LiveSearch(task=task)
        self._live[identity] = live

        job = SearchJob(
            task_id=task.id,
            target=task.target,
            chunk_size=self._chunk_size,
            progress_interval=self._progress_interval,
            max_digits=self._max_digits,
            start_position=task.progress_position,
            elapsed_offset=task.elapsed_seconds,
            guard_digits=self._guard_digits,
        )
        try:
            live.isolate = self._isolate_factory(job, self.handle_message)
            live.isolate.start()
        except Exception as e:
            logger.exception("Failed to launch isolate for task %s", task.id)
            if self._live.get(identity) is live:
                del self._live[identity]
            task.status = SearchStatus.FAILED
            task.error = f"could not start search: {type(e).__name__}: {e}"
            self._finalize(task)
            return f'Search for "{task.target}" in pi failed: {task.error}'

        # Inline isolates may already have finished inside start().
        if self._live.get(identity) is live and task.status == SearchStatus.PENDING:
            task.status = SearchStatus.RUNNING
            self._checkpoint(live)
        return None

    def _supersede(self, identity: Identity) -> None:
        live = self._live.get(identity)
        superseded_id: int | None = None
        if live is not None:
            # Persist first: if the write fails the old search stays live and untouched.
            self._store.update_task(live.task.id, status=SearchStatus.SUPERSEDED)
            del self._live[identity]
            superseded_id = live.task.id
            live.task.status = SearchStatus.SUPERSEDED
            if live.isolate is not None:
                live.isolate.cancel()
            self._retired[live.task.id] = live.isolate
            logger.info("Task %s superseded identity=%s", live.task.id, identity)

        # Rows left active by an earlier process that was not resumed.
        for stale in self._store.list_active_tasks(identity):
            if stale.id == superseded_id:
                continue
            self._store.update_task(stale.id, status=SearchStatus.SUPERSEDED)
            logger.info("Stale task %s superseded identity=%s", stale.id, identity)

        self._prune_retired()

    def _find_live(self, task_id: int) -> _LiveSearch | None:
        for live in self._live.values():
            if live.task.id == task_id:
                return live
        return None

    def _drop_stale(self, task_id: int, kind: str) -> None:
        logger.debug("Dropped %s message from retired task %s", kind, task_id)
        isolate = self._retired.get(task_id)
        if isolate is not None:
            isolate.cancel()

    def _retire(self, live: _LiveSearch) -> None:
        identity = live.task.identity
        if self._live.get(identity) is live:
            del self._live[identity]
        self._retired[live.task.id] = live.isolate

    def _prune_retired(self) -> None:
        for task_id, isolate in list(self._retired.items()):
            if isolate is None or not isolate.is_alive():
                del self._retired[task_id]

    def _checkpoint(self, live: _LiveSearch) -> None:
        task = live.task
        try:
            self._store.update_task(
                task.id,
                status=task.status,
                progress_position=task.progress_position,
                elapsed_seconds=task.elapsed_seconds,
            )
        except PersistenceFailure:
            if not live.dirty:
                logger.warning("Checkpoint failed for task %s; will retry on next progress", task.id)
            live.dirty = True
            return
        if live.dirty:
            logger.info("Checkpoint for task %s reconciled", task.id)
        live.dirty = False

    def _finalize(self, task: SearchTask) -> None:
        task.updated_at = time.time()
        try:
            self._write_final(task)
        except PersistenceFailure:
            logger.exception("Final write failed for task %s; keeping it in memory", task.id)
            self._unsynced[task.id] = task
            return
        self._unsynced.pop(task.id, None)

    def _write_final(self, task: SearchTask) -> None:
        self._store.update_task(
            task.id,
            status=task.status,
            found_offset=task.found_offset,
            progress_position=task.progress_position,
            elapsed_seconds=task.elapsed_seconds,
            error=task.error,
        )

    def _flush_unsynced(self) -> None:
        for task_id, task in list(self._unsynced.items()):
            try:
                self._write_final(task)
            except PersistenceFailure:
                logger.debug("Task %s still not persisted", task_id)
                continue
            del self._unsynced[task_id]
            logger.info("Final state of task %s persisted", task_id)

    def _notify(self, identity: Identity, text: str) -> None:
        try:
            self._notifier.notify(identity, text)
        except Exception:
            logger.exception("Notification failed identity=%s", identity)
