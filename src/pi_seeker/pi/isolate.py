# src/pi_seeker/pi/isolate.py

"""
Execution isolates for pi searches.

An isolate runs one search off the host's thread and reports back through an
ordered message stream:

    ProgressMessage*  then exactly one of  ResultMessage | ErrorMessage

cancel() is cooperative: the search notices it at the next chunk boundary and
stops without sending anything else. Every message carries the task id it was
started for, so the receiver can drop messages from isolates it has retired.

Two substrates are provided:
- ThreadIsolate: a daemon thread (cheap, shares the GIL with the host),
- ProcessIsolate: a child process plus a pump thread that forwards its queue.
"""

from __future__ import annotations

import logging
import multiprocessing
import pickle
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..errors import IsolateFailure
from .digits import DEFAULT_GUARD_DIGITS, generate
from .search import CancelToken, search

logger = logging.getLogger(__name__)

ISOLATE_MODES = ("thread", "process")

_TORN_MESSAGE_ERRORS = (EOFError, OSError, pickle.UnpicklingError)


@dataclass(slots=True, frozen=True)
class SearchJob:
    task_id: int
    target: str
    chunk_size: int = 10_000
    progress_interval: float = 60.0
    max_digits: int | None = None
    start_position: int = 0
    elapsed_offset: int = 0
    guard_digits: int = DEFAULT_GUARD_DIGITS


@dataclass(slots=True, frozen=True)
class ProgressMessage:
    task_id: int
    position: int
    elapsed_seconds: int


@dataclass(slots=True, frozen=True)
class ResultMessage:
    task_id: int
    offset: int | None
    elapsed_seconds: int


@dataclass(slots=True, frozen=True)
class ErrorMessage:
    task_id: int
    reason: str


IsolateMessage = ProgressMessage | ResultMessage | ErrorMessage
MessageHandler = Callable[[IsolateMessage], None]


def is_terminal(msg: IsolateMessage) -> bool:
    return isinstance(msg, (ResultMessage, ErrorMessage))


def run_job(
    job: SearchJob,
    emit: MessageHandler,
    cancel_token: CancelToken,
    *,
    pause: Callable[[], None] | None = None,
) -> None:
    """Run one search and translate its outcome into messages."""
    started = time.monotonic()

    def on_progress(position: int, elapsed_seconds: int) -> None:
        emit(ProgressMessage(job.task_id, position, elapsed_seconds))

    def digits(precision: int) -> str:
        return generate(precision, job.guard_digits)

    kwargs: dict[str, Any] = {}
    if pause is not None:
        kwargs["pause"] = pause

    try:
        offset = search(
            job.target,
            job.chunk_size,
            on_progress,
            cancel_token,
            max_digits=job.max_digits,
            start_position=job.start_position,
            elapsed_offset=job.elapsed_offset,
            progress_interval=job.progress_interval,
            generate=digits,
            **kwargs,
        )
    except Exception as e:
        if cancel_token.is_set():
            return
        logger.exception("pi search crashed task_id=%s target=%s", job.task_id, job.target)
        emit(ErrorMessage(job.task_id, f"{type(e).__name__}: {e}"))
        return

    if cancel_token.is_set():
        return

    elapsed = job.elapsed_offset + int(time.monotonic() - started)
    emit(ResultMessage(job.task_id, offset, elapsed))


class ThreadIsolate:
    """Runs the search in a daemon thread."""

    def __init__(
        self,
        job: SearchJob,
        on_message: MessageHandler,
        *,
        pause: Callable[[], None] | None = None,
    ) -> None:
        self.job = job
        self._on_message = on_message
        self._pause = pause
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"pi-search-{job.task_id}",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()
        logger.debug("ThreadIsolate started task_id=%s", self.job.task_id)

    def cancel(self) -> None:
        self._cancel.set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout=timeout)

    def _run(self) -> None:
        run_job(self.job, self._emit, self._cancel, pause=self._pause)

    def _emit(self, msg: IsolateMessage) -> None:
        if self._cancel.is_set():
            return
        try:
            self._on_message(msg)
        except Exception:
            logger.exception("isolate message handler failed task_id=%s", self.job.task_id)


def _process_main(job: SearchJob, out: Any, cancel_event: Any) -> None:
    """Child process entry point (module level so it pickles under spawn/forkserver)."""

    def emit(msg: IsolateMessage) -> None:
        if not cancel_event.is_set():
            out.put(msg)

    run_job(job, emit, cancel_event)


class ProcessIsolate:
    """
    Runs the search in a child process.

    A pump thread reads the child's queue and forwards messages in order.
    If the child dies without a terminal message, an ErrorMessage is synthesised.
    After cancel() the pump keeps draining (and discarding) until the child
    exits, then terminates it if it overstays `cancel_grace_seconds`.
    """

    def __init__(
        self,
        job: SearchJob,
        on_message: MessageHandler,
        *,
        mp_context: Any | None = None,
        poll_seconds: float = 0.2,
        cancel_grace_seconds: float = 5.0,
    ) -> None:
        ctx = mp_context or multiprocessing.get_context()
        self.job = job
        self._on_message = on_message
        self._poll_s = max(0.01, float(poll_seconds))
        self._grace_s = max(0.0, float(cancel_grace_seconds))
        self._queue = ctx.Queue()
        self._cancel = ctx.Event()
        self._cancelled_at: float | None = None
        self._process = ctx.Process(
            target=_process_main,
            args=(job, self._queue, self._cancel),
            name=f"pi-search-{job.task_id}",
            daemon=True,
        )
        self._pump = threading.Thread(
            target=self._pump_messages,
            name=f"pi-search-pump-{job.task_id}",
            daemon=True,
        )

    def start(self) -> None:
        try:
            self._process.start()
        except OSError as e:
            raise IsolateFailure(f"could not spawn search process: {e}") from e
        self._pump.start()
        logger.debug("ProcessIsolate started task_id=%s pid=%s", self.job.task_id, self._process.pid)

    def cancel(self) -> None:
        if self._cancelled_at is None:
            self._cancelled_at = time.monotonic()
        self._cancel.set()

    @property
    def pid(self) -> int | None:
        return self._process.pid

    def is_alive(self) -> bool:
        return self._process.is_alive() or self._pump.is_alive()

    def join(self, timeout: float | None = None) -> None:
        self._pump.join(timeout=timeout)

    def _deliver(self, msg: IsolateMessage) -> None:
        if self._cancel.is_set():
            return
        try:
            self._on_message(msg)
        except Exception:
            logger.exception("isolate message handler failed task_id=%s", self.job.task_id)

    def _pump_messages(self) -> None:
        try:
            while True:
                try:
                    msg = self._queue.get(timeout=self._poll_s)
                except queue.Empty:
                    if self._process.is_alive():
                        self._enforce_grace()
                        continue
                    self._drain_after_exit()
                    return
                except _TORN_MESSAGE_ERRORS as e:
                    # A child killed mid-write can leave a torn message in the pipe.
                    logger.warning("pi search queue broken task_id=%s: %r", self.job.task_id, e)
                    self._process.join(timeout=self._grace_s)
                    self._report_crash()
                    return

                self._deliver(msg)
                if is_terminal(msg):
                    return
        finally:
            self._reap()

    def _drain_after_exit(self) -> None:
        """Child is gone: forward whatever it flushed, then report a crash if needed."""
        while True:
            try:
                msg = self._queue.get(timeout=self._poll_s)
            except queue.Empty:
                break
            except _TORN_MESSAGE_ERRORS:
                break
            self._deliver(msg)
            if is_terminal(msg):
                return
        self._report_crash()

    def _report_crash(self) -> None:
        if self._cancel.is_set():
            return
        exitcode = self._process.exitcode
        logger.warning(
            "pi search process exited without result task_id=%s exitcode=%s",
            self.job.task_id,
            exitcode,
        )
        self._deliver(ErrorMessage(self.job.task_id, f"isolate exited unexpectedly (exitcode={exitcode})"))

    def _enforce_grace(self) -> None:
        if self._cancelled_at is None:
            return
        if time.monotonic() - self._cancelled_at < self._grace_s:
            return
        logger.warning("pi search process ignored cancel; terminating task_id=%s", self.job.task_id)
        self._process.terminate()

    def _reap(self) -> None:
        self._process.join(timeout=self._grace_s)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=1.0)
        self._queue.close()


def create_isolate(mode: str, job: SearchJob, on_message: MessageHandler) -> ThreadIsolate | ProcessIsolate:
    mode = (mode or "").strip().lower()
    if mode == "thread":
        return ThreadIsolate(job, on_message)
    if mode == "process":
        return ProcessIsolate(job, on_message)
    raise ValueError(f"unknown isolate mode {mode!r}; expected one of {ISOLATE_MODES}")
