# tests/test_isolate.py

from __future__ import annotations

import os
import signal
import sys
import threading

import pytest

from pi_seeker.pi.isolate import (
    ErrorMessage,
    ProcessIsolate,
    ProgressMessage,
    ResultMessage,
    SearchJob,
    ThreadIsolate,
    create_isolate,
    run_job,
)


def _no_pause() -> None:
    return None


def test_run_job_emits_result_with_elapsed_offset() -> None:
    out: list = []
    run_job(SearchJob(task_id=7, target="14159", elapsed_offset=30), out.append, threading.Event())
    assert len(out) == 1
    msg = out[0]
    assert isinstance(msg, ResultMessage)
    assert msg.task_id == 7
    assert msg.offset == 1
    assert msg.elapsed_seconds >= 30


def test_run_job_reports_search_errors() -> None:
    out: list = []
    run_job(SearchJob(task_id=3, target="1", chunk_size=0), out.append, threading.Event())
    assert len(out) == 1
    assert isinstance(out[0], ErrorMessage)
    assert out[0].task_id == 3
    assert "chunk_size" in out[0].reason


def test_thread_isolate_finds_target() -> None:
    out: list = []
    iso = ThreadIsolate(SearchJob(task_id=1, target="141592", chunk_size=1000), out.append, pause=_no_pause)
    iso.start()
    iso.join(timeout=30)

    assert not iso.is_alive()
    assert [type(m) for m in out] == [ResultMessage]
    assert out[0].offset == 1


def test_thread_isolate_cancel_silences_it() -> None:
    out: list = []
    holder: dict[str, ThreadIsolate] = {}

    def on_message(msg) -> None:
        out.append(msg)
        holder["iso"].cancel()

    job = SearchJob(task_id=2, target="99999999", chunk_size=50, progress_interval=0)
    iso = ThreadIsolate(job, on_message, pause=_no_pause)
    holder["iso"] = iso
    iso.start()
    iso.join(timeout=30)

    assert not iso.is_alive()
    assert len(out) == 1
    assert isinstance(out[0], ProgressMessage)
    assert out[0].task_id == 2
    assert out[0].position == 50


def test_thread_isolate_handler_errors_do_not_kill_search() -> None:
    seen: list = []

    def on_message(msg) -> None:
        seen.append(msg)
        raise RuntimeError("handler bug")

    job = SearchJob(task_id=4, target="99999999", chunk_size=100, progress_interval=0, max_digits=300)
    iso = ThreadIsolate(job, on_message, pause=_no_pause)
    iso.start()
    iso.join(timeout=30)

    assert isinstance(seen[-1], ResultMessage)
    assert seen[-1].offset is None


def test_process_isolate_finds_target() -> None:
    out: list = []
    iso = ProcessIsolate(SearchJob(task_id=5, target="141592", chunk_size=1000), out.append, poll_seconds=0.05)
    iso.start()
    iso.join(timeout=60)

    assert not iso.is_alive()
    assert [type(m) for m in out] == [ResultMessage]
    assert out[0].task_id == 5
    assert out[0].offset == 1


@pytest.mark.skipif(sys.platform == "win32", reason="needs SIGKILL")
def test_process_isolate_crash_becomes_error() -> None:
    out: list = []
    first_progress = threading.Event()

    def on_message(msg) -> None:
        out.append(msg)
        if isinstance(msg, ProgressMessage):
            first_progress.set()

    job = SearchJob(task_id=6, target="99999999", chunk_size=200, progress_interval=0)
    iso = ProcessIsolate(job, on_message, poll_seconds=0.05)
    iso.start()
    assert first_progress.wait(timeout=60)

    assert iso.pid is not None
    os.kill(iso.pid, signal.SIGKILL)
    iso.join(timeout=60)

    assert not iso.is_alive()
    last = out[-1]
    assert isinstance(last, ErrorMessage)
    assert last.task_id == 6
    assert "exited unexpectedly" in last.reason


def test_process_isolate_cancel_ends_without_terminal_message() -> None:
    out: list = []
    first_progress = threading.Event()

    def on_message(msg) -> None:
        out.append(msg)
        first_progress.set()

    job = SearchJob(task_id=8, target="99999999", chunk_size=200, progress_interval=0)
    iso = ProcessIsolate(job, on_message, poll_seconds=0.05, cancel_grace_seconds=5.0)
    iso.start()
    assert first_progress.wait(timeout=60)

    iso.cancel()
    iso.join(timeout=60)

    assert not iso.is_alive()
    assert all(isinstance(m, ProgressMessage) for m in out)


def test_create_isolate_modes() -> None:
    job = SearchJob(task_id=1, target="1")
    assert isinstance(create_isolate("thread", job, lambda m: None), ThreadIsolate)
    assert isinstance(create_isolate(" Process ", job, lambda m: None), ProcessIsolate)
    with pytest.raises(ValueError):
        create_isolate("fiber", job, lambda m: None)
