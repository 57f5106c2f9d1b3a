# tests/test_notify.py

from __future__ import annotations

import asyncio
import logging
import threading
from types import SimpleNamespace

import pytest

from pi_seeker.connectors import matrix_connector
from pi_seeker.connectors.matrix_connector import MatrixNotifier
from pi_seeker.core.notify import CONSOLE_CONTEXT, ConsoleNotifier, NotifierHub
from pi_seeker.tasks.task_models import Identity

from .fakes import FakeMatrixClient, RecordingNotifier

CONSOLE_USER = Identity("alice", CONSOLE_CONTEXT)
MATRIX_USER = Identity("@alice:example.org", "!room:example.org")


class _RoomOnly(RecordingNotifier):
    def accepts(self, identity: Identity) -> bool:
        return identity.context_id.startswith("!")


class _Broken:
    def accepts(self, identity: Identity) -> bool:
        return True

    def notify(self, identity: Identity, text: str) -> None:
        raise RuntimeError("transport down")


def test_hub_routes_to_first_accepting_transport() -> None:
    hub = NotifierHub()
    rooms = _RoomOnly()
    fallback = RecordingNotifier()
    hub.register(rooms)
    hub.register(fallback)

    hub.notify(MATRIX_USER, "found it")
    hub.notify(CONSOLE_USER, "found it too")

    assert rooms.sent == [(MATRIX_USER, "found it")]
    assert fallback.sent == [(CONSOLE_USER, "found it too")]


def test_hub_logs_transport_failures(caplog) -> None:
    hub = NotifierHub()
    hub.register(_Broken())

    with caplog.at_level(logging.ERROR, logger="pi_seeker.core.notify"):
        hub.notify(MATRIX_USER, "x")

    assert "Notification failed" in caplog.text


def test_hub_without_transport_drops_with_warning(caplog) -> None:
    hub = NotifierHub()
    transport = RecordingNotifier()
    hub.register(transport)
    hub.unregister(transport)

    with caplog.at_level(logging.WARNING, logger="pi_seeker.core.notify"):
        hub.notify(MATRIX_USER, "lost")

    assert transport.sent == []
    assert "No notifier transport" in caplog.text


def test_console_notifier() -> None:
    lines: list[str] = []
    console = ConsoleNotifier(write=lines.append)

    assert console.accepts(CONSOLE_USER)
    assert not console.accepts(MATRIX_USER)

    console.notify(CONSOLE_USER, "hello")
    assert len(lines) == 1
    assert lines[0].endswith("[pi] hello")


@pytest.mark.asyncio
async def test_matrix_notifier_sends_from_worker_thread() -> None:
    client = FakeMatrixClient()
    notifier = MatrixNotifier(client, asyncio.get_running_loop())

    assert notifier.accepts(MATRIX_USER)
    assert not notifier.accepts(CONSOLE_USER)

    # Isolates call notify() from their own threads.
    await asyncio.to_thread(notifier.notify, MATRIX_USER, "done")
    for _ in range(100):
        if client.sent:
            break
        await asyncio.sleep(0.01)

    assert client.sent == [("!room:example.org", "@alice:example.org: done")]


@pytest.mark.asyncio
async def test_matrix_notifier_respects_room_allowlist() -> None:
    notifier = MatrixNotifier(
        FakeMatrixClient(),
        asyncio.get_running_loop(),
        allowed_rooms={"!other:example.org"},
    )
    assert not notifier.accepts(MATRIX_USER)
    assert notifier.accepts(Identity("@bob:example.org", "!other:example.org"))


def _matrix_state() -> SimpleNamespace:
    return SimpleNamespace(
        settings=SimpleNamespace(matrix_rooms=[]),
        notifier=NotifierHub(),
        lock=threading.RLock(),
    )


@pytest.mark.asyncio
async def test_matrix_bot_signals_connected_after_notifier_registered(monkeypatch) -> None:
    client = FakeMatrixClient()

    async def fake_create(settings):
        return client

    monkeypatch.setattr(matrix_connector, "create_matrix_client", fake_create)
    state = _matrix_state()
    stop_event = asyncio.Event()
    connected = threading.Event()

    bot = asyncio.create_task(matrix_connector._run_matrix_bot(state, stop_event, connected))
    assert await asyncio.to_thread(connected.wait, 5.0)

    # A search finishing right after startup must reach the room.
    await asyncio.to_thread(state.notifier.notify, MATRIX_USER, "resumed and found")
    for _ in range(100):
        if client.sent:
            break
        await asyncio.sleep(0.01)
    assert client.sent == [("!room:example.org", "@alice:example.org: resumed and found")]

    stop_event.set()
    await asyncio.wait_for(bot, timeout=5.0)
    assert client.closed


@pytest.mark.asyncio
async def test_matrix_bot_signals_connected_when_login_fails(monkeypatch) -> None:
    async def fake_create(settings):
        return None

    monkeypatch.setattr(matrix_connector, "create_matrix_client", fake_create)
    connected = threading.Event()

    await matrix_connector._run_matrix_bot(_matrix_state(), asyncio.Event(), connected)
    assert connected.is_set()
