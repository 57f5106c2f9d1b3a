# src/pi_seeker/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field

from nio import MatrixRoom, RoomMessageText

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_models import Identity
from .matrix_client import create_matrix_client

logger = logging.getLogger(__name__)


def _ms_now() -> int:
    return int(time.time() * 1000)


def _room_allowlist(settings_rooms: list[str]) -> set[str] | None:
    rooms = [r.strip() for r in (settings_rooms or []) if str(r).strip()]
    return set(rooms) if rooms else None


async def _send_text(client, *, room_id: str, text: str) -> None:
    await client.room_send(
        room_id=room_id,
        message_type="m.room.message",
        content={"msgtype": "m.text", "body": text},
        ignore_unverified_devices=True,
    )


class MatrixNotifier:
    """
    Notifier transport for identities whose context is a Matrix room id.

    notify() may be called from isolate threads; the send is scheduled onto the
    connector's event loop and never awaited by the caller.
    """

    def __init__(
        self,
        client,
        loop: asyncio.AbstractEventLoop,
        *,
        allowed_rooms: set[str] | None = None,
    ) -> None:
        self._client = client
        self._loop = loop
        self._allowed_rooms = allowed_rooms

    def accepts(self, identity: Identity) -> bool:
        room_id = identity.context_id
        if not room_id.startswith("!"):
            return False
        return self._allowed_rooms is None or room_id in self._allowed_rooms

    def notify(self, identity: Identity, text: str) -> None:
        body = f"{identity.requester_id}: {text}"
        fut = asyncio.run_coroutine_threadsafe(
            _send_text(self._client, room_id=identity.context_id, text=body),
            self._loop,
        )
        fut.add_done_callback(lambda f: self._log_failure(f, identity))

    @staticmethod
    def _log_failure(fut: Future, identity: Identity) -> None:
        if fut.cancelled():
            logger.warning("Matrix notification cancelled identity=%s", identity)
            return
        exc = fut.exception()
        if exc is not None:
            logger.error("Matrix notification failed identity=%s: %r", identity, exc)


async def _run_matrix_bot(
    state: AppState,
    stop_event: asyncio.Event,
    connected: threading.Event | None = None,
) -> None:
    """
    Matrix connector (async):

    init -> notifier -> callbacks -> sync loop

    Shutdown model:
    - main thread sets stop_event via loop.call_soon_threadsafe(stop_event.set)
    - we run a manual sync loop so we can exit promptly.

    `connected` is set once the notifier is registered, or once startup gave up.
    """
    settings = state.settings
    startup_ts = _ms_now()

    allowed_rooms = _room_allowlist(getattr(settings, "matrix_rooms", []) or [])
    logger.info("Matrix allowed_rooms=%s", allowed_rooms if allowed_rooms is not None else "ALL")

    client = None
    try:
        client = await create_matrix_client(settings)
    finally:
        if client is None and connected is not None:
            connected.set()
    if client is None:
        logger.error("Matrix client creation failed; connector will stop.")
        return

    notifier = MatrixNotifier(client, asyncio.get_running_loop(), allowed_rooms=allowed_rooms)
    state.notifier.register(notifier)
    if connected is not None:
        connected.set()

    async def message_callback(room: MatrixRoom, event: RoomMessageText) -> None:
        # Ignore history replayed by the first sync.
        ts = getattr(event, "server_timestamp", None)
        if ts is not None and ts <= startup_ts:
            return

        if event.sender == client.user_id:
            return

        if allowed_rooms is not None and room.room_id not in allowed_rooms:
            return

        body = (event.body or "").strip()
        if not body.startswith("/"):
            return

        logger.info("Matrix <%s> %s: %r", room.display_name, event.sender, body)

        try:
            with state.lock:
                resp = command_registry.handle(state, body, user_id=event.sender, room_id=room.room_id)
        except Exception:
            logger.exception("Command handler crashed.")
            resp = "Internal error while handling a command."

        if not resp:
            return
        try:
            await _send_text(client, room_id=room.room_id, text=resp)
        except Exception:
            logger.exception("Failed to send command reply to %s.", room.room_id)

    client.add_event_callback(message_callback, RoomMessageText)

    try:
        logger.info("Matrix initial sync...")
        await client.sync(timeout=30000, full_state=True)
        logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))

        while not stop_event.is_set():
            sync_task = asyncio.create_task(client.sync(timeout=30000, full_state=False))
            stop_task = asyncio.create_task(stop_event.wait())
            done, _ = await asyncio.wait({sync_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            for pending in (sync_task, stop_task):
                if pending not in done:
                    pending.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await pending
            if sync_task in done:
                sync_task.result()

    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
    except Exception:
        logger.exception("Matrix connector crashed.")
    finally:
        state.notifier.unregister(notifier)
        with contextlib.suppress(Exception):
            await client.close()
        logger.info("Matrix connector stopped.")


@dataclass
class MatrixBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event
    connected: threading.Event = field(default_factory=threading.Event)

    def wait_connected(self, timeout: float | None = None) -> bool:
        """Block until the Matrix notifier is registered (or startup failed)."""
        return self.connected.wait(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Matrix loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_matrix_in_background(state: AppState) -> MatrixBackgroundRunner | None:
    """
    Start Matrix connector in a background thread (so console REPL can run in parallel).

    The console REPL blocks on input(); the Matrix connector wants its own event loop.
    """
    settings = state.settings
    if not settings.matrix_enabled:
        logger.info("Matrix connector disabled, not starting.")
        return None

    ready = threading.Event()
    connected = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_matrix_bot(state, stop_event, connected))
        finally:
            connected.set()
            loop.close()

    t = threading.Thread(target=runner, name="matrix-connector", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Matrix thread did not initialize properly.")
        return None

    logger.info("Matrix background thread started.")
    return MatrixBackgroundRunner(thread=t, loop=loop, stop_event=stop_event, connected=connected)
