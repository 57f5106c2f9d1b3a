# src/pi_seeker/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import cast

from ..core.state import AppState
from ..errors import InvalidTarget, PersistenceFailure
from ..tasks.task_models import Identity, SearchStatus, SearchTask

CommandEmitter = Callable[[str], None]
CommandHandler4 = Callable[[AppState, list[str], str | None, str | None], str]
CommandHandler5 = Callable[
    [AppState, list[str], str | None, str | None, CommandEmitter | None], str
]
CommandHandler = CommandHandler4 | CommandHandler5

logger = logging.getLogger(__name__)

PI_USAGE = "Usage: /pi <digits> to start a search, /pi to show your current one. Example: /pi 14159"


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /pi, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 5

        if nparams >= 5:
            h5 = cast(CommandHandler5, handler)
            return h5(state, args, user_id, room_id, emit)

        h4 = cast(CommandHandler4, handler)
        return h4(state, args, user_id, room_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def render_task(task: SearchTask) -> str:
    lines = [
        "Your current pi search:",
        f"  Target: {task.target}",
        f"  Status: {task.status.value}",
    ]
    if task.status == SearchStatus.COMPLETED:
        if task.found_offset is not None:
            lines.append(f"  Found at digit: {task.found_offset} (after the decimal point)")
        else:
            lines.append(f"  Not found in the first {task.progress_position} digits")
    else:
        lines.append(f"  Scanned: {task.progress_position} digits")
    lines.append(f"  Elapsed: {task.elapsed_seconds}s")
    return "\n".join(lines)


def cmd_help(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    return registry.build_help()


def cmd_status(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
) -> str:
    settings = state.settings
    max_digits = getattr(settings, "max_digits", None)
    return (
        "Status:\n"
        f"  Isolate mode: {getattr(settings, 'isolate_mode', '?')}\n"
        f"  Chunk size: {getattr(settings, 'chunk_size', '?')} digits\n"
        f"  Digit limit: {max_digits if max_digits else 'none'}\n"
        f"  Running searches: {state.controller.live_count()}"
    )


def cmd_pi(
    state: AppState,
    args: list[str],
    user_id: str | None,
    room_id: str | None,
    emit: CommandEmitter | None = None,
) -> str:
    """
    /pi           -> show the current search for this user in this room
    /pi <digits>  -> start a new search (supersedes an unfinished one)
    """
    if not user_id or not room_id:
        return "This command needs a user and a room context."

    identity = Identity(requester_id=user_id, context_id=room_id)
    controller = state.controller

    if not args:
        try:
            task = controller.query_current(identity)
        except PersistenceFailure:
            logger.exception("query_current failed identity=%s", identity)
            return "Could not read your pi search right now, please try again later."
        if task is None:
            return "You have no pi search. Example: /pi 14159 starts one."
        return render_task(task)

    target = args[0]
    try:
        task_id = controller.start_task(identity, target)
    except InvalidTarget:
        return f"{target!r} is not a digit string. {PI_USAGE}"
    except PersistenceFailure:
        logger.exception("start_task failed identity=%s target=%s", identity, target)
        return "Could not save your pi search right now, please try again later."

    logger.debug("pi search task_id=%s requested by %s", task_id, identity)
    return f'Started searching for "{target.strip()}" in pi. This may take a long time...'


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show search settings and running searches.")
registry.register("pi", cmd_pi, help_text="Find a digit string in pi: /pi <digits> | /pi.")
