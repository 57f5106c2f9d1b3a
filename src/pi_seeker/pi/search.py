# src/pi_seeker/pi/search.py

"""
Chunked substring search over the digits of pi.

The searcher asks the digit generator for a growing prefix of pi on every
iteration and scans only the newest window. Each window carries len(target) - 1
extra digits past the chunk end, so a match that straddles two chunks is still
seen by the earlier one.

Recomputing from digit 0 every chunk is accepted: the generator cost is
dominated by the requested precision anyway.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from ..tasks.task_models import validate_target
from .digits import generate as generate_digits

logger = logging.getLogger(__name__)

NOT_FOUND = None

ProgressSink = Callable[[int, int], None]
# progress_sink(position, elapsed_seconds)


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


def _default_pause() -> None:
    time.sleep(0.01)


def search(
    target: str,
    chunk_size: int,
    progress_sink: ProgressSink | None,
    cancel_token: CancelToken | None,
    *,
    max_digits: int | None = None,
    start_position: int = 0,
    elapsed_offset: int = 0,
    progress_interval: float = 60.0,
    generate: Callable[[int], str] = generate_digits,
    clock: Callable[[], float] = time.monotonic,
    pause: Callable[[], None] = _default_pause,
) -> int | None:
    """
    Find the first occurrence of `target` in the decimal digits of pi.

    Returns the 1-based offset after the decimal point, or NOT_FOUND when the
    search was cancelled or `max_digits` was exhausted.

    progress_sink is called with (digits scanned, elapsed whole seconds) at most
    once per `progress_interval` seconds (0 reports every chunk). When a bounded
    search is exhausted a final report with position == max_digits is always sent.
    """
    target = validate_target(target)
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if start_position < 0:
        raise ValueError(f"start_position must be >= 0, got {start_position}")
    if max_digits is not None and max_digits <= 0:
        raise ValueError(f"max_digits must be positive, got {max_digits}")

    overlap = len(target) - 1
    position = start_position
    started = clock()
    last_report = started

    def elapsed(now: float) -> int:
        return elapsed_offset + int(now - started)

    while True:
        # Last start offset that can still hold a full match inside the bound.
        if max_digits is not None and position + len(target) > max_digits:
            if progress_sink is not None:
                progress_sink(max_digits, elapsed(clock()))
            logger.debug("search exhausted target=%s max_digits=%s", target, max_digits)
            return NOT_FOUND

        end = position + chunk_size + overlap
        if max_digits is not None:
            end = min(end, max_digits)

        window = generate(end)[position:]
        idx = window.find(target)
        if idx != -1:
            return position + idx + 1

        position += chunk_size

        now = clock()
        if progress_sink is not None and now - last_report >= progress_interval:
            reported = position if max_digits is None else min(position, max_digits)
            progress_sink(reported, elapsed(now))
            last_report = now

        if cancel_token is not None and cancel_token.is_set():
            logger.debug("search cancelled target=%s position=%s", target, position)
            return NOT_FOUND

        pause()
