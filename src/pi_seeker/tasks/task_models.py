# src/pi_seeker/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from ..errors import InvalidTarget


class SearchStatus(StrEnum):
    """
    Search task lifecycle status.

    pending -> running -> completed | failed
    pending/running -> superseded (a newer request for the same identity)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUPERSEDED = "superseded"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (SearchStatus.PENDING, SearchStatus.RUNNING)

    @classmethod
    def from_db(cls, raw: str | None) -> SearchStatus:
        # An unreadable row must never be relaunched.
        if not raw:
            return cls.FAILED
        try:
            return cls(raw)
        except ValueError:
            return cls.FAILED


@dataclass(slots=True, frozen=True)
class Identity:
    """Who asked, and where: (chat user id, room/group id)."""

    requester_id: str
    context_id: str

    def __str__(self) -> str:
        return f"{self.requester_id}@{self.context_id}"


@dataclass(slots=True)
class SearchTask:
    id: int
    requester_id: str
    context_id: str
    target: str
    status: SearchStatus

    created_at: float
    updated_at: float

    progress_position: int = 0
    elapsed_seconds: int = 0
    found_offset: int | None = None
    error: str | None = None

    @property
    def identity(self) -> Identity:
        return Identity(self.requester_id, self.context_id)


def validate_target(raw: str | None) -> str:
    """Return the stripped target, or raise InvalidTarget."""
    target = (raw or "").strip()
    if not target:
        raise InvalidTarget("target must not be empty")
    # str.isdigit() also accepts superscripts and other unicode digits.
    if not all("0" <= ch <= "9" for ch in target):
        raise InvalidTarget(f"target must contain only digits 0-9, got {target!r}")
    return target
