# src/pi_seeker/errors.py

from __future__ import annotations


class PiSeekerError(Exception):
    """Base class for errors raised by the search core."""


class InvalidTarget(PiSeekerError, ValueError):
    """Target is empty or contains something other than decimal digits."""


class PersistenceFailure(PiSeekerError):
    """The task store could not read or write a record."""


class IsolateFailure(PiSeekerError):
    """The execution context running a search crashed or could not be started."""
