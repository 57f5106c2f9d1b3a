# src/pi_seeker/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.controller import TaskController
from ..tasks.task_store import SearchTaskStore
from .notify import NotifierHub


@dataclass
class AppState:
    # Settings object (config.Settings or a test double with the same attributes).
    settings: Any

    task_store: SearchTaskStore
    notifier: NotifierHub
    controller: TaskController

    # Serialises command handling between console and Matrix threads.
    lock: threading.RLock = field(default_factory=threading.RLock)
