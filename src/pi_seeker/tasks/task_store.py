# src/pi_seeker/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..errors import PersistenceFailure
from .task_models import Identity, SearchStatus, SearchTask

logger = logging.getLogger(__name__)

_CURRENT_STATUSES = (SearchStatus.PENDING, SearchStatus.RUNNING, SearchStatus.COMPLETED)
_ACTIVE_STATUSES = (SearchStatus.PENDING, SearchStatus.RUNNING)


class SearchTaskStore:
    """
    SQLite store for pi search tasks.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection, so isolate callbacks
      arriving on worker threads can checkpoint directly
    """

    def __init__(self, db_path: str | Path = "pi_tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SearchTaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    @contextlib.contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
            conn.row_factory = sqlite3.Row
            with contextlib.suppress(sqlite3.Error):
                conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"task store error ({self._db_path}): {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def _ensure_schema(self) -> None:
        with self._conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS pi_tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    requester_id TEXT NOT NULL,
                    context_id TEXT NOT NULL,
                    target TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    found_offset INTEGER,
                    progress_position INTEGER NOT NULL DEFAULT 0,
                    elapsed_seconds INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(pi_tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE pi_tasks ADD COLUMN {name} {decl}")
                logger.info("SearchTaskStore migration: added column %s", name)

            # Older databases predate failure reasons and checkpoint timing.
            add_col("found_offset", "INTEGER")
            add_col("progress_position", "INTEGER NOT NULL DEFAULT 0")
            add_col("elapsed_seconds", "INTEGER NOT NULL DEFAULT 0")
            add_col("error", "TEXT")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_pi_tasks_identity "
                "ON pi_tasks(requester_id, context_id, status, created_at)"
            )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> SearchTask:
        return SearchTask(
            id=int(row["id"]),
            requester_id=str(row["requester_id"]),
            context_id=str(row["context_id"]),
            target=str(row["target"]),
            status=SearchStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            progress_position=int(row["progress_position"] or 0),
            elapsed_seconds=int(row["elapsed_seconds"] or 0),
            found_offset=int(row["found_offset"]) if row["found_offset"] is not None else None,
            error=row["error"],
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._conn() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM pi_tasks").fetchone()
            return int(n)

    def create_task(
        self,
        *,
        requester_id: str,
        context_id: str,
        target: str,
        status: SearchStatus = SearchStatus.PENDING,
        progress_position: int = 0,
        elapsed_seconds: int = 0,
    ) -> int:
        if not target:
            raise ValueError("target is required")

        now = time.time()
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO pi_tasks(
                    requester_id, context_id, target, status,
                    progress_position, elapsed_seconds, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    requester_id,
                    context_id,
                    target,
                    status.value,
                    int(progress_position),
                    int(elapsed_seconds),
                    now,
                    now,
                ),
            )
            rowid = cur.lastrowid
            if rowid is None:
                raise PersistenceFailure("SQLite did not return lastrowid for pi_tasks insert")

        task_id = int(rowid)
        logger.debug(
            "Search task added id=%s identity=%s@%s target=%s",
            task_id,
            requester_id,
            context_id,
            target,
        )
        return task_id

    def update_task(
        self,
        task_id: int,
        *,
        status: SearchStatus | None = None,
        found_offset: int | None = None,
        progress_position: int | None = None,
        elapsed_seconds: int | None = None,
        error: str | None = None,
    ) -> None:
        fields: list[str] = []
        params: list[Any] = []

        if status is not None:
            fields.append("status = ?")
            params.append(status.value)

        if found_offset is not None:
            fields.append("found_offset = ?")
            params.append(int(found_offset))

        if progress_position is not None:
            fields.append("progress_position = ?")
            params.append(int(progress_position))

        if elapsed_seconds is not None:
            fields.append("elapsed_seconds = ?")
            params.append(int(elapsed_seconds))

        if error is not None:
            fields.append("error = ?")
            params.append(error)

        if not fields:
            return

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(int(task_id))

        sql = f"UPDATE pi_tasks SET {', '.join(fields)} WHERE id = ?"
        with self._conn() as conn:
            conn.execute(sql, params)

    def get_task(self, task_id: int) -> SearchTask | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM pi_tasks WHERE id = ?", (int(task_id),)).fetchone()
            return self._row_to_task(row) if row else None

    def find_current_task(self, identity: Identity) -> SearchTask | None:
        """
        The task /pi reports for an identity: the newest pending, running or
        completed one. Superseded and failed tasks are never "current".
        """
        placeholders = ",".join("?" for _ in _CURRENT_STATUSES)
        with self._conn() as conn:
            row = conn.execute(
                f"""
                SELECT *
                FROM pi_tasks
                WHERE requester_id = ?
                  AND context_id = ?
                  AND status IN ({placeholders})
                ORDER BY created_at DESC, id DESC
                    LIMIT 1
                """,
                (identity.requester_id, identity.context_id, *(s.value for s in _CURRENT_STATUSES)),
            ).fetchone()
            return self._row_to_task(row) if row else None

    def list_active_tasks(self, identity: Identity | None = None) -> list[SearchTask]:
        """Pending/running tasks, oldest first (optionally for one identity)."""
        placeholders = ",".join("?" for _ in _ACTIVE_STATUSES)
        sql = f"SELECT * FROM pi_tasks WHERE status IN ({placeholders})"
        params: list[Any] = [s.value for s in _ACTIVE_STATUSES]
        if identity is not None:
            sql += " AND requester_id = ? AND context_id = ?"
            params.extend([identity.requester_id, identity.context_id])
        sql += " ORDER BY created_at ASC, id ASC"

        with self._conn() as conn:
            return [self._row_to_task(r) for r in conn.execute(sql, params).fetchall()]
