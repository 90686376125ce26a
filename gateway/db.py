"""
Durable task store for the gateway.

One row per automation request. Status only moves forward:

    pending -> running -> success | failed
    pending -> success | failed        (first observation already terminal)

Terminal rows are written exactly once: finalize_task guards on a
non-terminal status in SQL, so a repeated poll of a finished job is a no-op.
"""

from __future__ import annotations

import json
import uuid

import aiosqlite

PENDING = "pending"
RUNNING = "running"
SUCCESS = "success"
FAILED = "failed"

_TERMINAL_STATUSES = (SUCCESS, FAILED)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id              TEXT PRIMARY KEY,
    task_type       TEXT NOT NULL,
    target_site     TEXT NOT NULL DEFAULT '',
    target_url      TEXT NOT NULL DEFAULT '',
    form_data       TEXT NOT NULL DEFAULT '{}',
    status          TEXT NOT NULL DEFAULT 'pending',
    progress        INTEGER NOT NULL DEFAULT 0,
    execution_log   TEXT NOT NULL DEFAULT '[]',
    job_id          TEXT,
    result          TEXT,
    started_at      TEXT,
    completed_at    TEXT,
    error_message   TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_job ON tasks(job_id) WHERE job_id IS NOT NULL;
"""


class InvalidTaskTransition(Exception):
    """Raised when a task would leave a terminal status or move backward."""


def _row_to_task(row: aiosqlite.Row) -> dict:
    task = dict(row)
    task["form_data"] = json.loads(task["form_data"] or "{}")
    task["execution_log"] = json.loads(task["execution_log"] or "[]")
    task["result"] = json.loads(task["result"]) if task["result"] else None
    return task


class Database:
    """Async SQLite wrapper for gateway task records."""

    def __init__(self, db_path: str = "gateway.db") -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open connection, enable WAL mode, create tables."""
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        task_type: str,
        form_data: dict,
        target_site: str = "",
        target_url: str = "",
    ) -> str:
        """Insert a pending task and return its id."""
        task_id = uuid.uuid4().hex
        await self._db.execute(
            """INSERT INTO tasks (id, task_type, target_site, target_url, form_data)
               VALUES (?, ?, ?, ?, ?)""",
            (task_id, task_type, target_site, target_url, json.dumps(form_data)),
        )
        await self._db.commit()
        return task_id

    async def get_task(self, task_id: str) -> dict | None:
        """Fetch a single task by id."""
        cursor = await self._db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        row = await cursor.fetchone()
        return _row_to_task(row) if row else None

    async def get_task_by_job(self, job_id: str) -> dict | None:
        """Fetch the task that delegated to a given worker job."""
        cursor = await self._db.execute(
            "SELECT * FROM tasks WHERE job_id = ?", (job_id,)
        )
        row = await cursor.fetchone()
        return _row_to_task(row) if row else None

    async def set_job_id(self, task_id: str, job_id: str) -> None:
        """Bind the worker job this task derives from. Only set once."""
        cursor = await self._db.execute(
            "UPDATE tasks SET job_id = ? WHERE id = ? AND job_id IS NULL",
            (job_id, task_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise InvalidTaskTransition(f"Task {task_id} already bound to a job")

    async def mark_running(self, task_id: str) -> bool:
        """pending -> running. Returns False if the task was not pending."""
        cursor = await self._db.execute(
            """UPDATE tasks SET status = ?, started_at = datetime('now')
               WHERE id = ? AND status = ?""",
            (RUNNING, task_id, PENDING),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def update_progress(self, task_id: str, progress: int) -> None:
        """Store advisory progress. Never lowers it and ignores finished tasks."""
        placeholders = ", ".join("?" for _ in _TERMINAL_STATUSES)
        await self._db.execute(
            f"""UPDATE tasks SET progress = MAX(progress, ?)
                WHERE id = ? AND status NOT IN ({placeholders})""",
            (max(0, min(100, int(progress))), task_id, *_TERMINAL_STATUSES),
        )
        await self._db.commit()

    async def finalize_task(
        self,
        task_id: str,
        success: bool,
        result: dict | None = None,
        error_message: str | None = None,
        logs: list[str] | None = None,
    ) -> bool:
        """Move a task to success/failed exactly once.

        Returns True if this call performed the update, False if the task was
        already terminal (or does not exist).
        """
        task = await self.get_task(task_id)
        if task is None or task["status"] in _TERMINAL_STATUSES:
            return False

        merged_log = task["execution_log"] + list(logs or [])
        placeholders = ", ".join("?" for _ in _TERMINAL_STATUSES)
        cursor = await self._db.execute(
            f"""UPDATE tasks SET
                    status = ?,
                    progress = CASE WHEN ? THEN 100 ELSE progress END,
                    result = ?,
                    error_message = ?,
                    execution_log = ?,
                    started_at = COALESCE(started_at, datetime('now')),
                    completed_at = datetime('now')
                WHERE id = ? AND status NOT IN ({placeholders})""",
            (
                SUCCESS if success else FAILED,
                1 if success else 0,
                json.dumps(result, ensure_ascii=False) if result is not None else None,
                None if success else (error_message or "Task failed"),
                json.dumps(merged_log, ensure_ascii=False),
                task_id,
                *_TERMINAL_STATUSES,
            ),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def list_tasks(self, status: str | None = None, limit: int = 50) -> list[dict]:
        """Most recent tasks first, optionally filtered by status."""
        if status:
            cursor = await self._db.execute(
                "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC LIMIT ?",
                (status, limit),
            )
        else:
            cursor = await self._db.execute(
                "SELECT * FROM tasks ORDER BY created_at DESC LIMIT ?", (limit,)
            )
        return [_row_to_task(r) for r in await cursor.fetchall()]
