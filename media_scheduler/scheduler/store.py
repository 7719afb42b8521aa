"""TaskStore — aiosqlite CRUD for scheduled tasks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from media_scheduler.config import settings
from media_scheduler.scheduler.errors import PersistenceError
from media_scheduler.scheduler.models import RunStatus, ScheduledTask

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    item_id TEXT NOT NULL,
    item_title TEXT NOT NULL DEFAULT '',
    name TEXT NOT NULL,
    task_type TEXT NOT NULL,
    schedule TEXT NOT NULL,
    action TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1,
    next_run_at TEXT,
    last_run_at TEXT,
    last_run_status TEXT NOT NULL DEFAULT 'never',
    last_run_error TEXT,
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_COLUMNS = (
    "id, item_id, item_title, name, task_type, schedule, action, enabled, next_run_at,"
    " last_run_at, last_run_status, last_run_error, consecutive_failures, created_at, updated_at"
)


class TaskStore:
    """Persists scheduled tasks in SQLite.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).

    Every ``aiosqlite.Error`` is logged and re-raised as ``PersistenceError``.
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def _fetch(self, sql: str, params: tuple = ()) -> list[ScheduledTask]:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            logger.exception("Task store read failed")
            msg = f"Could not read scheduled tasks: {exc}"
            raise PersistenceError(msg) from exc
        return [ScheduledTask.from_row(tuple(row)) for row in rows]

    async def _write(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
            finally:
                await db.close()
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as exc:
            logger.exception("Task store write failed")
            msg = f"Could not write scheduled tasks: {exc}"
            raise PersistenceError(msg) from exc

    # -- CRUD ------------------------------------------------------------------

    async def add_task(self, task: ScheduledTask) -> bool:
        """Insert a new task. Returns False if the id is already taken."""
        task.validate()
        try:
            await self._write(
                f"INSERT INTO scheduled_tasks ({_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                task.to_row(),
            )
        except aiosqlite.IntegrityError:
            logger.warning("Scheduled task already exists: %s", task.id)
            return False
        logger.info("Added scheduled task: %s (%s)", task.name, task.id)
        return True

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        """Fetch a task by ID, or None if not found."""
        tasks = await self._fetch(
            f"SELECT {_COLUMNS} FROM scheduled_tasks WHERE id = ?", (task_id,)
        )
        return tasks[0] if tasks else None

    async def list_tasks(self) -> list[ScheduledTask]:
        """Return every task, oldest first."""
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM scheduled_tasks ORDER BY created_at, id"
        )

    async def list_enabled_tasks(self) -> list[ScheduledTask]:
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM scheduled_tasks WHERE enabled = 1 ORDER BY created_at, id"
        )

    async def list_tasks_for_item(self, item_id: str) -> list[ScheduledTask]:
        return await self._fetch(
            f"SELECT {_COLUMNS} FROM scheduled_tasks WHERE item_id = ? ORDER BY created_at, id",
            (item_id,),
        )

    async def update_task(self, task: ScheduledTask) -> bool:
        """Overwrite a whole task record. Returns True if a row was updated."""
        task.validate()
        row = task.to_row()
        updated = await self._write(
            """
            UPDATE scheduled_tasks SET
                item_id = ?, item_title = ?, name = ?, task_type = ?, schedule = ?,
                action = ?, enabled = ?, next_run_at = ?, last_run_at = ?,
                last_run_status = ?, last_run_error = ?, consecutive_failures = ?,
                created_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (*row[1:], row[0]),
        )
        if updated:
            logger.debug("Updated scheduled task: %s", task.id)
        return updated > 0

    async def delete_task(self, task_id: str) -> bool:
        """Remove a task. Returns True if a row was deleted."""
        deleted = await self._write("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
        if deleted:
            logger.info("Deleted scheduled task: %s", task_id)
        return deleted > 0

    # -- Targeted updates ------------------------------------------------------

    async def record_run(
        self,
        task_id: str,
        *,
        last_run_at: str,
        status: RunStatus,
        error: str | None,
        consecutive_failures: int,
    ) -> bool:
        """Write the run-history fields without touching anything else."""
        updated = await self._write(
            """
            UPDATE scheduled_tasks
            SET last_run_at = ?, last_run_status = ?, last_run_error = ?,
                consecutive_failures = ?
            WHERE id = ?
            """,
            (last_run_at, status.value, error, consecutive_failures, task_id),
        )
        return updated > 0

    async def update_next_run(self, task_id: str, timestamp: str | None) -> bool:
        """Set or clear the next_run_at timestamp."""
        updated = await self._write(
            "UPDATE scheduled_tasks SET next_run_at = ? WHERE id = ?",
            (timestamp, task_id),
        )
        return updated > 0

    async def relink_item(self, task_id: str, item_id: str, item_title: str) -> bool:
        """Point a task at a different item."""
        updated = await self._write(
            "UPDATE scheduled_tasks SET item_id = ?, item_title = ? WHERE id = ?",
            (item_id, item_title, task_id),
        )
        return updated > 0
