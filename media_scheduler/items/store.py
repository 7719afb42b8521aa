"""ItemStore — aiosqlite access to tracked media items."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from media_scheduler.config import settings
from media_scheduler.items.models import Item
from media_scheduler.scheduler.errors import PersistenceError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS tracked_items (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    media_type TEXT NOT NULL DEFAULT 'tv',
    status TEXT NOT NULL DEFAULT 'ongoing',
    completed INTEGER NOT NULL DEFAULT 0
)
"""


def _from_row(row: tuple) -> Item:
    return Item(
        id=row[0],
        title=row[1],
        media_type=row[2],
        status=row[3],
        completed=bool(row[4]),
    )


class ItemStore:
    """Reads tracked items from SQLite.

    The scheduler only ever reads items; ``add_item`` and ``delete_item``
    exist for seeding and tests.
    """

    _instance: ItemStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    @classmethod
    def get(cls) -> ItemStore:
        """Return the shared ItemStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def list_items(self) -> list[Item]:
        """Return every tracked item."""
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT id, title, media_type, status, completed FROM tracked_items"
                    " ORDER BY title, id"
                )
                rows = await cursor.fetchall()
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            logger.exception("Item store read failed")
            msg = f"Could not read tracked items: {exc}"
            raise PersistenceError(msg) from exc
        return [_from_row(tuple(row)) for row in rows]

    async def get_item(self, item_id: str) -> Item | None:
        try:
            db = await self._connect()
            try:
                cursor = await db.execute(
                    "SELECT id, title, media_type, status, completed FROM tracked_items"
                    " WHERE id = ?",
                    (item_id,),
                )
                row = await cursor.fetchone()
            finally:
                await db.close()
        except aiosqlite.Error as exc:
            logger.exception("Item store read failed")
            msg = f"Could not read tracked item {item_id}: {exc}"
            raise PersistenceError(msg) from exc
        return _from_row(tuple(row)) if row else None

    async def add_item(self, item: Item) -> None:
        """Insert or replace an item."""
        db = await self._connect()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO tracked_items (id, title, media_type, status, completed)"
                " VALUES (?, ?, ?, ?, ?)",
                (item.id, item.title, item.media_type, item.status, int(item.completed)),
            )
            await db.commit()
        finally:
            await db.close()

    async def delete_item(self, item_id: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM tracked_items WHERE id = ?", (item_id,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()
