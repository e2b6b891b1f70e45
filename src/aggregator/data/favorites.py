"""Favorite coin persistence backed by SQLite via aiosqlite.

The full set is mirrored in memory after connect(), so membership reads are
synchronous; only mutations touch the database.
"""

import os
import time
from typing import Self

import aiosqlite

from aggregator.logging import get_logger

logger = get_logger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS favorites (
    coin_id TEXT PRIMARY KEY,
    added_at INTEGER NOT NULL
);
"""


class FavoritesStore:
    """Persistent set of favorited coin identifiers.

    Usage:
        async with FavoritesStore("data/favorites.db") as favorites:
            await favorites.toggle("bitcoin")
            favorites.get_all_ids()
    """

    def __init__(self, db_path: str = "data/favorites.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._ids: set[str] = set()

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Favorites store not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the database, create the schema and load the current set."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.commit()

        cursor = await self._connection.execute("SELECT coin_id FROM favorites")
        rows = await cursor.fetchall()
        self._ids = {row[0] for row in rows}

        logger.info("favorites_loaded", db_path=self._db_path, count=len(self._ids))

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("favorites_db_closed", db_path=self._db_path)

    def get_all_ids(self) -> set[str]:
        """Return a copy of the favorite set."""
        return set(self._ids)

    def is_favorite(self, coin_id: str) -> bool:
        return coin_id in self._ids

    async def add(self, coin_id: str) -> None:
        await self.db.execute(
            "INSERT OR IGNORE INTO favorites (coin_id, added_at) VALUES (?, ?)",
            (coin_id, int(time.time() * 1000)),
        )
        await self.db.commit()
        self._ids.add(coin_id)

    async def remove(self, coin_id: str) -> None:
        await self.db.execute("DELETE FROM favorites WHERE coin_id = ?", (coin_id,))
        await self.db.commit()
        self._ids.discard(coin_id)

    async def toggle(self, coin_id: str) -> bool:
        """Flip membership of coin_id. Returns True if it is now a favorite."""
        if coin_id in self._ids:
            await self.remove(coin_id)
            logger.info("favorite_removed", coin_id=coin_id)
            return False
        await self.add(coin_id)
        logger.info("favorite_added", coin_id=coin_id)
        return True

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
