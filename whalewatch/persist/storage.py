"""Key-value storage backends: in-memory and SQLite-backed."""

from collections.abc import Iterable

import aiosqlite
import structlog

from ..core.errors import StorageFullError

logger = structlog.get_logger(__name__)


class MemoryStorage:
    """In-memory key-value storage with an optional size quota.

    Usage is measured as the total character count of keys and values, the
    way browser local storage accounts for its quota.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        """Initialize memory storage.

        Args:
            quota_bytes: Maximum total size of keys plus values, None for unlimited
        """
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._usage = 0

    @property
    def usage_bytes(self) -> int:
        return self._usage

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        old = self._data.get(key)
        old_size = len(key) + len(old) if old is not None else 0
        new_usage = self._usage - old_size + len(key) + len(value)

        if self.quota_bytes is not None and new_usage > self.quota_bytes:
            raise StorageFullError(key, new_usage, self.quota_bytes)

        self._data[key] = value
        self._usage = new_usage

    def delete(self, key: str) -> None:
        old = self._data.pop(key, None)
        if old is not None:
            self._usage -= len(key) + len(old)

    def keys(self) -> Iterable[str]:
        return list(self._data)


class SQLiteStorage(MemoryStorage):
    """SQLite-backed storage.

    Reads and writes are served synchronously from memory; ``initialize``
    loads the ``state`` table and ``flush`` writes pending changes back.
    """

    def __init__(self, db_path: str = "whalewatch.sqlite", quota_bytes: int | None = None) -> None:
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file
            quota_bytes: Optional size quota, see MemoryStorage
        """
        super().__init__(quota_bytes=quota_bytes)
        self.db_path = db_path
        self._dirty: set[str] = set()
        self._deleted: set[str] = set()

        logger.info("SQLite storage initialized", db_path=db_path)

    async def initialize(self) -> None:
        """Create the state table and load stored entries into memory."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await db.commit()

            async with db.execute("SELECT key, value FROM state") as cursor:
                rows = await cursor.fetchall()

        self._data.clear()
        self._usage = 0
        for key, value in rows:
            self._data[key] = value
            self._usage += len(key) + len(value)

        self._dirty.clear()
        self._deleted.clear()
        logger.info("State loaded", entries=len(rows), usage_bytes=self._usage)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._dirty.add(key)
        self._deleted.discard(key)

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        super().delete(key)
        self._dirty.discard(key)
        self._deleted.add(key)

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._dirty or self._deleted)

    async def flush(self) -> None:
        """Write pending changes to the database."""
        if not self.has_pending_writes:
            return

        dirty, self._dirty = self._dirty, set()
        deleted, self._deleted = self._deleted, set()
        upserts = [(key, self._data[key]) for key in dirty if key in self._data]
        deletes = [(key,) for key in deleted]

        try:
            async with aiosqlite.connect(self.db_path) as db:
                if upserts:
                    await db.executemany(
                        """
                        INSERT INTO state (key, value)
                        VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value
                    """,
                        upserts,
                    )
                if deletes:
                    await db.executemany("DELETE FROM state WHERE key = ?", deletes)
                await db.commit()
        except Exception:
            # Writes made while flushing win over the failed batch
            self._dirty |= dirty - self._deleted
            self._deleted |= deleted - self._dirty
            raise

        logger.debug("State flushed", upserts=len(upserts), deletes=len(deletes))

    async def close(self) -> None:
        """Flush pending writes and close storage."""
        await self.flush()
        logger.info("Storage closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
