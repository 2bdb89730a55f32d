"""Persistent key-value stores backing the second cache tier."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import sqlite3

import aiosqlite

from ..core.exceptions import CacheUnavailable, StorageError, StorageQuotaExceeded

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Bounded string key-value store.

    Writing a new key beyond ``max_entries`` raises StorageQuotaExceeded.
    Overwriting an existing key is always allowed.
    """

    def __init__(self, max_entries: int = 5000):
        self.max_entries = max_entries

    async def initialize(self):
        """Prepare the store for use."""
        pass

    async def close(self):
        """Release resources."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass

    @abstractmethod
    async def iter_keys(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix."""
        pass

    async def count(self, prefix: str = "") -> int:
        return len(await self.iter_keys(prefix))


class MemoryKeyValueStore(KeyValueStore):
    """In-process store with the same capacity contract as the SQLite store."""

    def __init__(self, max_entries: int = 5000):
        super().__init__(max_entries)
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if key not in self._data and len(self._data) >= self.max_entries:
            raise StorageQuotaExceeded(
                f"Store full ({self.max_entries} entries), cannot add {key}"
            )
        self._data[key] = value

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def iter_keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed key-value store."""

    def __init__(self, db_path: Union[str, Path] = "oracle_pricing.db", max_entries: int = 5000):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            max_entries: Capacity bound
        """
        super().__init__(max_entries)
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._initialized = False

    async def initialize(self):
        """Open the database and create tables."""
        if self._initialized:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            await self._create_tables(self._db)
            await self._db.commit()
        except (OSError, sqlite3.Error) as e:
            raise CacheUnavailable(f"Cannot open key-value store at {self.db_path}: {e}") from e

        self._initialized = True
        logger.info(f"Key-value store initialized at {self.db_path}")

    async def _create_tables(self, db: aiosqlite.Connection):
        await db.execute("""
            CREATE TABLE IF NOT EXISTS kv_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_kv_entries_updated ON kv_entries(updated_at)"
        )

    async def _connection(self) -> aiosqlite.Connection:
        if not self._initialized:
            await self.initialize()
        return self._db

    async def get(self, key: str) -> Optional[str]:
        db = await self._connection()
        try:
            async with db.execute("SELECT value FROM kv_entries WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        db = await self._connection()
        try:
            async with db.execute("SELECT 1 FROM kv_entries WHERE key = ?", (key,)) as cursor:
                exists = await cursor.fetchone() is not None

            if not exists:
                async with db.execute("SELECT COUNT(*) FROM kv_entries") as cursor:
                    (count,) = await cursor.fetchone()
                if count >= self.max_entries:
                    raise StorageQuotaExceeded(
                        f"Store full ({self.max_entries} entries), cannot add {key}"
                    )

            await db.execute(
                "INSERT OR REPLACE INTO kv_entries (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat())
            )
            await db.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def remove(self, key: str) -> bool:
        db = await self._connection()
        try:
            cursor = await db.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove {key}: {e}") from e

    async def iter_keys(self, prefix: str = "") -> List[str]:
        db = await self._connection()
        # Escape LIKE wildcards so the prefix matches literally
        pattern = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'
        try:
            async with db.execute(
                "SELECT key FROM kv_entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key", (pattern,)
            ) as cursor:
                rows = await cursor.fetchall()
                return [row[0] for row in rows]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys for {prefix!r}: {e}") from e

    async def close(self):
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._initialized = False
            logger.info("Key-value store closed")


def create_store(backend: str = "memory", path: Union[str, Path] = "oracle_pricing.db",
                 max_entries: int = 5000) -> KeyValueStore:
    """Build a store from configuration values."""
    if backend == "sqlite":
        return SQLiteKeyValueStore(path, max_entries=max_entries)
    if backend == "memory":
        return MemoryKeyValueStore(max_entries=max_entries)
    raise ValueError(f"Unknown storage backend: {backend}")
