"""Durable storage backends for uploadcue.

A store holds the whole queue as one JSON array under a single key. Every
mutation rewrites the full collection, so a backend only needs to load and
save atomically.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import aiosqlite

logger = logging.getLogger(__name__)

DEFAULT_KEY = "upload_queue"

SCHEMA = """
-- Keyed blobs; the queue lives under a single key
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL
);
"""


class StorageError(Exception):
    """Raised when the queue cannot be persisted."""


class SerializationError(StorageError):
    """Raised when a record holds a value JSON cannot encode."""


class Store(ABC):
    """Persistence contract for the queue.

    `load()` never raises: a missing, unreadable or corrupt blob is reported
    as an empty queue. `save()` either replaces the blob entirely or raises
    StorageError and leaves the previous blob readable.
    """

    @abstractmethod
    async def load(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def save(self, records: list[dict[str, Any]]) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources."""


def encode(records: list[dict[str, Any]]) -> str:
    try:
        return json.dumps(records, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Queue is not JSON-serializable: {e}") from e


def decode(text: str | None, source: str) -> list[dict[str, Any]]:
    """Parse a stored blob, falling back to an empty queue."""
    if not text:
        return []
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning(f"Corrupt queue data in {source}, starting empty: {e}")
        return []
    if not isinstance(data, list):
        logger.warning(f"Queue data in {source} is not a list, starting empty")
        return []
    return [record for record in data if isinstance(record, dict)]


class MemoryStore(Store):
    """In-process store. Keeps serialized text so snapshots stay independent."""

    def __init__(self, key: str = DEFAULT_KEY) -> None:
        self.key = key
        self.blobs: dict[str, str] = {}

    async def load(self) -> list[dict[str, Any]]:
        return decode(self.blobs.get(self.key), f"memory:{self.key}")

    async def save(self, records: list[dict[str, Any]]) -> None:
        self.blobs[self.key] = encode(records)


class JsonFileStore(Store):
    """Queue stored as a JSON file, replaced atomically on every save.

    File I/O goes through aiofiles so a slow disk does not stall the event loop.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> list[dict[str, Any]]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                text = await f.read()
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read queue file {self.path}: {e}")
            return []
        return decode(text, str(self.path))

    async def save(self, records: list[dict[str, Any]]) -> None:
        text = encode(records)
        tmp_path: Path | None = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(text)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StorageError(f"Failed to write queue file {self.path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    await aiofiles.os.remove(tmp_path)
                except FileNotFoundError:
                    pass


class SQLiteStore(Store):
    """Queue stored as one row of an SQLite key-value table."""

    def __init__(self, db_path: str = ":memory:", key: str = DEFAULT_KEY) -> None:
        self.db_path = db_path
        self.key = key
        self._conn: aiosqlite.Connection | None = None

    async def _connect(self) -> aiosqlite.Connection:
        if self._conn is None:
            self._conn = await init_db(self.db_path)
        return self._conn

    async def load(self) -> list[dict[str, Any]]:
        try:
            conn = await self._connect()
            async with conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (self.key,)
            ) as cursor:
                row = await cursor.fetchone()
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Failed to read queue from {self.db_path}: {e}")
            return []
        return decode(row["value"] if row else None, f"{self.db_path}:{self.key}")

    async def save(self, records: list[dict[str, Any]]) -> None:
        text = encode(records)
        try:
            conn = await self._connect()
            await conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (self.key, text, time.time()),
            )
            await conn.commit()
        except (sqlite3.Error, OSError) as e:
            await self._rollback()
            raise StorageError(f"Failed to write queue to {self.db_path}: {e}") from e

    async def _rollback(self) -> None:
        # Discard the uncommitted upsert so load() keeps returning the last
        # committed blob and a later commit cannot persist it.
        if self._conn is None:
            return
        try:
            await self._conn.rollback()
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Rollback failed on {self.db_path}, reconnecting: {e}")
            await self.close()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


async def init_db(db_path: str) -> aiosqlite.Connection:
    """
    Open an SQLite connection and create the key-value table.

    Args:
        db_path: Path to SQLite file or ":memory:" for in-memory.

    Returns:
        Open database connection.
    """
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    try:
        # WAL keeps the last committed blob readable while a write is in flight
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.executescript(SCHEMA)
        await conn.commit()
    except sqlite3.Error:
        await conn.close()
        raise

    return conn
