"""
storage/sqlite.py — SQLite-backed key-value store

One table, one row per key, values stored as JSON text. aiosqlite runs
each statement on its own worker thread so the event loop never blocks
on disk I/O.

Usage:
    store = SqliteStore("./data/sqlite/cronpilot.db")
    await store.init()
    await store.write("automations", [...])
    automations = await store.read("automations")
    await store.close()
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Optional

import aiosqlite

from cronpilot.exceptions import StoreNotInitializedError
from cronpilot.observability.logger import get_logger
from cronpilot.storage.base import KeyValueStore

log = get_logger(__name__)

# ── Schema DDL ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,      -- JSON
    updated_at  REAL NOT NULL
);
"""


class SqliteStore(KeyValueStore):
    """Async SQLite key-value store. Call init() before use."""

    def __init__(self, db_path: str = "./data/sqlite/cronpilot.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        """Create the database file and table if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        log.info("store.sqlite.initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreNotInitializedError(
                "SqliteStore is not initialised (or has been closed). "
                "Call `await store.init()` before use."
            )
        return self._db

    async def read(self, key: str) -> Optional[Any]:
        db = self._require_db()
        async with db.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            log.warning("store.sqlite.corrupt_value", key=key)
            return None

    async def write(self, key: str, value: Any) -> None:
        db = self._require_db()
        await db.execute(
            """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
               value = excluded.value, updated_at = excluded.updated_at""",
            (key, json.dumps(value), time.time()),
        )
        await db.commit()

    async def delete(self, key: str) -> None:
        db = self._require_db()
        await db.execute("DELETE FROM kv WHERE key = ?", (key,))
        await db.commit()

    async def keys(self) -> list[str]:
        db = self._require_db()
        async with db.execute("SELECT key FROM kv ORDER BY key") as cursor:
            rows = await cursor.fetchall()
        return [r[0] for r in rows]
