"""Key-value state store with mandatory per-key expiration.

Two backends share one async contract:

- `MemoryStateStore`: process-local, used by tests and single-process runs
- `SQLiteStateStore`: durable across restarts, one row per key

Neither backend knows anything about enforcement records; key shapes live in
`explainguard.enforcement.records`.
"""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import aiosqlite

from ..errors import StateStoreError
from .base import BaseService
from .cache import Clock, TTLCache

log = logging.getLogger("explainguard.state_store")


def _require_ttl(key: str, ttl_seconds: float) -> None:
    if ttl_seconds is None or ttl_seconds <= 0:
        raise ValueError(f"refusing to write {key!r} without a positive TTL")


class StateStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def scan_prefix(self, prefix: str) -> list[str]:
        """Return live keys starting with `prefix`, sorted."""
        ...


class MemoryStateStore(StateStore):
    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._cache: TTLCache[str, str] = TTLCache(default_ttl_seconds=60, clock=clock)

    async def get(self, key: str) -> Optional[str]:
        return self._cache.get(key)

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        _require_ttl(key, ttl_seconds)
        self._cache.set(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._cache.delete(key)

    async def scan_prefix(self, prefix: str) -> list[str]:
        return sorted(k for k in self._cache.keys() if k.startswith(prefix))

    def prune(self) -> int:
        return self._cache.prune()


class SQLiteStateStore(BaseService, StateStore):
    """`state_kv(key, value, expires_at)`; expired rows are invisible and pruned lazily."""

    def __init__(self, sqlite_path: str, clock: Optional[Clock] = None) -> None:
        super().__init__(sqlite_path)
        self._clock: Clock = clock or time.time

    async def _create_tables(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS state_kv (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              expires_at REAL NOT NULL
            )
            """
        )
        await db.execute("CREATE INDEX IF NOT EXISTS idx_state_kv_expiry ON state_kv(expires_at)")

    async def get(self, key: str) -> Optional[str]:
        try:
            async with aiosqlite.connect(self._path) as db:
                async with db.execute(
                    "SELECT value FROM state_kv WHERE key = ? AND expires_at > ?",
                    (key, self._clock()),
                ) as cur:
                    row = await cur.fetchone()
        except aiosqlite.Error as e:
            raise StateStoreError(f"get {key!r} failed: {e}") from e
        return None if row is None else str(row[0])

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        _require_ttl(key, ttl_seconds)
        try:
            async with aiosqlite.connect(self._path) as db:
                await db.execute(
                    """
                    INSERT INTO state_kv (key, value, expires_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
                    """,
                    (key, value, self._clock() + float(ttl_seconds)),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StateStoreError(f"set {key!r} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            async with aiosqlite.connect(self._path) as db:
                await db.execute("DELETE FROM state_kv WHERE key = ?", (key,))
                await db.commit()
        except aiosqlite.Error as e:
            raise StateStoreError(f"delete {key!r} failed: {e}") from e

    async def scan_prefix(self, prefix: str) -> list[str]:
        try:
            async with aiosqlite.connect(self._path) as db:
                async with db.execute(
                    "SELECT key FROM state_kv WHERE substr(key, 1, ?) = ? AND expires_at > ? ORDER BY key",
                    (len(prefix), prefix, self._clock()),
                ) as cur:
                    rows = await cur.fetchall()
        except aiosqlite.Error as e:
            raise StateStoreError(f"scan {prefix!r} failed: {e}") from e
        return [str(r[0]) for r in rows]

    async def prune(self) -> int:
        try:
            async with aiosqlite.connect(self._path) as db:
                cur = await db.execute("DELETE FROM state_kv WHERE expires_at <= ?", (self._clock(),))
                await db.commit()
                removed = int(cur.rowcount)
        except aiosqlite.Error as e:
            raise StateStoreError(f"prune failed: {e}") from e
        if removed:
            log.debug("Pruned %d expired state keys", removed)
        return removed
