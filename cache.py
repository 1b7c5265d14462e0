"""
cache.py — content-addressed key/value store for provider results, on aiosqlite.

Keys are "<prefix>:<sha256 of the canonical JSON payload>", so an identical
(provider, request) pair always maps to the same row. Values are JSON text with
an absolute expiry timestamp; expired rows are simply never returned. The only
explicit delete path is clear_prefix().

A broken or missing store never fails a pipeline run: read errors are logged
and treated as misses, write errors are logged and skipped.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key        TEXT PRIMARY KEY,
    prefix     TEXT NOT NULL,
    value      TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cache_prefix ON cache_entries (prefix);
"""


def make_key(prefix: str, payload: Any) -> str:
    """Deterministic cache key for (prefix, payload)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode()).hexdigest()
    return f"{prefix}:{digest}"


class CacheStore:

    def __init__(
        self,
        db_path: str | Path,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = str(db_path)
        self._enabled = enabled
        self._ready = False
        self._clock = clock
        self._lock = asyncio.Lock()     # serialise schema creation

    def is_enabled(self) -> bool:
        return self._enabled

    async def init(self) -> None:
        """Create the table if needed. Safe to call multiple times."""
        if not self._enabled or self._ready:
            return
        async with self._lock:
            if self._ready:
                return
            try:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                async with aiosqlite.connect(self.db_path) as db:
                    await db.executescript(_SCHEMA)
                    await db.commit()
                self._ready = True
                logger.info("Cache store ready at %s", self.db_path)
            except Exception as exc:
                logger.error("Cache store init failed, caching disabled: %s", exc)
                self._enabled = False

    async def get(self, prefix: str, payload: Any) -> Optional[Any]:
        if not self._enabled:
            return None
        await self.init()
        key = make_key(prefix, payload)
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(
                    "SELECT value FROM cache_entries WHERE key = ? AND expires_at > ?",
                    (key, self._clock()),
                ) as cur:
                    row = await cur.fetchone()
        except Exception as exc:
            logger.error("Cache GET failed for %s: %s", key, exc)
            return None

        if row is None:
            logger.info("Cache MISS: %s", key)
            return None
        try:
            value = json.loads(row[0])
        except ValueError as exc:
            logger.error("Cache entry %s is not valid JSON, treating as a miss: %s", key, exc)
            return None
        logger.info("Cache HIT: %s", key)
        return value

    async def set(self, prefix: str, payload: Any, value: Any, ttl_seconds: int) -> None:
        if not self._enabled:
            return
        await self.init()
        key = make_key(prefix, payload)
        now = self._clock()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """INSERT INTO cache_entries (key, prefix, value, created_at, expires_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                           value = excluded.value,
                           created_at = excluded.created_at,
                           expires_at = excluded.expires_at""",
                    (key, prefix, json.dumps(value, default=str), now, now + ttl_seconds),
                )
                await db.commit()
            logger.info("Cache SET: %s (TTL: %ds)", key, ttl_seconds)
        except Exception as exc:
            logger.error("Cache SET failed for %s: %s", key, exc)

    async def clear_prefix(self, prefix: str) -> int:
        """Delete every entry stored under prefix. Returns the number removed."""
        if not self._enabled:
            return 0
        await self.init()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cur = await db.execute("DELETE FROM cache_entries WHERE prefix = ?", (prefix,))
                removed = cur.rowcount
                await db.commit()
        except Exception as exc:
            logger.error("Cache clear failed for prefix %s: %s", prefix, exc)
            return 0
        logger.info("Cleared %d cache entries with prefix: %s", removed, prefix)
        return removed

    async def get_stats(self) -> dict:
        if not self._enabled:
            return {"enabled": False, "keys": 0, "live_keys": 0, "by_prefix": {}}
        await self.init()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute("SELECT COUNT(*) FROM cache_entries") as cur:
                    total = (await cur.fetchone())[0]
                async with db.execute(
                    """SELECT prefix, COUNT(*) FROM cache_entries
                       WHERE expires_at > ? GROUP BY prefix ORDER BY prefix""",
                    (self._clock(),),
                ) as cur:
                    by_prefix = {prefix: count for prefix, count in await cur.fetchall()}
        except Exception as exc:
            logger.error("Cache stats failed: %s", exc)
            return {"enabled": True, "keys": 0, "live_keys": 0, "by_prefix": {}}
        return {
            "enabled":   True,
            "keys":      total,
            "live_keys": sum(by_prefix.values()),
            "by_prefix": by_prefix,
        }
