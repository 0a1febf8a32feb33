"""Two-tier document cache: in-process dict in front of SQLite.

Tier 1 is a plain dict consulted first. Tier 2 is an ``aiosqlite`` table that
survives restarts; each row holds a JSON ``{"timestamp": <epoch ms>,
"data": ...}`` record under ``key_prefix + key``. A record is valid while
``now - timestamp <= ttl``; expired records are evicted lazily on read from
both tiers.

All durable-tier operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures behave as a miss, write failures are logged and
ignored. The in-memory result is never blocked by the durable tier.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

import aiosqlite
import structlog

from catalogfetch.models.cache import CacheRecord

log = structlog.get_logger()

DEFAULT_TTL = timedelta(hours=6)
DEFAULT_KEY_PREFIX = "yaml-cache/"

_CREATE_DOCUMENT_TABLE = """
CREATE TABLE IF NOT EXISTS document_cache (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _from_epoch_ms(ms: int | float) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def _json_default(obj: Any) -> str:
    # YAML timestamps parse to date/datetime; persist them as ISO strings
    if isinstance(obj, date):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class Cache:
    """Read-through/write-through document cache implementing CacheProtocol."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        *,
        ttl: timedelta = DEFAULT_TTL,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._ttl = ttl
        self._prefix = key_prefix
        self._clock = clock
        self._memory: dict[str, CacheRecord] = {}

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_DOCUMENT_TABLE)
        await self._db.commit()

    def _is_expired(self, timestamp: datetime) -> bool:
        return self._clock() - timestamp > self._ttl

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the cached value for ``key``, or ``None`` when absent or expired."""
        record = self._memory.get(key)
        if record is not None:
            if not self._is_expired(record.timestamp):
                return record.data
            log.debug("cache_expired", key=key, tier="memory")
            await self._evict(key)
            return None

        record = await self._read_durable(key)
        if record is None:
            return None
        if self._is_expired(record.timestamp):
            log.debug("cache_expired", key=key, tier="durable")
            await self._evict(key)
            return None

        # Promote, keeping the original timestamp so expiry stays consistent
        self._memory[key] = record
        return record.data

    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` in memory, then best-effort in the durable tier."""
        record = CacheRecord(key=key, data=value, timestamp=self._clock())
        self._memory[key] = record

        try:
            payload = json.dumps(
                {"timestamp": _to_epoch_ms(record.timestamp), "data": value},
                default=_json_default,
            )
        except (TypeError, ValueError):
            log.warning("cache_serialise_error", key=key, exc_info=True)
            # An older durable row would outlive this value across a restart
            await self._delete_durable(key)
            return

        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO document_cache (key, value) VALUES (?, ?)",
                (self._prefix + key, payload),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", key=key, exc_info=True)

    async def clear(self) -> None:
        """Empty both tiers. Only rows inside the key prefix are removed."""
        self._memory.clear()
        try:
            await self._db.execute(
                "DELETE FROM document_cache WHERE substr(key, 1, ?) = ?",
                (len(self._prefix), self._prefix),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_clear_error", exc_info=True)
        log.info("cache_cleared")

    # ------------------------------------------------------------------
    # Durable tier helpers
    # ------------------------------------------------------------------

    async def _read_durable(self, key: str) -> CacheRecord | None:
        try:
            cursor = await self._db.execute(
                "SELECT value FROM document_cache WHERE key = ?",
                (self._prefix + key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None
        if row is None:
            return None

        try:
            stored = json.loads(row[0])
            return CacheRecord(
                key=key,
                data=stored["data"],
                timestamp=_from_epoch_ms(stored["timestamp"]),
            )
        except (ValueError, KeyError, TypeError, OverflowError):
            log.warning("cache_record_corrupt", key=key, exc_info=True)
            return None

    async def _evict(self, key: str) -> None:
        self._memory.pop(key, None)
        await self._delete_durable(key)

    async def _delete_durable(self, key: str) -> None:
        try:
            await self._db.execute(
                "DELETE FROM document_cache WHERE key = ?",
                (self._prefix + key,),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_evict_error", key=key, exc_info=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self) -> int:
        """Delete durable records older than the TTL. Non-fatal on failure."""
        cutoff = _to_epoch_ms(self._clock() - self._ttl)
        try:
            cursor = await self._db.execute(
                "DELETE FROM document_cache "
                "WHERE substr(key, 1, ?) = ? AND json_extract(value, '$.timestamp') < ?",
                (len(self._prefix), self._prefix, cutoff),
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_cleanup_error", exc_info=True)
            return 0

        expired = [k for k, r in self._memory.items() if self._is_expired(r.timestamp)]
        for key in expired:
            del self._memory[key]

        log.info("cache_cleanup_complete", deleted=deleted, memory_evicted=len(expired))
        return deleted
