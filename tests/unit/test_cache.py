"""Unit tests for catalogfetch.cache."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import TYPE_CHECKING

import aiosqlite

from catalogfetch.cache import Cache

if TYPE_CHECKING:
    from tests.conftest import FakeClock

URL = "https://gitlab.example.com/group/project/-/raw/main/app.yml"
DOCUMENT = {"name": "DorfFunk", "modules": ["https://gitlab.example.com/m.yml"]}


async def _durable_row(cache: Cache, key: str) -> str | None:
    cursor = await cache._db.execute(
        "SELECT value FROM document_cache WHERE key = ?", ("yaml-cache/" + key,)
    )
    row = await cursor.fetchone()
    return None if row is None else row[0]


def _fail_db(cache: Cache) -> list[tuple]:
    """Replace db.execute with a failing stub; returns the list of attempted calls."""
    calls: list[tuple] = []

    async def failing_execute(*args, **kwargs):
        calls.append(args)
        raise aiosqlite.OperationalError("disk I/O error")

    cache._db.execute = failing_execute  # type: ignore[assignment]
    return calls


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------


class TestGetSet:
    async def test_set_and_get(self, cache: Cache) -> None:
        await cache.set(URL, DOCUMENT)
        assert await cache.get(URL) == DOCUMENT

    async def test_get_missing_returns_none(self, cache: Cache) -> None:
        assert await cache.get("https://example.org/missing.yml") is None

    async def test_durable_record_format(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set(URL, DOCUMENT)
        stored = json.loads(await _durable_row(cache, URL) or "")
        assert stored["data"] == DOCUMENT
        assert stored["timestamp"] == int(clock.now.timestamp() * 1000)

    async def test_overwrite_replaces_value(self, cache: Cache) -> None:
        await cache.set(URL, {"name": "v1"})
        await cache.set(URL, {"name": "v2"})
        assert await cache.get(URL) == {"name": "v2"}
        stored = json.loads(await _durable_row(cache, URL) or "")
        assert stored["data"] == {"name": "v2"}

    async def test_yaml_dates_persisted_as_iso_strings(self, cache: Cache) -> None:
        from datetime import date

        await cache.set(URL, {"last_update": date(2025, 4, 16)})
        stored = json.loads(await _durable_row(cache, URL) or "")
        assert stored["data"] == {"last_update": "2025-04-16"}


# ---------------------------------------------------------------------------
# TTL
# ---------------------------------------------------------------------------


class TestTtl:
    async def test_retrievable_just_before_ttl(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set(URL, DOCUMENT)
        clock.advance(hours=6, seconds=-1)
        assert await cache.get(URL) == DOCUMENT

    async def test_absent_and_evicted_after_ttl(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set(URL, DOCUMENT)
        clock.advance(hours=6, seconds=1)
        assert await cache.get(URL) is None
        assert await _durable_row(cache, URL) is None
        assert URL not in cache._memory

    async def test_durable_only_record_expires(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set(URL, DOCUMENT)
        cache._memory.clear()  # simulate a process restart
        clock.advance(hours=7)
        assert await cache.get(URL) is None
        assert await _durable_row(cache, URL) is None


# ---------------------------------------------------------------------------
# Tier promotion
# ---------------------------------------------------------------------------


class TestPromotion:
    async def test_durable_hit_promoted_to_memory(self, cache: Cache) -> None:
        await cache.set(URL, DOCUMENT)
        cache._memory.clear()

        assert await cache.get(URL) == DOCUMENT
        assert URL in cache._memory

        calls = _fail_db(cache)
        assert await cache.get(URL) == DOCUMENT
        assert calls == []

    async def test_promotion_keeps_original_timestamp(
        self, cache: Cache, clock: FakeClock
    ) -> None:
        await cache.set(URL, DOCUMENT)
        cache._memory.clear()
        clock.advance(hours=5)
        assert await cache.get(URL) == DOCUMENT
        clock.advance(hours=1, seconds=1)
        assert await cache.get(URL) is None


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestDurableFailures:
    async def test_write_failure_keeps_memory_value(self, cache: Cache) -> None:
        _fail_db(cache)
        await cache.set(URL, DOCUMENT)  # must not raise
        assert await cache.get(URL) == DOCUMENT

    async def test_read_failure_is_a_miss(self, cache: Cache) -> None:
        _fail_db(cache)
        assert await cache.get(URL) is None

    async def test_unserialisable_value_stays_in_memory(self, cache: Cache) -> None:
        value = {"tags": {"a", "b"}}
        await cache.set(URL, value)
        assert await cache.get(URL) == value
        assert await _durable_row(cache, URL) is None

    async def test_unserialisable_value_drops_older_durable_row(self, cache: Cache) -> None:
        await cache.set(URL, {"name": "v1"})
        assert await _durable_row(cache, URL) is not None

        await cache.set(URL, {"tags": {"a", "b"}})

        assert await _durable_row(cache, URL) is None
        cache._memory.clear()  # simulate a process restart
        assert await cache.get(URL) is None

    async def test_corrupt_record_is_a_miss(self, cache: Cache) -> None:
        await cache._db.execute(
            "INSERT INTO document_cache (key, value) VALUES (?, ?)",
            ("yaml-cache/" + URL, "{not json"),
        )
        await cache._db.commit()
        assert await cache.get(URL) is None


# ---------------------------------------------------------------------------
# Clear and maintenance
# ---------------------------------------------------------------------------


class TestClear:
    async def test_clear_empties_both_tiers(self, cache: Cache) -> None:
        await cache.set(URL, DOCUMENT)
        await cache.clear()
        assert cache._memory == {}
        assert await _durable_row(cache, URL) is None
        assert await cache.get(URL) is None

    async def test_clear_leaves_other_namespaces(self, cache: Cache) -> None:
        await cache._db.execute(
            "INSERT INTO document_cache (key, value) VALUES (?, ?)",
            ("other/" + URL, json.dumps({"timestamp": 0, "data": 1})),
        )
        await cache._db.commit()
        await cache.clear()
        cursor = await cache._db.execute("SELECT COUNT(*) FROM document_cache")
        row = await cursor.fetchone()
        assert row is not None
        assert row[0] == 1


class TestCleanupExpired:
    async def test_deletes_only_expired(self, cache: Cache, clock: FakeClock) -> None:
        await cache.set("old", {"v": 1})
        clock.advance(hours=4)
        await cache.set("new", {"v": 2})
        clock.advance(hours=3)

        deleted = await cache.cleanup_expired()

        assert deleted == 1
        assert await _durable_row(cache, "old") is None
        assert await _durable_row(cache, "new") is not None
        assert "old" not in cache._memory

    async def test_custom_prefix_and_ttl(self, clock: FakeClock) -> None:
        async with aiosqlite.connect(":memory:") as db:
            cache = Cache(db, ttl=timedelta(minutes=1), key_prefix="v2/", clock=clock)
            await cache.init_db()
            await cache.set(URL, DOCUMENT)
            cursor = await db.execute("SELECT key FROM document_cache")
            row = await cursor.fetchone()
            assert row is not None
            assert row[0] == "v2/" + URL
            clock.advance(minutes=2)
            assert await cache.get(URL) is None
