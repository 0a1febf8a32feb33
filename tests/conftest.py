"""Shared test fixtures for the catalogfetch test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import aiosqlite
import pytest
from pydantic import SecretStr

from catalogfetch.cache import Cache
from catalogfetch.config import FetcherSettings, Settings, UpstreamSettings
from catalogfetch.registry import Registry, build_registry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class FakeClock:
    """Manually advanced UTC clock for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 4, 16, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeFetcher:
    """In-memory DocumentFetcherProtocol: maps reference → parsed document."""

    def __init__(self, documents: dict[str, Any]) -> None:
        self.documents = documents
        self.requested: list[str] = []

    async def fetch_document(self, reference: str) -> Any | None:
        self.requested.append(reference)
        return self.documents.get(reference)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
async def cache(clock: FakeClock) -> AsyncIterator[Cache]:
    """Two-tier cache over an in-memory SQLite database with a fake clock."""
    async with aiosqlite.connect(":memory:") as db:
        cache = Cache(db, ttl=timedelta(hours=6), clock=clock)
        await cache.init_db()
        yield cache


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        proxy={
            "upstreams": {
                "opencode": UpstreamSettings(
                    base="https://gitlab.opencode.de",
                    token=SecretStr("opencode-token"),
                ),
                "oss": UpstreamSettings(base="https://gitlab.com"),
                "hub": UpstreamSettings(base="https://github.com", token=SecretStr("hub-token")),
            },
            "cors_allowed_origins": ["http://localhost:5173"],
            "rate_limit_points": 5,
            "rate_limit_window_seconds": 60,
        },
        fetcher=FetcherSettings(proxy_url="http://proxy.local/api/yaml"),
    )


@pytest.fixture()
def registry(settings: Settings) -> Registry:
    return build_registry(settings.proxy.upstreams)


@pytest.fixture()
def make_fetcher() -> type[FakeFetcher]:
    return FakeFetcher
