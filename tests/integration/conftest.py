"""Integration test fixtures.

Provides the proxy gateway wired with the shared registry, an injected
upstream httpx client (mocked per test with respx), and a controllable
rate-limiter clock. Requests reach the app through httpx's ASGI transport,
so no server is started.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from catalogfetch.proxy import create_proxy_app
from catalogfetch.ratelimit import RateLimiter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.applications import Starlette

    from catalogfetch.config import Settings
    from catalogfetch.registry import Registry


class Ticks:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def ticks() -> Ticks:
    return Ticks()


@pytest.fixture()
async def upstream_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(follow_redirects=False) as client:
        yield client


@pytest.fixture()
def proxy_app(
    settings: Settings,
    registry: Registry,
    upstream_client: httpx.AsyncClient,
    ticks: Ticks,
) -> Starlette:
    limiter = RateLimiter(
        settings.proxy.rate_limit_points,
        settings.proxy.rate_limit_window_seconds,
        clock=ticks,
    )
    return create_proxy_app(settings, registry, http_client=upstream_client, limiter=limiter)


@pytest.fixture()
async def proxy_client(proxy_app: Starlette) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=proxy_app),
        base_url="http://proxy.local",
    ) as client:
        yield client
