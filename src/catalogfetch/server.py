"""Process entrypoints.

Responsibilities (and nothing more):
- Configure structlog
- Build the upstream registry and shared resources
- ``catalogfetch-proxy``: serve the YAML proxy gateway with uvicorn
- ``catalogfetch-resolve``: resolve a manifest once and print it as JSON
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
import uvicorn

from catalogfetch import __version__
from catalogfetch.cache import Cache
from catalogfetch.config import Settings
from catalogfetch.errors import CatalogError
from catalogfetch.fetcher import DocumentFetcher, build_http_client
from catalogfetch.proxy import create_proxy_app
from catalogfetch.registry import build_registry
from catalogfetch.resolver import resolve_catalog
from catalogfetch.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # Logs go to stderr; stdout carries resolver output
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Resolver lifespan
# ---------------------------------------------------------------------------


async def _open_cache(settings: Settings, stack: AsyncExitStack) -> Cache:
    """Open the durable cache, falling back to an in-memory database.

    The durable tier is best-effort: an unwritable or corrupt database file
    must not stop resolution, so the run continues with a cache that simply
    does not survive the process.
    """
    ttl = timedelta(hours=settings.cache.ttl_hours)
    db_path = Path(settings.cache.db_path).expanduser()
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await stack.enter_async_context(aiosqlite.connect(str(db_path)))
        cache = Cache(db, ttl=ttl, key_prefix=settings.cache.key_prefix)
        await cache.init_db()
    except (aiosqlite.Error, OSError):
        log.warning("cache_db_unavailable", db_path=str(db_path), exc_info=True)
        db = await stack.enter_async_context(aiosqlite.connect(":memory:"))
        cache = Cache(db, ttl=ttl, key_prefix=settings.cache.key_prefix)
        await cache.init_db()
    return cache


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down the cache, HTTP client and fetcher."""
    registry = build_registry(settings.proxy.upstreams)
    async with AsyncExitStack() as stack:
        http_client = build_http_client(settings.fetcher)
        stack.push_async_callback(http_client.aclose)

        cache = await _open_cache(settings, stack)
        await cache.cleanup_expired()

        fetcher = DocumentFetcher(http_client, cache, settings.fetcher)
        yield AppState(
            settings=settings,
            registry=registry,
            http_client=http_client,
            cache=cache,
            fetcher=fetcher,
        )


async def _resolve(manifest_url: str, settings: Settings) -> list[dict]:
    async with lifespan(settings) as state:
        apps = await resolve_catalog(manifest_url, state)
    return [app.as_document() for app in apps]


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_proxy_server(settings: Settings) -> None:
    """Start the YAML proxy gateway."""
    setup_logging(settings)
    log.info(
        "server_starting",
        version=__version__,
        host=settings.server.host,
        port=settings.server.port,
    )
    registry = build_registry(settings.proxy.upstreams)
    app = create_proxy_app(settings, registry)

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


def main() -> None:
    run_proxy_server(Settings())


def resolve_main(argv: list[str] | None = None) -> int:
    """Resolve the manifest given as the first argument and print JSON to stdout."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: catalogfetch-resolve <manifest_url>", file=sys.stderr)
        return 2

    settings = Settings()
    setup_logging(settings)
    try:
        documents = asyncio.run(_resolve(args[0], settings))
    except CatalogError as exc:
        log.error("resolve_failed", code=exc.code, message=exc.message)
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 1

    json.dump(documents, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    main()
