"""YAML proxy gateway.

A small Starlette app exposing ``GET /api/yaml?url=<blob URL>``. It rewrites
GitHub/GitLab blob URLs to raw URLs, injects the registry credential for the
matching origin, relays conditional requests, and returns the YAML with
cache-friendly headers so browsers never see upstream tokens or hit CORS
restrictions.

Middleware order (outermost first): security headers, CORS, rate limiting.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import httpx
import structlog
from pydantic import BaseModel, ValidationError, field_validator
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from catalogfetch import __version__
from catalogfetch.normalizer import UrlShape, classify_url
from catalogfetch.ratelimit import RateLimiter

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from catalogfetch.config import Settings
    from catalogfetch.models.registry import UpstreamEntry
    from catalogfetch.registry import Registry

log = structlog.get_logger()

YAML_CONTENT_TYPE = "text/yaml; charset=utf-8"
CACHE_CONTROL = "public, max-age=60, stale-while-revalidate=300"
MAX_ERROR_DETAIL = 500
RATE_LIMIT_EXEMPT_PATHS: frozenset[str] = frozenset({"/healthz"})

SECURITY_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"SAMEORIGIN"),
    (b"referrer-policy", b"no-referrer"),
    (b"cross-origin-resource-policy", b"same-origin"),
)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware:
    """Pure ASGI middleware adding conservative security headers to every response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                existing = {name.lower() for name, _ in message.get("headers", [])}
                headers = list(message.get("headers", []))
                headers.extend(h for h in SECURITY_HEADERS if h[0] not in existing)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)


class RateLimitMiddleware:
    """Pure ASGI middleware charging one point per request to the client address."""

    def __init__(self, app: ASGIApp, *, limiter: RateLimiter) -> None:
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope.get("path") not in RATE_LIMIT_EXEMPT_PATHS:
            client = scope.get("client")
            key = client[0] if client else "unknown"
            if not self.limiter.consume(key):
                log.info("proxy_rate_limited", client=key)
                response = JSONResponse(
                    {"error": "Too many requests"},
                    status_code=429,
                    headers={"Retry-After": str(self.limiter.retry_after(key))},
                )
                await response(scope, receive, send)
                return

        await self.app(scope, receive, send)


# ---------------------------------------------------------------------------
# Request handling
# ---------------------------------------------------------------------------


class ProxyQuery(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        value = value.strip()
        try:
            parts = urlsplit(value)
        except ValueError as exc:
            raise ValueError("url is not a valid URL") from exc
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError("url must be an absolute http(s) URL")
        return value


def build_upstream_client(settings: Settings) -> httpx.AsyncClient:
    """Create the httpx client used for upstream raw-content requests."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.proxy.upstream_timeout_seconds),
        headers={"User-Agent": f"catalogfetch-proxy/{__version__}"},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def upstream_headers(
    shape: UrlShape,
    entry: UpstreamEntry | None,
    if_none_match: str | None,
) -> dict[str, str]:
    """Headers for the upstream request: credential and conditional validator."""
    headers: dict[str, str] = {}
    if entry is not None and entry.token is not None:
        token = entry.token.get_secret_value()
        if shape.is_github:
            headers["Authorization"] = f"Bearer {token}"
        else:
            headers["PRIVATE-TOKEN"] = token
    if if_none_match:
        headers["If-None-Match"] = if_none_match
    return headers


async def fetch_yaml(request: Request) -> Response:
    """Handle ``GET /api/yaml?url=...``."""
    try:
        query = ProxyQuery(url=request.query_params.get("url", ""))
    except ValidationError:
        return JSONResponse(
            {"error": "Invalid query: 'url' parameter required"},
            status_code=400,
        )

    shape = classify_url(query.url)
    if not shape.recognized:
        log.info("proxy_unsupported_url", url=query.url)
        return JSONResponse({"error": "Invalid or unsupported URL"}, status_code=400)

    registry: Registry = request.app.state.registry
    client: httpx.AsyncClient = request.app.state.http_client
    entry = registry.find(query.url)
    req_log = log.bind(
        url=query.url,
        raw_url=shape.raw_url,
        registry_key=entry.key if entry else None,
    )

    headers = upstream_headers(shape, entry, request.headers.get("if-none-match"))
    try:
        upstream = await client.get(shape.raw_url, headers=headers)
    except httpx.HTTPError:
        req_log.warning("proxy_upstream_unreachable", exc_info=True)
        return JSONResponse({"error": "Upstream fetch failed"}, status_code=502)

    etag = upstream.headers.get("etag")

    if upstream.status_code == 304:
        req_log.debug("proxy_not_modified")
        return Response(status_code=304, headers={"ETag": etag} if etag else None)

    source = "GitHub" if shape.is_github else "GitLab"

    # Redirects are not followed, so any other 3xx is a gateway failure
    if 300 <= upstream.status_code < 400:
        req_log.warning(
            "proxy_upstream_redirect",
            status_code=upstream.status_code,
            location=upstream.headers.get("location"),
        )
        return JSONResponse(
            {"error": f"{source}: upstream redirected ({upstream.status_code})"},
            status_code=502,
        )

    if not upstream.is_success:
        detail = upstream.text.strip()[:MAX_ERROR_DETAIL] or upstream.reason_phrase
        req_log.warning("proxy_upstream_error", status_code=upstream.status_code)
        return JSONResponse(
            {"error": f"{source}: {detail}"},
            status_code=upstream.status_code,
        )

    response_headers = {"Cache-Control": CACHE_CONTROL}
    if etag:
        response_headers["ETag"] = etag

    req_log.info("proxy_fetch_complete", content_length=len(upstream.content))
    return Response(
        upstream.text,
        status_code=200,
        media_type=YAML_CONTENT_TYPE,
        headers=response_headers,
    )


async def healthz(request: Request) -> Response:
    return JSONResponse({"status": "ok"})


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_proxy_app(
    settings: Settings,
    registry: Registry,
    *,
    http_client: httpx.AsyncClient | None = None,
    limiter: RateLimiter | None = None,
) -> Starlette:
    """Build the proxy ASGI app.

    When ``http_client`` is omitted the app creates one in its lifespan and
    closes it on shutdown; an injected client is left for the caller to close.
    """
    if limiter is None:
        limiter = RateLimiter(
            settings.proxy.rate_limit_points,
            settings.proxy.rate_limit_window_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        owned = app.state.http_client is None
        if owned:
            app.state.http_client = build_upstream_client(settings)
        log.info(
            "proxy_started",
            version=__version__,
            upstreams=len(registry),
            allowed_origins=settings.proxy.cors_allowed_origins,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.http_client.aclose()
                app.state.http_client = None
            log.info("proxy_stopping")

    app = Starlette(
        routes=[
            Route("/api/yaml", fetch_yaml, methods=["GET"]),
            Route("/healthz", healthz, methods=["GET"]),
        ],
        middleware=[
            Middleware(SecurityHeadersMiddleware),
            Middleware(
                CORSMiddleware,
                allow_origins=settings.proxy.cors_allowed_origins,
                allow_methods=["GET"],
                allow_headers=["If-None-Match"],
                expose_headers=["ETag"],
            ),
            Middleware(RateLimitMiddleware, limiter=limiter),
        ],
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.http_client = http_client
    app.state.limiter = limiter
    return app
