"""YAML document fetcher.

``DocumentFetcher.fetch_document`` is the single "fetch and parse a YAML
document by reference" operation: normalise → optionally route through the
proxy → cache lookup → HTTP GET → parse → cache store. It never raises;
every failure is logged and reported as ``None``.

The fetcher receives an httpx.AsyncClient via constructor injection; the
lifespan owns the client lifecycle.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

import httpx
import structlog
import yaml

from catalogfetch import __version__
from catalogfetch.errors import CatalogError, ErrorCode
from catalogfetch.normalizer import normalize

if TYPE_CHECKING:
    from catalogfetch.config import FetcherSettings
    from catalogfetch.protocols import CacheProtocol

log = structlog.get_logger()

_HTML_MARKER = re.compile(r"^\s*<(!doctype\s+html|html[\s>])", re.IGNORECASE)


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": f"catalogfetch/{__version__}"},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def looks_like_html(text: str) -> bool:
    """True when a body is an HTML page (login wall, error page) rather than YAML."""
    return _HTML_MARKER.match(text) is not None


def needs_proxy(url: str, host_markers: list[str]) -> bool:
    """Whether ``url``'s host is known to reject direct cross-origin reads."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return False
    return any(marker in host for marker in host_markers)


def proxy_wrap(url: str, proxy_url: str) -> str:
    """Route ``url`` through the proxy endpoint, unless it already is."""
    if url.startswith(proxy_url):
        return url
    separator = "&" if "?" in proxy_url else "?"
    return f"{proxy_url}{separator}{urlencode({'url': url})}"


class DocumentFetcher:
    """Fetch, parse and cache YAML documents referenced by URL."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: CacheProtocol,
        settings: FetcherSettings,
        *,
        log: structlog.typing.FilteringBoundLogger | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._settings = settings
        self._log = log if log is not None else structlog.get_logger()

    def request_url_for(self, reference: str) -> str:
        """The URL actually requested (and used as cache key) for ``reference``."""
        url = normalize(reference)
        proxy_url = self._settings.proxy_url
        if proxy_url and needs_proxy(url, self._settings.proxied_host_markers):
            url = proxy_wrap(url, proxy_url)
        return url

    async def fetch_document(self, reference: str) -> Any | None:
        """Return the parsed document for ``reference``, or ``None`` if unavailable."""
        url = reference
        try:
            url = self.request_url_for(reference)

            cached = await self._cache.get(url)
            if cached is not None:
                self._log.debug("cache_hit", url=url)
                return cached

            text = await self._fetch_text(url)
            document = self._parse(url, text)
            await self._cache.set(url, document)
            return document
        except CatalogError as exc:
            self._log.warning(
                "document_fetch_failed",
                reference=reference,
                url=url,
                code=exc.code,
                message=exc.message,
            )
            return None
        except Exception:
            self._log.error("document_fetch_unexpected_error", reference=reference, exc_info=True)
            return None

    async def _fetch_text(self, url: str) -> str:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise CatalogError(
                code=ErrorCode.DOCUMENT_FETCH_FAILED,
                message=f"Network error fetching {url}: {exc}",
                suggestion="The document host or proxy may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            raise CatalogError(
                code=ErrorCode.DOCUMENT_FETCH_FAILED,
                message=f"HTTP {response.status_code} fetching {url}",
                suggestion="Check that the document URL exists and is readable.",
                recoverable=response.status_code >= 500 or response.status_code == 429,
            )

        self._log.info(
            "fetch_complete",
            url=url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response.text

    def _parse(self, url: str, text: str) -> Any:
        if looks_like_html(text):
            raise CatalogError(
                code=ErrorCode.DOCUMENT_PARSE_FAILED,
                message=f"Received an HTML page instead of YAML from {url}",
                suggestion="The URL may point at a login or error page; check access rights.",
            )
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise CatalogError(
                code=ErrorCode.DOCUMENT_PARSE_FAILED,
                message=f"Invalid YAML from {url}: {exc}",
                suggestion="Fix the YAML syntax in the referenced document.",
            ) from exc
        if document is None:
            raise CatalogError(
                code=ErrorCode.DOCUMENT_PARSE_FAILED,
                message=f"Empty YAML document at {url}",
                suggestion="The referenced document has no content.",
            )
        return document
