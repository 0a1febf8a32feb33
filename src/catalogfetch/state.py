"""Application state container.

AppState is created once per process by an entrypoint lifespan and passed
explicitly to the resolver; nothing in the fetch pipeline reads globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from catalogfetch.config import Settings
    from catalogfetch.protocols import CacheProtocol, DocumentFetcherProtocol
    from catalogfetch.registry import Registry


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    registry: Registry
    http_client: httpx.AsyncClient | None = None
    cache: CacheProtocol | None = None
    fetcher: DocumentFetcherProtocol | None = None
