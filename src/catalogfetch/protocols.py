"""Protocol interfaces for swappable components.

The fetcher and resolver reference these protocols, not the concrete
implementations, so tests can use lightweight in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Protocol


class CacheProtocol(Protocol):
    """Interface for the parsed-document cache."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def clear(self) -> None: ...


class DocumentFetcherProtocol(Protocol):
    """Interface for "fetch and parse a YAML document by reference"."""

    async def fetch_document(self, reference: str) -> Any | None: ...
