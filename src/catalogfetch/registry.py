"""Upstream registry: which source-control origins the proxy knows credentials for.

Built once at startup from ``Settings.proxy.upstreams`` and never mutated.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from catalogfetch.models.registry import UpstreamEntry
from catalogfetch.normalizer import origin_of

if TYPE_CHECKING:
    from collections.abc import Mapping

    from catalogfetch.config import UpstreamSettings

log = structlog.get_logger()


class Registry:
    """Immutable origin → UpstreamEntry lookup."""

    def __init__(self, entries: list[UpstreamEntry]) -> None:
        by_origin: dict[str, UpstreamEntry] = {}
        for entry in entries:
            # First configured key wins for a duplicated origin
            by_origin.setdefault(entry.origin, entry)
        self._by_origin: Mapping[str, UpstreamEntry] = MappingProxyType(by_origin)

    def __len__(self) -> int:
        return len(self._by_origin)

    @property
    def entries(self) -> tuple[UpstreamEntry, ...]:
        return tuple(self._by_origin.values())

    def find(self, url: str) -> UpstreamEntry | None:
        """Return the entry whose origin exactly equals the origin of ``url``."""
        origin = origin_of(url)
        if origin is None:
            return None
        return self._by_origin.get(origin)


def build_registry(upstreams: Mapping[str, UpstreamSettings]) -> Registry:
    """Build the registry, skipping entries whose base URL is unset or invalid."""
    entries: list[UpstreamEntry] = []
    for key, upstream in upstreams.items():
        if not upstream.base:
            log.debug("registry_entry_skipped", key=key, reason="no_base")
            continue
        origin = origin_of(upstream.base.strip())
        if origin is None:
            log.warning("registry_entry_skipped", key=key, reason="invalid_base", base=upstream.base)
            continue
        token = upstream.token
        if token is not None and not token.get_secret_value():
            token = None
        entries.append(UpstreamEntry(key=key, origin=origin, token=token))

    registry = Registry(entries)
    log.info(
        "registry_loaded",
        entries=len(registry),
        keys=[entry.key for entry in registry.entries],
    )
    return registry
