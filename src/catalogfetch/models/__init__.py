from __future__ import annotations

from catalogfetch.models.cache import CacheRecord
from catalogfetch.models.manifest import Manifest, ManifestEntry, ResolvedApp
from catalogfetch.models.registry import UpstreamEntry

__all__ = [
    # cache
    "CacheRecord",
    # manifest
    "Manifest",
    "ManifestEntry",
    "ResolvedApp",
    # registry
    "UpstreamEntry",
]
