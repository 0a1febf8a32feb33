"""Blob-URL to raw-URL normalisation.

Pure string logic, no I/O. Every input is classified into a ``UrlShape``;
unrecognised shapes carry the input URL unchanged as their raw URL, so
``normalize`` is total and idempotent:

    https://github.com/{owner}/{repo}/blob/{branch}/{path}
        → https://raw.githubusercontent.com/{owner}/{repo}/{branch}/{path}
    https://{gitlab-host}/{group_path}[/-]/blob/{branch}/{path}
        → https://{gitlab-host}/{group_path}/-/raw/{branch}/{path}
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

GITHUB_BLOB_HOSTS = frozenset({"github.com", "www.github.com"})
GITHUB_RAW_HOST = "raw.githubusercontent.com"
GITLAB_HOST_MARKER = "gitlab"
DEFAULT_PORTS = {"http": 80, "https": 443}


class UrlKind(StrEnum):
    GITHUB_BLOB = "github_blob"
    GITHUB_RAW = "github_raw"
    GITLAB_BLOB = "gitlab_blob"
    GITLAB_RAW = "gitlab_raw"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class UrlShape:
    kind: UrlKind
    url: str
    raw_url: str
    origin: str = ""

    @property
    def is_github(self) -> bool:
        return self.kind in (UrlKind.GITHUB_BLOB, UrlKind.GITHUB_RAW)

    @property
    def is_gitlab(self) -> bool:
        return self.kind in (UrlKind.GITLAB_BLOB, UrlKind.GITLAB_RAW)

    @property
    def recognized(self) -> bool:
        return self.kind is not UrlKind.UNRECOGNIZED


def _unrecognized(url: str) -> UrlShape:
    return UrlShape(kind=UrlKind.UNRECOGNIZED, url=url, raw_url=url)


def origin_of(url: str) -> str | None:
    """Return ``scheme://host[:port]`` (lowercased) or None for non-HTTP URLs.

    The port is omitted when it is the default for the scheme.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    host = parts.hostname
    if parts.scheme not in ("http", "https") or not host:
        return None
    if ":" in host:
        host = f"[{host}]"
    if port is None or port == DEFAULT_PORTS[parts.scheme]:
        return f"{parts.scheme}://{host}"
    return f"{parts.scheme}://{host}:{port}"


def _find_view_segment(parts: list[str]) -> int | None:
    """Index of the ``blob``/``raw`` segment that splits project path from ref.

    The ``/-/`` separator is authoritative when present; otherwise the first
    ``blob`` segment wins (legacy GitLab URLs without ``-``).
    """
    for i in range(len(parts) - 1):
        if parts[i] == "-" and parts[i + 1] in ("blob", "raw"):
            return i + 1
    for i, part in enumerate(parts):
        if part == "blob":
            return i
    return None


def _classify_github(url: str, origin: str, parts: list[str]) -> UrlShape:
    if len(parts) < 5 or parts[2] != "blob":
        return _unrecognized(url)
    owner, repo, _blob, branch, *path = parts
    raw_url = f"https://{GITHUB_RAW_HOST}/{owner}/{repo}/{branch}/{'/'.join(path)}"
    return UrlShape(kind=UrlKind.GITHUB_BLOB, url=url, raw_url=raw_url, origin=origin)


def _classify_gitlab(url: str, origin: str, parts: list[str]) -> UrlShape:
    index = _find_view_segment(parts)
    if index is None or parts[index] == "raw":
        # Already raw, or not a file view at all: pass through.
        return UrlShape(kind=UrlKind.GITLAB_RAW, url=url, raw_url=url, origin=origin)

    end = index - 1 if index > 0 and parts[index - 1] == "-" else index
    group_path = "/".join(parts[:end])
    ref_and_path = parts[index + 1 :]
    if not group_path or len(ref_and_path) < 2:
        return _unrecognized(url)

    branch, *file_path = ref_and_path
    raw_url = f"{origin}/{group_path}/-/raw/{branch}/{'/'.join(file_path)}"
    return UrlShape(kind=UrlKind.GITLAB_BLOB, url=url, raw_url=raw_url, origin=origin)


def classify_url(url: str) -> UrlShape:
    """Classify ``url`` by source-control host and path shape."""
    origin = origin_of(url)
    if origin is None:
        return _unrecognized(url)

    split = urlsplit(url)
    host = split.hostname or ""
    parts = [p for p in split.path.split("/") if p]

    if host in GITHUB_BLOB_HOSTS:
        return _classify_github(url, origin, parts)
    if host == GITHUB_RAW_HOST:
        return UrlShape(kind=UrlKind.GITHUB_RAW, url=url, raw_url=url, origin=origin)
    if GITLAB_HOST_MARKER in host:
        return _classify_gitlab(url, origin, parts)
    return _unrecognized(url)


def normalize(url: str) -> str:
    """Return the raw-content URL for ``url``, or ``url`` itself if unrecognised."""
    return classify_url(url).raw_url
