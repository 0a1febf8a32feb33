"""Manifest resolution.

Turns a manifest of app YAML references into resolved apps: each app
document is fetched, its ``modules`` references are fetched concurrently,
and the survivors are assembled in their original order. Individual
failures are dropped; only an entirely empty result is an error.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from catalogfetch.errors import CatalogError, ErrorCode
from catalogfetch.models.manifest import Manifest, ManifestEntry, ResolvedApp

if TYPE_CHECKING:
    from catalogfetch.protocols import DocumentFetcherProtocol
    from catalogfetch.state import AppState

log = structlog.get_logger()

MODULES_FIELD = "modules"
OWNER_FIELD = "app_name"


def module_references(value: Any) -> list[str]:
    """Normalise a ``modules`` field into an ordered list of URL strings.

    Accepts a single string, a list (non-string or blank items are skipped),
    or anything else (treated as no modules).
    """
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _display_name(document: dict, entry: ManifestEntry) -> str | None:
    name = document.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    if entry.name.strip():
        return entry.name.strip()
    return None


def _string_keys(document: dict) -> dict[str, Any]:
    return {str(key): value for key, value in document.items()}


async def _fetch_modules(
    references: list[str],
    app_name: str,
    fetcher: DocumentFetcherProtocol,
) -> list[dict[str, Any]]:
    results = await asyncio.gather(*(fetcher.fetch_document(ref) for ref in references))

    modules: list[dict[str, Any]] = []
    for ref, module in zip(references, results, strict=True):
        if module is None:
            continue
        if not isinstance(module, dict):
            log.warning("module_not_a_mapping", url=ref, app=app_name)
            continue
        # Copy before stamping: the fetched value is shared with the cache
        module = _string_keys(module)
        if not module.get(OWNER_FIELD):
            module[OWNER_FIELD] = app_name
        modules.append(module)
    return modules


async def resolve_app(entry: ManifestEntry, fetcher: DocumentFetcherProtocol) -> ResolvedApp | None:
    """Resolve one manifest entry, or return ``None`` if it must be dropped."""
    app_log = log.bind(app=entry.name, url=entry.app_yml_url)

    document = await fetcher.fetch_document(entry.app_yml_url)
    if document is None:
        app_log.warning("app_unavailable")
        return None
    if not isinstance(document, dict):
        app_log.warning("app_not_a_mapping", type=type(document).__name__)
        return None

    name = _display_name(document, entry)
    if name is None:
        app_log.warning("app_missing_name")
        return None

    references = module_references(document.get(MODULES_FIELD))
    modules = await _fetch_modules(references, name, fetcher)

    fields = {k: v for k, v in _string_keys(document).items() if k != MODULES_FIELD}
    fields["name"] = name

    app_log.info("app_resolved", modules_requested=len(references), modules_resolved=len(modules))
    return ResolvedApp(
        name=name,
        source_url=entry.app_yml_url,
        fields=fields,
        modules=modules,
        module_urls=references,
    )


async def _resolve_app_safely(
    entry: ManifestEntry, fetcher: DocumentFetcherProtocol
) -> ResolvedApp | None:
    try:
        return await resolve_app(entry, fetcher)
    except Exception:
        log.error("app_resolve_unexpected_error", app=entry.name, exc_info=True)
        return None


async def resolve_all(manifest: Manifest, fetcher: DocumentFetcherProtocol) -> list[ResolvedApp]:
    """Resolve every manifest entry concurrently, preserving manifest order.

    Raises CatalogError(NO_APPS_LOADED) when no entry survives.
    """
    results = await asyncio.gather(
        *(_resolve_app_safely(entry, fetcher) for entry in manifest.apps)
    )
    apps = [app for app in results if app is not None]

    log.info("manifest_resolved", requested=len(manifest.apps), resolved=len(apps))
    if not apps:
        raise CatalogError(
            code=ErrorCode.NO_APPS_LOADED,
            message="No apps could be loaded",
            suggestion="Check the app_yml_url entries in the manifest and the proxy logs.",
            recoverable=True,
        )
    return apps


async def load_manifest(url: str, client: httpx.AsyncClient) -> Manifest:
    """Fetch and validate the JSON manifest at ``url``."""
    try:
        response = await client.get(url)
    except httpx.HTTPError as exc:
        raise CatalogError(
            code=ErrorCode.MANIFEST_FETCH_FAILED,
            message=f"Network error fetching manifest {url}: {exc}",
            suggestion="Check that the manifest host is reachable.",
            recoverable=True,
        ) from exc

    if not response.is_success:
        raise CatalogError(
            code=ErrorCode.MANIFEST_FETCH_FAILED,
            message=f"HTTP {response.status_code} fetching manifest {url}",
            suggestion="Check the manifest URL.",
            recoverable=response.status_code >= 500,
        )

    try:
        manifest = Manifest.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise CatalogError(
            code=ErrorCode.MANIFEST_FETCH_FAILED,
            message=f"Manifest at {url} is not valid: {exc}",
            suggestion='The manifest must be JSON of the form {"apps": [{"name", "app_yml_url"}]}.',
        ) from exc

    log.info("manifest_loaded", url=url, apps=len(manifest.apps))
    return manifest


async def resolve_catalog(manifest_url: str, state: AppState) -> list[ResolvedApp]:
    """Load the manifest at ``manifest_url`` and resolve all of its apps."""
    if state.http_client is None or state.fetcher is None:
        raise RuntimeError("http_client and fetcher must be initialised before resolving")
    manifest = await load_manifest(manifest_url, state.http_client)
    return await resolve_all(manifest, state.fetcher)
