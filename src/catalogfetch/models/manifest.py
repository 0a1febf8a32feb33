from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ManifestEntry(BaseModel):
    """One line of the app manifest: a display name and its app YAML reference."""

    name: str = ""
    app_yml_url: str


class Manifest(BaseModel):
    apps: list[ManifestEntry] = Field(default_factory=list)


class ResolvedApp(BaseModel):
    """An app document with its module documents resolved.

    ``fields`` holds every primary field except the raw ``modules`` reference
    list, which is kept separately as ``module_urls``.
    """

    name: str
    source_url: str
    fields: dict[str, Any]
    modules: list[dict[str, Any]] = Field(default_factory=list)
    module_urls: list[str] = Field(default_factory=list)

    def as_document(self) -> dict[str, Any]:
        """Flatten back into a single app document with inline modules."""
        return {**self.fields, "name": self.name, "modules": self.modules}
