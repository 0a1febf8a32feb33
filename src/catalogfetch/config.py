"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (CATALOGFETCH__SERVER__PORT=9090)
  2. catalogfetch.yaml      (searched in cwd, then platform config dir)
  3. Hardcoded defaults

Upstream registry entries can be supplied per key, e.g.
``CATALOGFETCH__PROXY__UPSTREAMS__OPENCODE__BASE=https://gitlab.opencode.de``
and ``CATALOGFETCH__PROXY__UPSTREAMS__OPENCODE__TOKEN=...``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("catalogfetch")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")


def _find_config_file() -> str | None:
    """Return the path of the first catalogfetch.yaml found, or None."""
    candidates = [
        Path("catalogfetch.yaml"),
        Path(platformdirs.user_config_dir("catalogfetch")) / "catalogfetch.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class UpstreamSettings(BaseModel):
    base: str = ""  # e.g. "https://gitlab.opencode.de"
    token: SecretStr | None = None


class ProxySettings(BaseModel):
    upstreams: dict[str, UpstreamSettings] = {}
    cors_allowed_origins: list[str] = ["http://localhost:5173"]
    rate_limit_points: int = 60
    rate_limit_window_seconds: float = 60.0
    upstream_timeout_seconds: float = 30.0


class CacheSettings(BaseModel):
    ttl_hours: float = 6
    db_path: str = _DEFAULT_DB_PATH
    key_prefix: str = "yaml-cache/"


class FetcherSettings(BaseModel):
    # Absolute URL of the proxy's /api/yaml endpoint. None disables proxying.
    proxy_url: str | None = None
    proxied_host_markers: list[str] = ["gitlab"]
    timeout_seconds: float = 30.0


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CATALOGFETCH__SERVER__PORT=9090
        env_prefix="CATALOGFETCH__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    proxy: ProxySettings = ProxySettings()
    cache: CacheSettings = CacheSettings()
    fetcher: FetcherSettings = FetcherSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
