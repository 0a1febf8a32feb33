"""Unit tests for configuration defaults and environment loading."""

from __future__ import annotations

import platformdirs
import pytest

from catalogfetch.config import (
    _DEFAULT_DATA_DIR,
    _DEFAULT_DB_PATH,
    CacheSettings,
    ProxySettings,
    Settings,
)


class TestDefaults:
    def test_default_data_dir_matches_platformdirs(self) -> None:
        assert platformdirs.user_data_dir("catalogfetch") == _DEFAULT_DATA_DIR

    def test_default_db_path_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("cache.db")

    def test_cache_defaults(self) -> None:
        cache = CacheSettings()
        assert cache.ttl_hours == 6
        assert cache.key_prefix == "yaml-cache/"

    def test_proxy_defaults(self) -> None:
        proxy = ProxySettings()
        assert proxy.rate_limit_points == 60
        assert proxy.rate_limit_window_seconds == 60
        assert proxy.cors_allowed_origins == ["http://localhost:5173"]
        assert proxy.upstreams == {}


class TestEnvironment:
    def test_nested_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CATALOGFETCH__SERVER__PORT", "9090")
        monkeypatch.setenv("CATALOGFETCH__LOGGING__FORMAT", "text")
        settings = Settings()
        assert settings.server.port == 9090
        assert settings.logging.format == "text"

    def test_upstreams_from_json_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(
            "CATALOGFETCH__PROXY__UPSTREAMS",
            '{"opencode": {"base": "https://gitlab.opencode.de", "token": "t0k"}}',
        )
        settings = Settings()
        upstream = settings.proxy.upstreams["opencode"]
        assert upstream.base == "https://gitlab.opencode.de"
        assert upstream.token is not None
        assert upstream.token.get_secret_value() == "t0k"
