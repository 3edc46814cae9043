"""
Unit tests for configuration resolution and settings.
"""

import json

import pytest

from pos_terminal.configs import (
    ConfigResolver,
    ConfigSource,
    load_managed_config,
)
from pos_terminal.core.exceptions import ConfigurationError
from pos_terminal.infrastructure.settings import Settings


class TestConfigResolver:
    """Tests for the priority chain."""

    def test_environment_wins(self):
        resolver = ConfigResolver(
            environ={"POS_API_KEY": "env-key"},
            managed={"POS_API_KEY": "managed-key"},
        )
        resolved = resolver.resolve_with_source("POS_API_KEY")
        assert resolved.value == "env-key"
        assert resolved.source is ConfigSource.ENVIRONMENT

    def test_managed_before_default(self):
        resolver = ConfigResolver(managed={"POS_CURRENCY": "cad"})
        resolved = resolver.resolve_with_source("POS_CURRENCY")
        assert resolved.value == "cad"
        assert resolved.source is ConfigSource.MANAGED

    def test_bundled_default(self):
        resolved = ConfigResolver().resolve_with_source("POS_API_URL")
        assert resolved.value == "https://api.operahouseplayers.org"
        assert resolved.source is ConfigSource.BUNDLED

    def test_blank_values_are_skipped(self):
        resolver = ConfigResolver(environ={"POS_API_KEY": "  "}, managed={"POS_API_KEY": "managed-key"})
        assert resolver.resolve("POS_API_KEY") == "managed-key"

    def test_missing_key(self):
        resolved = ConfigResolver().resolve_with_source("POS_API_KEY")
        assert resolved.value is None
        assert resolved.source is ConfigSource.MISSING

    def test_typed_lookups(self):
        resolver = ConfigResolver(environ={
            "POS_REDIS_PORT": "6380",
            "POS_AUTO_RESET": "Yes",
            "POS_CONNECTIVITY_CHECK_SECONDS": "not-a-number",
        })
        assert resolver.resolve_int("POS_REDIS_PORT", 6379) == 6380
        assert resolver.resolve_bool("POS_AUTO_RESET") is True
        assert resolver.resolve_float("POS_CONNECTIVITY_CHECK_SECONDS", 2.0) == 2.0

    def test_managed_numbers_are_strings(self):
        resolver = ConfigResolver(managed={"POS_REDIS_PORT": 6390})
        assert resolver.resolve_int("POS_REDIS_PORT", 6379) == 6390

    def test_describe_hides_secrets(self):
        resolver = ConfigResolver(environ={"POS_API_KEY": "sk_live_secret"})
        lines = resolver.describe(["POS_API_KEY", "POS_CURRENCY"])
        assert lines == [
            "POS_API_KEY: <set> (environment)",
            "POS_CURRENCY: usd (bundled)",
        ]
        assert not any("sk_live_secret" in line for line in lines)


class TestManagedConfig:
    """Tests for loading the managed config file."""

    def test_loads_object(self, tmp_path):
        path = tmp_path / "managed.json"
        path.write_text(json.dumps({"POS_API_KEY": "managed-key"}))
        assert load_managed_config(path) == {"POS_API_KEY": "managed-key"}

    def test_missing_file(self, tmp_path):
        assert load_managed_config(tmp_path / "absent.json") == {}

    @pytest.mark.parametrize("content", ["", "{not json", "[1, 2]"])
    def test_invalid_content(self, tmp_path, content):
        path = tmp_path / "managed.json"
        path.write_text(content)
        assert load_managed_config(path) == {}


class TestSettings:
    """Tests for Settings built from the resolver."""

    def test_from_resolver(self):
        resolver = ConfigResolver(
            environ={
                "POS_API_KEY": "env-key",
                "POS_CURRENCY": "USD",
                "POS_AUTO_RESET": "true",
                "POS_REDIS_HOST": "redis.local",
            },
            managed={"POS_WS_URL": "ws://frontend:8005/ws"},
        )
        settings = Settings.from_resolver(resolver)

        assert settings.is_configured
        assert settings.api.api_key == "env-key"
        assert settings.api.currency == "usd"
        assert settings.api.base_url == "https://api.operahouseplayers.org"
        assert settings.redis.host == "redis.local"
        assert settings.services.websocket_url == "ws://frontend:8005/ws"
        assert settings.services.loki_url is None
        assert settings.terminal.auto_reset is True
        assert settings.terminal.response_channel == "pos_terminal_commands_response"

    def test_timeouts(self):
        api = Settings().api
        assert (api.create_timeout, api.reader_timeout, api.status_timeout) == (12.0, 10.0, 8.0)

    def test_missing_api_key(self):
        settings = Settings.from_resolver(ConfigResolver())
        assert not settings.is_configured
        with pytest.raises(ConfigurationError):
            settings.require_api_key()
