"""
Unit tests for reader and client configuration.
"""

import logging

import pytest

from changes_sdk.config import ClientSettings, ReaderConfig
from changes_sdk.errors import ConfigurationError

ENV_VARS = [
    "CHANGES_BATCH_SIZE",
    "CHANGES_SINCE",
    "CHANGES_INCLUDE_DOCS",
    "CHANGES_MAX_CHANGES",
    "CHANGES_TIMEOUT_MS",
    "CHANGES_HEARTBEAT_MS",
    "CHANGES_URL",
    "CHANGES_REQUEST_TIMEOUT",
    "CHANGES_LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestReaderConfig:
    """Tests for ReaderConfig."""

    def test_defaults(self):
        config = ReaderConfig()
        assert config.batch_size == 100
        assert config.since == "now"
        assert config.include_docs is False
        assert config.max_changes is None
        assert config.timeout_ms == 60000
        assert config.heartbeat_ms == 5000
        config.validate()

    def test_from_env(self, clean_env):
        clean_env.setenv("CHANGES_BATCH_SIZE", "25")
        clean_env.setenv("CHANGES_SINCE", "0")
        clean_env.setenv("CHANGES_INCLUDE_DOCS", "true")
        clean_env.setenv("CHANGES_MAX_CHANGES", "1000")

        config = ReaderConfig.from_env()

        assert config.batch_size == 25
        assert config.since == "0"
        assert config.include_docs is True
        assert config.max_changes == 1000

    def test_from_env_defaults(self, clean_env):
        assert ReaderConfig.from_env() == ReaderConfig()

    def test_from_env_invalid_integer(self, clean_env):
        clean_env.setenv("CHANGES_BATCH_SIZE", "lots")
        with pytest.raises(ConfigurationError) as exc_info:
            ReaderConfig.from_env()
        assert exc_info.value.option == "CHANGES_BATCH_SIZE"

    def test_from_env_out_of_range(self, clean_env):
        clean_env.setenv("CHANGES_BATCH_SIZE", "0")
        with pytest.raises(ConfigurationError):
            ReaderConfig.from_env()

    def test_with_overrides_returns_new_config(self):
        base = ReaderConfig()
        updated = base.with_overrides(batch_size=10, since=5)

        assert updated.batch_size == 10
        assert updated.since == "5"
        assert base.batch_size == 100

    def test_with_overrides_none_keeps_values(self):
        base = ReaderConfig(batch_size=7)
        assert base.with_overrides() == base

    def test_with_overrides_validates(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ReaderConfig().with_overrides(max_changes=0)
        assert exc_info.value.option == "max_changes"


class TestClientSettings:
    """Tests for ClientSettings."""

    def test_defaults(self, clean_env):
        settings = ClientSettings()
        assert settings.url == "http://localhost:5984"
        assert settings.request_timeout == 90.0
        assert settings.log_format == "text"

    def test_env_prefix(self, clean_env):
        clean_env.setenv("CHANGES_URL", "http://couch:5984")
        clean_env.setenv("CHANGES_REQUEST_TIMEOUT", "120")
        clean_env.setenv("CHANGES_LOG_LEVEL", "DEBUG")

        settings = ClientSettings()

        assert settings.url == "http://couch:5984"
        assert settings.request_timeout == 120.0
        assert settings.log_level == "DEBUG"

    def test_short_request_timeout_warns(self, clean_env, caplog):
        settings = ClientSettings(request_timeout=30.0)
        with caplog.at_level(logging.WARNING, logger="changes_sdk.config"):
            settings.check_timeouts(ReaderConfig())
        assert "shorter than the long-poll timeout" in caplog.text

    def test_long_request_timeout_is_quiet(self, clean_env, caplog):
        with caplog.at_level(logging.WARNING, logger="changes_sdk.config"):
            ClientSettings().check_timeouts(ReaderConfig())
        assert caplog.records == []
