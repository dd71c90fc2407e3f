"""Tests for environment-backed settings."""

import pytest

from wagateway.settings import settings


@pytest.fixture
def clean_env(monkeypatch):
    """Remove settings variables so defaults apply."""
    for name in (
        "WAGATEWAY_TOKEN",
        "WAGATEWAY_PORT",
        "WAGATEWAY_LOG_LEVEL",
        "MAX_RETRIES",
        "RECONNECT_INTERVAL",
        "APP_WEBHOOK_URL",
        "APP_WEBHOOK_ALLOWED_EVENTS",
        "APP_WEBHOOK_FILE_IN_BASE64",
        "WAGATEWAY_WEBHOOK_WORKERS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDefaults:
    """Test default values."""

    def test_defaults(self, clean_env) -> None:
        assert settings.token() == ""
        assert settings.port() == 8000
        assert settings.log_level() == "INFO"
        assert settings.max_retries() == 0
        assert settings.reconnect_interval_ms() == 0
        assert settings.webhook_url() == ""
        assert settings.webhook_allowed_events() == ["ALL"]
        assert settings.webhook_file_in_base64() is False


class TestOverrides:
    """Test values read from the environment."""

    def test_retry_settings(self, clean_env) -> None:
        clean_env.setenv("MAX_RETRIES", "-1")
        clean_env.setenv("RECONNECT_INTERVAL", "2500")

        assert settings.max_retries() == -1
        assert settings.reconnect_interval_ms() == 2500

    def test_invalid_int_falls_back(self, clean_env) -> None:
        clean_env.setenv("WAGATEWAY_PORT", "eighty")

        assert settings.port() == 8000

    def test_allowed_events_are_split(self, clean_env) -> None:
        clean_env.setenv("APP_WEBHOOK_ALLOWED_EVENTS", " MESSAGES_UPSERT ,,CONNECTION_UPDATE ")

        assert settings.webhook_allowed_events() == ["MESSAGES_UPSERT", "CONNECTION_UPDATE"]

    def test_bool_parsing(self, clean_env) -> None:
        clean_env.setenv("APP_WEBHOOK_FILE_IN_BASE64", "true")
        assert settings.webhook_file_in_base64() is True

        clean_env.setenv("APP_WEBHOOK_FILE_IN_BASE64", "no")
        assert settings.webhook_file_in_base64() is False

    def test_workers_at_least_one(self, clean_env) -> None:
        clean_env.setenv("WAGATEWAY_WEBHOOK_WORKERS", "0")

        assert settings.webhook_workers() == 1

    def test_log_level_uppercased(self, clean_env) -> None:
        clean_env.setenv("WAGATEWAY_LOG_LEVEL", "debug")

        assert settings.log_level() == "DEBUG"
