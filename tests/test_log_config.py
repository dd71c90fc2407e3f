"""Tests for logging setup."""

import logging

from wagateway.log_config import _mask_secrets, configure_logging


class TestMaskSecrets:
    """Test that pairing material never reaches the log output."""

    def test_masks_known_keys(self) -> None:
        event = {"event": "Pairing", "code": "ABCD-1234", "qr": "2@abc", "session_id": "s1"}

        assert _mask_secrets(None, "info", event) == {
            "event": "Pairing",
            "code": "***",
            "qr": "***",
            "session_id": "s1",
        }

    def test_empty_values_untouched(self) -> None:
        assert _mask_secrets(None, "info", {"token": ""}) == {"token": ""}


class TestConfigureLogging:
    """Test env-driven configuration."""

    def test_level_and_third_party_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("WAGATEWAY_LOG_LEVEL", "debug")
        monkeypatch.setenv("WAGATEWAY_LOG_FORMAT", "json")

        configure_logging()

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("uvicorn").level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
