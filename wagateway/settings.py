"""Centralized environment configuration for the gateway.

Gateway-level settings use the WAGATEWAY_ prefix. The webhook and reconnect
settings keep their historical unprefixed names (APP_WEBHOOK_URL, MAX_RETRIES,
...) because deployments already set them.

Usage:
    from wagateway.settings import settings

    if settings.webhook_url():
        ...
    retries = settings.max_retries()
"""

from __future__ import annotations

import os


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """Centralized settings for the gateway."""

    # -------------------------------------------------------------------------
    # Server Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def token() -> str:
        """Bearer token for API authentication. Empty disables auth.

        Env: WAGATEWAY_TOKEN
        """
        return _get("WAGATEWAY_TOKEN")

    @staticmethod
    def host() -> str:
        """Host to bind the HTTP server to.

        Env: WAGATEWAY_HOST (default: 0.0.0.0)
        """
        return _get("WAGATEWAY_HOST", default="0.0.0.0")

    @staticmethod
    def port() -> int:
        """Port to bind the HTTP server to.

        Env: WAGATEWAY_PORT (default: 8000)
        """
        return _get_int("WAGATEWAY_PORT", default=8000)

    @staticmethod
    def sessions_dir() -> str:
        """Directory holding credential directories and history cache files.

        Env: WAGATEWAY_SESSIONS_DIR (default: ./sessions)
        """
        return os.path.abspath(_get("WAGATEWAY_SESSIONS_DIR", default="sessions"))

    @staticmethod
    def create_timeout_seconds() -> float:
        """How long POST /sessions/add waits for a QR, code or connection.

        Env: WAGATEWAY_CREATE_TIMEOUT_SECONDS (default: 60)
        """
        return _get_float("WAGATEWAY_CREATE_TIMEOUT_SECONDS", default=60.0)

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: WAGATEWAY_LOG_LEVEL (default: INFO)
        """
        return _get("WAGATEWAY_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: WAGATEWAY_LOG_FORMAT (default: console)
        """
        return _get("WAGATEWAY_LOG_FORMAT", default="console").lower()

    # -------------------------------------------------------------------------
    # Protocol Engine Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def engine() -> str:
        """Protocol engine adapter selection.

        Env: WAGATEWAY_ENGINE (default: sidecar)
        """
        return _get("WAGATEWAY_ENGINE", default="sidecar").lower()

    @staticmethod
    def engine_url() -> str:
        """Base URL of the protocol engine sidecar.

        Env: WAGATEWAY_ENGINE_URL (default: http://localhost:8789)
        """
        return _get("WAGATEWAY_ENGINE_URL", default="http://localhost:8789")

    @staticmethod
    def engine_token() -> str:
        """Shared token sent to the engine sidecar.

        Env: WAGATEWAY_ENGINE_TOKEN
        """
        return _get("WAGATEWAY_ENGINE_TOKEN")

    # -------------------------------------------------------------------------
    # Session Lifecycle Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def max_retries() -> int:
        """Reconnect attempts allowed after a recoverable disconnect.

        -1 means unlimited, 0 means never reconnect.

        Env: MAX_RETRIES (default: 0)
        """
        return _get_int("MAX_RETRIES", default=0)

    @staticmethod
    def reconnect_interval_ms() -> int:
        """Delay before reconnecting after a recoverable disconnect.

        Env: RECONNECT_INTERVAL (milliseconds, default: 0)
        """
        return _get_int("RECONNECT_INTERVAL", default=0)

    @staticmethod
    def pairing_timeout_seconds() -> float:
        """Upper bound on the wait for a pairing challenge. 0 waits forever.

        Env: WAGATEWAY_PAIRING_TIMEOUT_SECONDS (default: 60)
        """
        return _get_float("WAGATEWAY_PAIRING_TIMEOUT_SECONDS", default=60.0)

    @staticmethod
    def history_flush_seconds() -> float:
        """Interval between history cache flushes to disk.

        Env: WAGATEWAY_HISTORY_FLUSH_SECONDS (default: 10)
        """
        return _get_float("WAGATEWAY_HISTORY_FLUSH_SECONDS", default=10.0)

    # -------------------------------------------------------------------------
    # Webhook Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def webhook_url() -> str:
        """Destination for event notifications. Empty disables the webhook.

        Env: APP_WEBHOOK_URL
        """
        return _get("APP_WEBHOOK_URL")

    @staticmethod
    def webhook_allowed_events() -> list[str]:
        """Event types forwarded to the webhook. "ALL" forwards everything.

        Env: APP_WEBHOOK_ALLOWED_EVENTS (comma-separated, default: ALL)
        """
        raw = _get("APP_WEBHOOK_ALLOWED_EVENTS", default="ALL")
        return [part.strip() for part in raw.split(",") if part.strip()]

    @staticmethod
    def webhook_file_in_base64() -> bool:
        """Inline downloaded media as base64 in MESSAGES_UPSERT payloads.

        Env: APP_WEBHOOK_FILE_IN_BASE64 (default: false)
        """
        return _get_bool("APP_WEBHOOK_FILE_IN_BASE64")

    @staticmethod
    def webhook_workers() -> int:
        """Number of concurrent webhook delivery workers.

        Env: WAGATEWAY_WEBHOOK_WORKERS (default: 4)
        """
        return max(1, _get_int("WAGATEWAY_WEBHOOK_WORKERS", default=4))

    @staticmethod
    def webhook_queue_size() -> int:
        """Maximum number of undelivered webhook events held in memory.

        Env: WAGATEWAY_WEBHOOK_QUEUE_SIZE (default: 1000)
        """
        return max(1, _get_int("WAGATEWAY_WEBHOOK_QUEUE_SIZE", default=1000))

    @staticmethod
    def webhook_timeout_seconds() -> float:
        """Timeout for a single webhook POST.

        Env: WAGATEWAY_WEBHOOK_TIMEOUT_SECONDS (default: 10)
        """
        return _get_float("WAGATEWAY_WEBHOOK_TIMEOUT_SECONDS", default=10.0)


# Singleton instance for convenient imports
settings = Settings()
