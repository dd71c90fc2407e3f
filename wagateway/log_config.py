"""Structlog setup shared by the gateway, Uvicorn and httpx loggers."""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from wagateway.settings import settings

# Event keys whose values grant access to an account and never reach the logs.
SECRET_KEYS = frozenset({"qr", "code", "creds", "keys", "token", "authorization"})

# Stdlib loggers routed through the structlog formatter, with a level override
# (None keeps the configured level).
THIRD_PARTY_LOGGERS: dict[str, int | None] = {
    "uvicorn": None,
    "uvicorn.error": None,
    "uvicorn.access": None,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _mask_secrets(logger: logging.Logger | None, name: str, event_dict: dict) -> dict:
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _drop_color_message(logger: logging.Logger | None, name: str, event_dict: dict) -> dict:
    # Uvicorn duplicates its message with ANSI colors in this extra key.
    event_dict.pop("color_message", None)
    return event_dict


def configure_logging() -> None:
    """Configure structlog and stdlib logging from WAGATEWAY_LOG_* settings.

    Gateway code logs through structlog; records from Uvicorn and httpx go
    through the same renderer so both end up in one stream with the bound
    request and session ids.
    """
    level = getattr(logging, settings.log_level(), logging.INFO)
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.log_format() == "json"
        else structlog.dev.ConsoleRenderer()
    )

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _mask_secrets,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _drop_color_message,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )

    loggers = {
        name: {
            "handlers": ["stdout"],
            "level": level if override is None else override,
            "propagate": False,
        }
        for name, override in THIRD_PARTY_LOGGERS.items()
    }
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"structlog": {"()": lambda: formatter}},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "structlog",
                    "stream": sys.stdout,
                }
            },
            "root": {"handlers": ["stdout"], "level": level},
            "loggers": loggers,
        }
    )
