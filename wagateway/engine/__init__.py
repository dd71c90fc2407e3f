"""Protocol engine selection."""

from __future__ import annotations

from wagateway.engine.base import (
    CredentialState,
    DisconnectReason,
    EngineConnection,
    EngineError,
    EngineEvent,
    MessageResolver,
    MessageStatus,
    ProtocolEngine,
    disconnect_status_code,
)
from wagateway.settings import settings


def get_engine() -> ProtocolEngine:
    """Return the configured protocol engine adapter.

    Uses WAGATEWAY_ENGINE to select the adapter. Options:
        - sidecar: protocol library hosted in a local sidecar process
    """
    name = settings.engine()

    if name == "sidecar":
        from wagateway.engine.sidecar import SidecarEngine

        return SidecarEngine()

    raise ValueError(f"Unknown protocol engine: {name}")


__all__ = [
    "CredentialState",
    "DisconnectReason",
    "EngineConnection",
    "EngineError",
    "EngineEvent",
    "MessageResolver",
    "MessageStatus",
    "ProtocolEngine",
    "disconnect_status_code",
    "get_engine",
]
