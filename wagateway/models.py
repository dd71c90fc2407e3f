"""Pydantic models for API payloads, webhook events and session metadata."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class SessionState(str, Enum):
    """Lifecycle states for a managed session."""
    INITIALIZING = "INITIALIZING"
    PAIRING = "PAIRING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    CLOSED = "CLOSED"


class ErrorDetail(BaseModel):
    """Structured error payload for API responses."""
    code: str
    message: str
    details: Any = None


class ApiResponse(BaseModel):
    """Envelope for every API response, successful or not."""
    success: bool
    message: str = ""
    data: Any = None
    error: ErrorDetail | None = None


class WebhookEvent(BaseModel):
    """Outbound notification posted to the configured webhook."""
    instance: str
    type: str
    data: Any = None
