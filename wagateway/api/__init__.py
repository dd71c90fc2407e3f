"""API package for session control and messaging endpoints."""

from __future__ import annotations

from wagateway.api.deps import require_token
from wagateway.api.router import api_router

__all__ = ["api_router", "require_token"]
